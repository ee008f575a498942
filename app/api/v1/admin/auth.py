"""Авторизация сотрудников."""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.database import get_db
from app.core.security import create_access_token
from app.services.audit_service import AuditService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequest(BaseModel):
    """Запрос на авторизацию."""

    username: str
    password: str


class LoginResponse(BaseModel):
    """Ответ на авторизацию."""

    ok: bool
    access_token: str | None = None
    username: str | None = None
    role: str | None = None
    message: str | None = None


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Авторизация сотрудника по username и паролю.

    После успешной авторизации возвращает токен доступа и пишет LOGIN в аудит.
    """
    user_service = UserService(db)
    user = await user_service.verify_user_password(request.username, request.password)

    if not user:
        logger.warning(f"Неудачная попытка входа: {request.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный логин или пароль",
        )

    user.last_login = datetime.utcnow()
    await AuditService(db).log(
        actor=user.username,
        action_type="LOGIN",
        table_name="users",
        record_id=user.id,
        ip_address=http_request.client.host if http_request.client else None,
    )
    await db.commit()

    access_token = create_access_token(data={
        "user_id": str(user.id),
        "username": user.username,
        "role": user.role,
    })

    return LoginResponse(
        ok=True,
        access_token=access_token,
        username=user.username,
        role=user.role,
        message="Авторизация успешна",
    )
