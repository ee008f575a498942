"""Telegram API."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.config import settings
from app.core.security import create_access_token
from app.core.telegram import validate_telegram_init_data
from app.database import get_db
from app.services.user_service import UserService

router = APIRouter()


class ValidateInitDataRequest(BaseModel):
    """Запрос на валидацию init_data."""

    init_data: str


class TelegramUser(BaseModel):
    """Модель пользователя Telegram."""

    id: int
    first_name: str
    username: str | None = None
    last_name: str | None = None
    language_code: str | None = None


class ValidateInitDataResponse(BaseModel):
    """Ответ на валидацию init_data."""

    ok: bool
    telegram_user: TelegramUser | None = None
    is_staff: bool = False
    access_token: str | None = None
    role: str | None = None


@router.post("/validate_init_data", response_model=ValidateInitDataResponse)
async def validate_init_data(
    request: ValidateInitDataRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Валидация init_data от Telegram.

    Проверяет подпись через SHA256 HMAC + BOT_TOKEN. Если Telegram-пользователь
    привязан к активному сотруднику, выдаёт токен доступа, чтобы бот работал
    с теми же платежами, что и back-office.
    """
    if not settings.telegram_bot_token:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Telegram bot token not configured",
        )

    user_data = validate_telegram_init_data(request.init_data, settings.telegram_bot_token)
    if not user_data or "id" not in user_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid init_data signature",
        )

    telegram_user = TelegramUser(
        id=user_data["id"],
        first_name=user_data.get("first_name", ""),
        username=user_data.get("username"),
        last_name=user_data.get("last_name"),
        language_code=user_data.get("language_code"),
    )

    staff = await UserService(db).get_by_telegram_id(telegram_user.id)
    if not staff:
        return ValidateInitDataResponse(ok=True, telegram_user=telegram_user)

    access_token = create_access_token(data={
        "user_id": str(staff.id),
        "username": staff.username,
        "role": staff.role,
        "telegram_id": telegram_user.id,
    })
    return ValidateInitDataResponse(
        ok=True,
        telegram_user=telegram_user,
        is_staff=True,
        access_token=access_token,
        role=staff.role,
    )
