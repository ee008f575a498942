"""Сервис для работы с сотрудниками."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import verify_password, get_password_hash
from app.models.user import User


class UserService:
    """Сервис для работы с сотрудниками."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_username(self, username: str) -> User | None:
        """Получить сотрудника по username."""
        stmt = select(User).where(User.username == username)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_telegram_id(self, telegram_id: int) -> User | None:
        """Получить активного сотрудника по Telegram ID."""
        stmt = select(User).where(User.telegram_id == telegram_id, User.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def verify_user_password(self, username: str, password: str) -> User | None:
        """
        Проверить пароль сотрудника.

        Возвращает User если пароль верный и учётка активна, иначе None.
        """
        user = await self.get_by_username(username)
        if not user or not user.is_active or not user.password_hash:
            return None

        if verify_password(password, user.password_hash):
            return user

        return None

    async def create_user(
        self,
        username: str,
        password: str,
        role: str = "cashier",
        full_name: str | None = None,
        telegram_id: int | None = None,
    ) -> User:
        """Создать нового сотрудника."""
        user = User(
            username=username,
            password_hash=get_password_hash(password),
            full_name=full_name,
            role=role,
            telegram_id=telegram_id,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user
