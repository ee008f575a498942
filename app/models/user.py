"""Модель сотрудника."""
import uuid
from datetime import datetime

from sqlalchemy import String, BigInteger, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class User(Base):
    """Сотрудник back-office."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)  # Логин для входа
    password_hash: Mapped[str | None] = mapped_column(String, nullable=True)  # Хешированный пароль
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    telegram_id: Mapped[int | None] = mapped_column(BigInteger, unique=True, nullable=True)  # Привязка к Telegram-боту
    role: Mapped[str] = mapped_column(String, nullable=False)  # admin / manager / cashier
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    last_login: Mapped[datetime | None] = mapped_column(nullable=True)
