"""Сервис журнала аудита."""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import Base
from app.models.audit import AuditLog

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(obj: Base) -> dict[str, Any]:
    """Сериализовать строку модели в JSON-совместимый словарь (для old/new values)."""
    return {
        column.key: _json_safe(getattr(obj, column.key))
        for column in obj.__table__.columns
    }


class AuditService:
    """
    Запись и чтение журнала аудита.

    log() не коммитит: запись попадает в транзакцию вызывающей операции и
    откатывается вместе с ней. Ошибка записи аудита прерывает операцию.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        actor: str,
        action_type: str,
        table_name: str,
        record_id: Any,
        old_values: dict | None = None,
        new_values: dict | None = None,
        status: str = "success",
        ip_address: str | None = None,
    ) -> AuditLog:
        """Добавить запись аудита в текущую транзакцию."""
        entry = AuditLog(
            actor=actor,
            action_type=action_type,
            table_name=table_name,
            record_id=str(record_id),
            status=status,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.debug(f"Audit: {actor} {action_type} {table_name}#{record_id}")
        return entry

    async def list_logs(
        self,
        table_name: str | None = None,
        action_type: str | None = None,
        actor: str | None = None,
        record_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """Получить записи аудита с фильтрами. Возвращает (записи, всего)."""
        conditions = []
        if table_name:
            conditions.append(AuditLog.table_name == table_name)
        if action_type:
            conditions.append(AuditLog.action_type == action_type.upper())
        if actor:
            conditions.append(AuditLog.actor == actor)
        if record_id:
            conditions.append(AuditLog.record_id == record_id)

        count_stmt = select(func.count(AuditLog.id)).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total
