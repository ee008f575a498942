"""Audit API."""
import uuid
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.core.auth import require_roles
from app.database import get_db
from app.services.audit_service import AuditService

router = APIRouter()


class AuditLogResponse(BaseModel):
    """Запись журнала аудита."""

    id: uuid.UUID
    actor: str
    action_type: str
    table_name: str
    record_id: str
    status: str
    old_values: dict | None = None
    new_values: dict | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogListResponse(BaseModel):
    """Страница журнала аудита."""

    audit_logs: List[AuditLogResponse]
    total: int
    limit: int
    offset: int


@router.get("", response_model=AuditLogListResponse)
async def get_audit_logs(
    table_name: str | None = None,
    action_type: str | None = None,
    actor: str | None = None,
    record_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    """Журнал аудита с фильтрами (только admin)."""
    logs, total = await AuditService(db).list_logs(
        table_name=table_name,
        action_type=action_type,
        actor=actor,
        record_id=record_id,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        audit_logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )
