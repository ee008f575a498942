"""API v1 роутеры."""
from fastapi import APIRouter

from app.api.v1 import admin, telegram, payments, audit

router = APIRouter()

# Подключаем все роутеры
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(telegram.router, prefix="/telegram", tags=["telegram"])
router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
