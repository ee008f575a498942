"""Модели базы данных."""
from app.models.customer import Customer
from app.models.order import Order
from app.models.payment import Payment, PaymentMethod, PaymentReceipt, PaymentRefund
from app.models.audit import AuditLog
from app.models.user import User

__all__ = [
    "Customer",
    "Order",
    "Payment",
    "PaymentMethod",
    "PaymentReceipt",
    "PaymentRefund",
    "AuditLog",
    "User",
]
