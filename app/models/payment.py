"""Модели платежей: справочник способов оплаты, платежи, квитанции, возвраты."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Text, Numeric, Boolean, Integer, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.order import Order


PAYMENT_STATUSES = ("pending", "completed", "failed", "cancelled", "refunded")


class PaymentMethod(Base):
    """Способ оплаты (cash / ebirr / cbe / bank_transfer ...)."""

    __tablename__ = "payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    method_code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    method_name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    requires_reference: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Payment(Base):
    """Модель платежа."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint("refund_amount >= 0 AND refund_amount <= amount", name="ck_payments_refund_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String, nullable=False)  # method_code из payment_methods
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    receipt_number: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    processed_by: Mapped[str] = mapped_column(String, nullable=False)
    payment_date: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String, nullable=True)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="payments")
    receipt: Mapped["PaymentReceipt | None"] = relationship("PaymentReceipt", back_populates="payment", uselist=False)
    refunds: Mapped[list["PaymentRefund"]] = relationship("PaymentRefund", back_populates="payment")


class PaymentReceipt(Base):
    """Квитанция: неизменяемый снимок данных платежа на момент генерации."""

    __tablename__ = "payment_receipts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("payments.id"), unique=True, nullable=False)
    receipt_number: Mapped[str] = mapped_column(String, nullable=False)
    receipt_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    generated_by: Mapped[str] = mapped_column(String, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="receipt")


class PaymentRefund(Base):
    """Возврат по платежу."""

    __tablename__ = "payment_refunds"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    refund_reason: Mapped[str] = mapped_column(Text, nullable=False)
    refund_method: Mapped[str] = mapped_column(String, nullable=False)
    refund_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="completed")
    processed_by: Mapped[str] = mapped_column(String, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="refunds")
