"""Модель заказа."""
import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.customer import Customer
    from app.models.payment import Payment


class Order(Base):
    """
    Модель заказа.

    Заказ создаётся подсистемой приёма заказов с paid_amount = 0. Платёжный модуль
    меняет только финансовые поля: paid_amount и производный payment_status.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("paid_amount >= 0 AND paid_amount <= total_amount", name="ck_orders_paid_amount_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("customers.id"), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    payment_status: Mapped[str] = mapped_column(String, nullable=False, default="unpaid")  # unpaid / partial / paid
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    customer: Mapped["Customer | None"] = relationship("Customer", back_populates="orders")
    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="order")
