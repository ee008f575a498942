"""
Правила учёта оплат по заказу.

Общие функции для записи, изменения и аннулирования платежей: разбор денежных
сумм, вычисление статуса оплаты и применение дельты к paid_amount заказа.
"""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from app.models.order import Order
from app.services.exceptions import LedgerIntegrityError, PaymentValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value, field: str = "amount") -> Decimal:
    """
    Привести значение к Decimal с двумя знаками после запятой.

    float сначала переводится в строку, чтобы не тащить двоичную погрешность.
    """
    if value is None or isinstance(value, bool):
        raise PaymentValidationError(f"Поле '{field}' обязательно")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise PaymentValidationError(f"Поле '{field}' должно быть числом, получено: {value!r}")
    if not amount.is_finite():
        raise PaymentValidationError(f"Поле '{field}' должно быть конечным числом")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise PaymentValidationError(f"Поле '{field}' вне допустимого диапазона: {value!r}")


def derive_payment_status(paid_amount: Decimal, total_amount: Decimal) -> str:
    """unpaid / partial / paid. Сравнение с итогом через >=, а не ==."""
    if paid_amount >= total_amount:
        return "paid"
    if paid_amount > ZERO:
        return "partial"
    return "unpaid"


def outstanding_balance(order: Order) -> Decimal:
    """Остаток к оплате по заказу."""
    return Decimal(order.total_amount) - Decimal(order.paid_amount or ZERO)


def apply_paid_delta(order: Order, delta: Decimal) -> Decimal:
    """
    Изменить paid_amount заказа на delta и пересчитать payment_status.

    Возвращает новый paid_amount. Если результат выходит за [0, total_amount],
    заказ не меняется и выбрасывается LedgerIntegrityError.
    """
    current = Decimal(order.paid_amount or ZERO)
    total = Decimal(order.total_amount)
    new_paid = (current + delta).quantize(CENT)

    if new_paid < ZERO:
        raise LedgerIntegrityError(
            f"Сумма оплаты заказа {order.order_number} стала бы отрицательной: "
            f"{current} {'+' if delta >= 0 else '-'} {abs(delta)} = {new_paid}"
        )
    if new_paid > total:
        raise LedgerIntegrityError(
            f"Сумма оплаты заказа {order.order_number} превысила бы итог: {new_paid} > {total}"
        )

    order.paid_amount = new_paid
    order.payment_status = derive_payment_status(new_paid, total)
    order.updated_at = datetime.utcnow()
    return new_paid


def _generate_number(prefix: str) -> str:
    return f"{prefix}-{datetime.utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


def generate_transaction_id() -> str:
    """Идентификатор транзакции вида TXN-20250101120000-1A2B3C."""
    return _generate_number("TXN")


def generate_receipt_number() -> str:
    """Номер квитанции вида RCP-20250101120000-1A2B3C."""
    return _generate_number("RCP")
