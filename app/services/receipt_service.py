"""Сервис квитанций."""
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.customer import Customer
from app.models.order import Order
from app.models.payment import Payment, PaymentMethod, PaymentReceipt
from app.services.audit_service import AuditService, snapshot
from app.services.exceptions import OrderNotFoundError, PaymentNotFoundError
from app.services.ledger import outstanding_balance

logger = logging.getLogger(__name__)


class ReceiptService:
    """Сервис для работы с квитанциями."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_payment_id(self, payment_id: uuid.UUID) -> PaymentReceipt | None:
        """Получить квитанцию платежа."""
        stmt = select(PaymentReceipt).where(PaymentReceipt.payment_id == payment_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lookup_customer(self, customer_id: uuid.UUID) -> Customer | None:
        stmt = select(Customer).where(Customer.id == customer_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _customer_details(self, order: Order) -> dict:
        """
        Имя и телефон клиента для квитанции.

        Не обязательная часть: любая ошибка поиска откатывает только savepoint
        и даёт пустые поля, платёж при этом не прерывается.
        """
        details = {"customer_name": "", "customer_phone": None}
        if not order.customer_id:
            return details
        try:
            async with self.db.begin_nested():
                customer = await self._lookup_customer(order.customer_id)
            if customer:
                details["customer_name"] = customer.customer_name
                details["customer_phone"] = customer.phone_number
        except Exception as e:
            logger.warning(f"Не удалось получить клиента {order.customer_id} для квитанции: {e}")
        return details

    async def _method_name(self, method_code: str) -> str:
        stmt = select(PaymentMethod.method_name).where(PaymentMethod.method_code == method_code)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() or method_code

    async def build_receipt_data(self, payment: Payment, order: Order, generated_by: str) -> dict:
        """Собрать снимок данных квитанции."""
        customer = await self._customer_details(order)
        return {
            # Business Info
            "business_name": settings.business_name,
            "business_address": settings.business_address,
            "business_phone": settings.business_phone,
            # Payment Info
            "receipt_number": payment.receipt_number,
            "transaction_id": payment.transaction_id,
            "amount": str(payment.amount),
            "payment_method": payment.payment_method,
            "payment_method_name": await self._method_name(payment.payment_method),
            "reference_number": payment.reference_number,
            "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
            "processed_by": payment.processed_by,
            # Order Info
            "order_number": order.order_number,
            "total_amount": str(order.total_amount),
            "paid_amount": str(order.paid_amount),
            "remaining_amount": str(outstanding_balance(order)),
            "payment_status": order.payment_status,
            # Customer Info
            **customer,
            "generated_at": datetime.utcnow().isoformat(),
            "generated_by": generated_by,
        }

    async def create_receipt(self, payment: Payment, order: Order, generated_by: str) -> PaymentReceipt:
        """
        Создать квитанцию в текущей транзакции (без commit).

        Используется внутри записи платежа и при генерации по запросу.
        """
        receipt = PaymentReceipt(
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            receipt_data=await self.build_receipt_data(payment, order, generated_by),
            generated_by=generated_by,
        )
        self.db.add(receipt)
        await self.db.flush()
        return receipt

    async def get_or_generate(self, payment_id: uuid.UUID, actor: str) -> tuple[PaymentReceipt, bool]:
        """
        Вернуть квитанцию платежа, при отсутствии сгенерировать.

        Идемпотентно: существующая квитанция возвращается без изменений.
        Returns:
            (квитанция, создана_ли_сейчас)
        """
        existing = await self.get_by_payment_id(payment_id)
        if existing:
            return existing, False

        try:
            stmt = select(Payment).where(Payment.id == payment_id, Payment.deleted_at.is_(None))
            payment = (await self.db.execute(stmt)).scalar_one_or_none()
            if not payment:
                raise PaymentNotFoundError(f"Платёж {payment_id} не найден")

            stmt_order = select(Order).where(Order.id == payment.order_id, Order.deleted_at.is_(None))
            order = (await self.db.execute(stmt_order)).scalar_one_or_none()
            if not order:
                raise OrderNotFoundError(f"Заказ платежа {payment_id} не найден")

            receipt = await self.create_receipt(payment, order, generated_by=actor)
            await AuditService(self.db).log(
                actor=actor,
                action_type="CREATE",
                table_name="payment_receipts",
                record_id=receipt.id,
                new_values=snapshot(receipt),
            )
            await self.db.commit()
        except IntegrityError:
            # Параллельный запрос уже создал квитанцию
            await self.db.rollback()
            existing = await self.get_by_payment_id(payment_id)
            if existing is None:
                raise
            return existing, False
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Квитанция {receipt.receipt_number} сгенерирована для платежа {payment_id}")
        return receipt, True
