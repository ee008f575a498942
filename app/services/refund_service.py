"""Сервис возвратов."""
import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import cache_service, get_cache_key_payment_stats
from app.models.payment import Payment, PaymentRefund
from app.services.audit_service import AuditService, snapshot
from app.services.exceptions import PaymentNotFoundError, PaymentValidationError
from app.services.ledger import ZERO, to_money

logger = logging.getLogger(__name__)


class RefundService:
    """
    Сервис для работы с возвратами.

    Возврат увеличивает refund_amount платежа, но не уменьшает paid_amount
    заказа: возвраты учитываются отдельно от статуса оплаты заказа.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def process_refund(
        self,
        payment_id: uuid.UUID,
        refund_amount: Any,
        refund_reason: str | None,
        refund_method: str | None,
        actor: str,
        refund_reference: str | None = None,
    ) -> PaymentRefund:
        """
        Оформить возврат по платежу.

        Сумма возврата ограничена остатком платежа, который ещё не возвращён
        (amount - refund_amount).
        """
        try:
            if refund_amount is None or not refund_reason or not refund_method:
                raise PaymentValidationError("Поля refund_amount, refund_reason и refund_method обязательны")
            refund_amount = to_money(refund_amount, field="refund_amount")
            if refund_amount <= ZERO:
                raise PaymentValidationError("Сумма возврата должна быть больше 0")

            stmt = (
                select(Payment)
                .where(Payment.id == payment_id, Payment.deleted_at.is_(None))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            payment = (await self.db.execute(stmt)).scalar_one_or_none()
            if not payment:
                raise PaymentNotFoundError(f"Платёж {payment_id} не найден")

            already_refunded = Decimal(payment.refund_amount or ZERO)
            refundable = Decimal(payment.amount) - already_refunded
            if refund_amount > refundable:
                raise PaymentValidationError(
                    f"Сумма возврата {refund_amount} превышает доступную к возврату сумму {refundable} "
                    f"(платёж {payment.amount}, уже возвращено {already_refunded})"
                )

            refund = PaymentRefund(
                payment_id=payment.id,
                refund_amount=refund_amount,
                refund_reason=refund_reason,
                refund_method=refund_method,
                refund_reference=refund_reference,
                status="completed",
                processed_by=actor,
            )
            self.db.add(refund)
            payment.refund_amount = already_refunded + refund_amount
            payment.updated_by = actor
            await self.db.flush()

            await AuditService(self.db).log(
                actor=actor,
                action_type="CREATE",
                table_name="payment_refunds",
                record_id=refund.id,
                new_values=snapshot(refund),
            )
            await self.db.commit()
        except PaymentValidationError as e:
            await self.db.rollback()
            logger.warning(f"Возврат по платежу {payment_id} отклонён: {e}")
            raise
        except Exception:
            await self.db.rollback()
            raise

        await cache_service.delete(get_cache_key_payment_stats())
        logger.info(f"Возврат {refund_amount} по платежу {payment_id} оформлен ({actor})")
        return refund

    async def list_refunds(self, payment_id: uuid.UUID) -> list[PaymentRefund]:
        """Возвраты платежа, новые первыми."""
        stmt = (
            select(PaymentRefund)
            .where(PaymentRefund.payment_id == payment_id)
            .order_by(PaymentRefund.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
