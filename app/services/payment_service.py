"""
Сервис платежей.

Запись, изменение и аннулирование платежей с согласованием суммы оплаты
заказа. Каждая операция выполняется одной транзакцией: проверки, запись платежа,
обновление заказа, квитанция и запись аудита коммитятся вместе, при любой
ошибке всё откатывается.

Строка заказа читается с блокировкой (SELECT ... FOR UPDATE), поэтому
параллельные операции по одному заказу выполняются последовательно. При
изменении и аннулировании платёж перечитывается после блокировки заказа.
"""
import logging
import uuid
from datetime import datetime, date, time
from decimal import Decimal
from typing import Any

from sqlalchemy import Date, and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import cache_service, get_cache_key_payment_stats
from app.models.customer import Customer
from app.models.order import Order
from app.models.payment import Payment, PaymentMethod, PAYMENT_STATUSES
from app.services.audit_service import AuditService, snapshot
from app.services.exceptions import (
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from app.services.ledger import (
    CENT,
    ZERO,
    apply_paid_delta,
    generate_receipt_number,
    generate_transaction_id,
    outstanding_balance,
    to_money,
)
from app.services.receipt_service import ReceiptService

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class PaymentService:
    """Сервис для работы с платежами."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Чтение с блокировкой
    # ------------------------------------------------------------------

    async def _get_order_for_update(self, order_id: uuid.UUID) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.id == order_id, Order.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_active_payment(self, payment_id: uuid.UUID) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id, Payment.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_payment_with_order(self, payment_id: uuid.UUID) -> tuple[Payment, Order]:
        """
        Заблокировать заказ платежа, затем сам платёж.

        Платёж перечитывается уже под блокировкой заказа: параллельный запрос
        мог изменить сумму или аннулировать его между первым чтением и
        блокировкой.
        """
        payment = await self._get_active_payment(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Платёж {payment_id} не найден")

        order = await self._get_order_for_update(payment.order_id)
        if not order:
            raise OrderNotFoundError(f"Заказ платежа {payment_id} не найден")

        stmt = (
            select(Payment)
            .where(Payment.id == payment_id, Payment.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payment = (await self.db.execute(stmt)).scalar_one_or_none()
        if not payment:
            raise PaymentNotFoundError(f"Платёж {payment_id} не найден")
        return payment, order

    async def _get_active_method(self, method_code: str) -> PaymentMethod:
        stmt = select(PaymentMethod).where(
            PaymentMethod.method_code == method_code,
            PaymentMethod.is_active == True,  # noqa: E712
        )
        result = await self.db.execute(stmt)
        method = result.scalar_one_or_none()
        if not method:
            raise PaymentValidationError(f"Способ оплаты '{method_code}' не существует или неактивен")
        return method

    async def _invalidate_cache(self) -> None:
        await cache_service.delete(get_cache_key_payment_stats())

    # ------------------------------------------------------------------
    # Запись платежа
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        order_id: uuid.UUID | None,
        amount: Any,
        payment_method: str | None,
        actor: str,
        reference_number: str | None = None,
        notes: str | None = None,
        generate_receipt: bool = True,
    ) -> dict:
        """
        Записать платёж по заказу.

        Проверки (по порядку, первая неудачная прерывает операцию):
        обязательные поля и сумма > 0, заказ существует и не удалён, сумма не
        больше остатка, способ оплаты активен (и есть номер операции, если
        способ его требует).

        Returns:
            {"success", "payment_id", "receipt_number", "transaction_id", "receipt"}
        """
        try:
            if not order_id or amount is None or not payment_method:
                raise PaymentValidationError("Поля order_id, amount и payment_method обязательны")
            amount = to_money(amount)
            if amount <= ZERO:
                raise PaymentValidationError("Сумма платежа должна быть больше 0")

            order = await self._get_order_for_update(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")

            outstanding = outstanding_balance(order)
            if amount > outstanding:
                raise PaymentValidationError(
                    f"Сумма платежа {amount} превышает остаток к оплате {outstanding}"
                )

            method = await self._get_active_method(payment_method)
            reference_number = (reference_number or "").strip() or None
            if method.requires_reference and not reference_number:
                raise PaymentValidationError(
                    f"Для способа оплаты '{method.method_code}' требуется номер операции"
                )

            payment = Payment(
                order_id=order.id,
                amount=amount,
                payment_method=method.method_code,
                reference_number=reference_number,
                transaction_id=generate_transaction_id(),
                receipt_number=generate_receipt_number(),
                status="completed",
                notes=notes,
                refund_amount=ZERO,
                processed_by=actor,
                payment_date=datetime.utcnow(),
            )
            self.db.add(payment)
            await self.db.flush()

            apply_paid_delta(order, amount)
            await self.db.flush()

            receipt = None
            if generate_receipt:
                receipt = await ReceiptService(self.db).create_receipt(payment, order, generated_by=actor)

            await self.audit.log(
                actor=actor,
                action_type="CREATE",
                table_name="payments",
                record_id=payment.id,
                new_values=snapshot(payment),
            )
            await self.db.commit()
        except PaymentValidationError as e:
            await self.db.rollback()
            logger.warning(f"Платёж по заказу {order_id} отклонён: {e}")
            raise
        except Exception:
            await self.db.rollback()
            raise

        await self._invalidate_cache()
        logger.info(
            f"Платёж {payment.transaction_id} на {payment.amount} записан по заказу {order.order_number}: "
            f"оплачено {order.paid_amount} из {order.total_amount} ({order.payment_status})"
        )
        return {
            "success": True,
            "payment_id": payment.id,
            "receipt_number": payment.receipt_number,
            "transaction_id": payment.transaction_id,
            "receipt": receipt,
        }

    # ------------------------------------------------------------------
    # Изменение платежа
    # ------------------------------------------------------------------

    async def update_payment(
        self,
        payment_id: uuid.UUID,
        actor: str,
        amount: Any = _UNSET,
        payment_method: Any = _UNSET,
        reference_number: Any = _UNSET,
        notes: Any = _UNSET,
        status: Any = _UNSET,
    ) -> Payment:
        """
        Изменить платёж и согласовать заказ.

        paid_amount заказа меняется на разницу новой и старой суммы. Пересчёта
        из суммы всех платежей нет: считается, что paid_amount уже согласован
        предыдущими операциями.
        """
        try:
            payment, order = await self._lock_payment_with_order(payment_id)

            old_values = snapshot(payment)
            old_amount = Decimal(payment.amount)
            new_amount = old_amount

            if amount is not _UNSET and amount is not None:
                new_amount = to_money(amount)
                if new_amount <= ZERO:
                    raise PaymentValidationError("Сумма платежа должна быть больше 0")
                if new_amount < Decimal(payment.refund_amount or ZERO):
                    raise PaymentValidationError(
                        f"Сумма платежа {new_amount} меньше уже возвращённой суммы {payment.refund_amount}"
                    )

            delta = new_amount - old_amount
            if Decimal(order.paid_amount) + delta > Decimal(order.total_amount):
                max_additional = Decimal(order.total_amount) - Decimal(order.paid_amount)
                raise PaymentValidationError(
                    f"Сумма оплаты превысит итог заказа: можно добавить не более {max_additional}, "
                    f"запрошено {delta}"
                )

            if reference_number is not _UNSET:
                payment.reference_number = (reference_number or "").strip() or None
            if payment_method is not _UNSET and payment_method is not None and payment_method != payment.payment_method:
                method = await self._get_active_method(payment_method)
                if method.requires_reference and not payment.reference_number:
                    raise PaymentValidationError(
                        f"Для способа оплаты '{method.method_code}' требуется номер операции"
                    )
                payment.payment_method = method.method_code
            if status is not _UNSET and status is not None:
                if status not in PAYMENT_STATUSES:
                    raise PaymentValidationError(
                        f"Недопустимый статус платежа '{status}', допустимые: {', '.join(PAYMENT_STATUSES)}"
                    )
                payment.status = status
            if notes is not _UNSET:
                payment.notes = notes

            payment.amount = new_amount
            payment.updated_by = actor
            payment.updated_at = datetime.utcnow()

            if delta != ZERO:
                apply_paid_delta(order, delta)

            await self.db.flush()
            await self.audit.log(
                actor=actor,
                action_type="UPDATE",
                table_name="payments",
                record_id=payment.id,
                old_values=old_values,
                new_values=snapshot(payment),
            )
            await self.db.commit()
        except PaymentValidationError as e:
            await self.db.rollback()
            logger.warning(f"Изменение платежа {payment_id} отклонено: {e}")
            raise
        except Exception:
            await self.db.rollback()
            raise

        await self._invalidate_cache()
        logger.info(f"Платёж {payment_id} изменён ({actor}), дельта {delta}")
        return payment

    # ------------------------------------------------------------------
    # Аннулирование (мягкое удаление)
    # ------------------------------------------------------------------

    async def void_payment(self, payment_id: uuid.UUID, actor: str) -> Payment:
        """
        Аннулировать платёж: вычесть сумму из заказа и пометить платёж удалённым.

        Квитанции и возвраты не трогаются. Если paid_amount ушёл бы в минус,
        это ошибка целостности (LedgerIntegrityError), ничего не записывается.
        """
        try:
            payment, order = await self._lock_payment_with_order(payment_id)

            old_values = snapshot(payment)
            apply_paid_delta(order, -Decimal(payment.amount))

            payment.deleted_at = datetime.utcnow()
            payment.deleted_by = actor
            await self.db.flush()

            await self.audit.log(
                actor=actor,
                action_type="DELETE",
                table_name="payments",
                record_id=payment.id,
                old_values=old_values,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._invalidate_cache()
        logger.info(
            f"Платёж {payment_id} аннулирован ({actor}); заказ {order.order_number}: "
            f"оплачено {order.paid_amount} ({order.payment_status})"
        )
        return payment

    # ------------------------------------------------------------------
    # Чтение
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: uuid.UUID, include_deleted: bool = False) -> Payment | None:
        """Получить платёж. Аннулированные только с include_deleted (для аудита)."""
        stmt = select(Payment).where(Payment.id == payment_id)
        if not include_deleted:
            stmt = stmt.where(Payment.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order(self, order_id: uuid.UUID) -> Order | None:
        """Получить не удалённый заказ."""
        stmt = select(Order).where(Order.id == order_id, Order.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order_payments(self, order_id: uuid.UUID) -> list[Payment]:
        """Платежи заказа, новые первыми."""
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id, Payment.deleted_at.is_(None))
            .order_by(Payment.payment_date.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_payments(
        self,
        search: str | None = None,
        payment_method: str | None = None,
        status: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Payment], int]:
        """
        Список платежей с фильтрами и пагинацией.

        search ищет по номеру транзакции, квитанции, номеру операции,
        номеру заказа и имени клиента.
        """
        conditions = [Payment.deleted_at.is_(None)]
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    Payment.transaction_id.ilike(pattern),
                    Payment.receipt_number.ilike(pattern),
                    Payment.reference_number.ilike(pattern),
                    Order.order_number.ilike(pattern),
                    Customer.customer_name.ilike(pattern),
                )
            )
        if payment_method:
            conditions.append(Payment.payment_method == payment_method)
        if status:
            conditions.append(Payment.status == status)
        if date_from:
            conditions.append(Payment.payment_date >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(Payment.payment_date <= datetime.combine(date_to, time.max))

        base = (
            select(Payment)
            .join(Order, Order.id == Payment.order_id)
            .outerjoin(Customer, Customer.id == Order.customer_id)
            .where(*conditions)
        )

        count_stmt = select(func.count()).select_from(base.subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        page = max(page, 1)
        stmt = base.order_by(Payment.payment_date.desc()).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_active_methods(self) -> list[PaymentMethod]:
        """Активные способы оплаты по порядку сортировки."""
        stmt = (
            select(PaymentMethod)
            .where(PaymentMethod.is_active == True)  # noqa: E712
            .order_by(PaymentMethod.sort_order, PaymentMethod.method_name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_dashboard_stats(self) -> dict:
        """Сводка по платежам для дашборда."""
        completed = [Payment.deleted_at.is_(None), Payment.status == "completed"]

        totals = (
            await self.db.execute(
                select(
                    func.coalesce(func.sum(Payment.amount), 0).label("total"),
                    func.count(Payment.id).label("items_count"),
                ).where(*completed)
            )
        ).first()

        today_start = datetime.combine(datetime.utcnow().date(), time.min)
        today = (
            await self.db.execute(
                select(
                    func.coalesce(func.sum(Payment.amount), 0).label("total"),
                    func.count(Payment.id).label("items_count"),
                ).where(*completed, Payment.payment_date >= today_start)
            )
        ).first()

        outstanding = (
            await self.db.execute(
                select(
                    func.count(Order.id).label("items_count"),
                    func.coalesce(func.sum(Order.total_amount - Order.paid_amount), 0).label("amount"),
                ).where(
                    Order.deleted_at.is_(None),
                    Order.payment_status.in_(["unpaid", "partial"]),
                )
            )
        ).first()

        methods_result = await self.db.execute(
            select(
                Payment.payment_method,
                func.coalesce(func.sum(Payment.amount), 0).label("total"),
                func.count(Payment.id).label("items_count"),
            )
            .where(*completed)
            .group_by(Payment.payment_method)
            .order_by(func.sum(Payment.amount).desc())
        )

        total_revenue = Decimal(str(totals.total or 0))
        total_payments = totals.items_count or 0
        avg_payment = (total_revenue / total_payments).quantize(Decimal("0.01")) if total_payments else ZERO

        return {
            "total_revenue": total_revenue,
            "total_payments": total_payments,
            "avg_payment": avg_payment,
            "today_revenue": Decimal(str(today.total or 0)),
            "today_payments": today.items_count or 0,
            "outstanding_orders": outstanding.items_count or 0,
            "outstanding_amount": Decimal(str(outstanding.amount or 0)),
            "payment_methods": [
                {
                    "payment_method": row.payment_method,
                    "total": Decimal(str(row.total or 0)),
                    "count": row.items_count,
                }
                for row in methods_result
            ],
        }

    async def get_outstanding_orders(self, customer_id: uuid.UUID | None = None) -> list[dict]:
        """Неоплаченные и частично оплаченные заказы по сроку, можно по одному клиенту."""
        stmt = (
            select(
                Order,
                Customer.customer_name,
                Customer.phone_number,
            )
            .outerjoin(Customer, Customer.id == Order.customer_id)
            .where(
                Order.deleted_at.is_(None),
                Order.payment_status.in_(["unpaid", "partial"]),
            )
            .order_by(
                case((Order.due_date.is_(None), 1), else_=0),
                Order.due_date.asc(),
                Order.created_at.asc(),
            )
        )
        if customer_id is not None:
            stmt = stmt.where(Order.customer_id == customer_id)
        result = await self.db.execute(stmt)
        today = datetime.utcnow().date()

        outstanding = []
        for order, customer_name, phone_number in result.all():
            outstanding.append({
                "order_id": order.id,
                "order_number": order.order_number,
                "total_amount": order.total_amount,
                "paid_amount": order.paid_amount,
                "outstanding_amount": outstanding_balance(order),
                "payment_status": order.payment_status,
                "due_date": order.due_date,
                "days_overdue": (today - order.due_date).days if order.due_date else None,
                "customer_name": customer_name,
                "phone_number": phone_number,
            })
        return outstanding

    async def get_customer(self, customer_id: uuid.UUID) -> Customer | None:
        """Получить клиента."""
        result = await self.db.execute(select(Customer).where(Customer.id == customer_id))
        return result.scalar_one_or_none()

    async def search_customers_by_phone(self, phone: str | None, limit: int = 20) -> list[dict]:
        """
        Активные клиенты по части номера телефона.

        Для каждого клиента считаются заказы и общий остаток к оплате по
        неоплаченным и частично оплаченным заказам.
        """
        phone = (phone or "").strip()
        if not phone:
            raise PaymentValidationError("Номер телефона для поиска обязателен")

        outstanding = case(
            (Order.payment_status.in_(["unpaid", "partial"]), Order.total_amount - Order.paid_amount),
            else_=0,
        )
        stmt = (
            select(
                Customer,
                func.count(Order.id).label("total_orders"),
                func.coalesce(func.sum(outstanding), 0).label("outstanding_amount"),
            )
            .outerjoin(Order, and_(Order.customer_id == Customer.id, Order.deleted_at.is_(None)))
            .where(Customer.phone_number.ilike(f"%{phone}%"), Customer.status == "active")
            .group_by(Customer.id)
            .order_by(Customer.customer_name)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "customer_id": customer.id,
                "customer_name": customer.customer_name,
                "phone_number": customer.phone_number,
                "total_orders": total_orders,
                "outstanding_amount": Decimal(str(outstanding_amount or 0)).quantize(CENT),
            }
            for customer, total_orders, outstanding_amount in result.all()
        ]

    async def get_payment_analytics(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[dict]:
        """Выручка по дням и способам оплаты, новые дни первыми."""
        day = func.date(Payment.payment_date, type_=Date)
        conditions = [Payment.deleted_at.is_(None), Payment.status == "completed"]
        if date_from:
            conditions.append(Payment.payment_date >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(Payment.payment_date <= datetime.combine(date_to, time.max))

        stmt = (
            select(
                day.label("day"),
                Payment.payment_method,
                func.coalesce(func.sum(Payment.amount), 0).label("total"),
                func.count(Payment.id).label("items_count"),
            )
            .where(*conditions)
            .group_by(day, Payment.payment_method)
            .order_by(day.desc(), Payment.payment_method)
        )
        result = await self.db.execute(stmt)

        analytics = []
        for row in result:
            total = Decimal(str(row.total or 0)).quantize(CENT)
            analytics.append({
                "day": row.day,
                "payment_method": row.payment_method,
                "total_amount": total,
                "total_count": row.items_count,
                "avg_amount": (total / row.items_count).quantize(CENT) if row.items_count else ZERO,
            })
        return analytics
