"""Payments API."""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.config import settings
from app.core.auth import get_current_user, require_roles
from app.core.cache import cache_service, get_cache_key_payment_methods, get_cache_key_payment_stats
from app.database import get_db
from app.services.exceptions import (
    LedgerIntegrityError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentServiceError,
    PaymentValidationError,
)
from app.services.ledger import outstanding_balance
from app.services.payment_service import PaymentService
from app.services.receipt_service import ReceiptService
from app.services.refund_service import RefundService

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: PaymentServiceError) -> HTTPException:
    """Перевести доменную ошибку в HTTP-ответ."""
    if isinstance(e, PaymentValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, (OrderNotFoundError, PaymentNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, LedgerIntegrityError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(e))


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Внутренняя ошибка сервера",
    )


# ----------------------------------------------------------------------
# Схемы
# ----------------------------------------------------------------------


class RecordPaymentRequest(BaseModel):
    """Запрос на запись платежа."""

    order_id: uuid.UUID | None = None
    amount: Decimal | str | None = None
    payment_method: str | None = None  # method_code из справочника
    reference_number: str | None = None
    notes: str | None = None
    generate_receipt: bool = True


class UpdatePaymentRequest(BaseModel):
    """Запрос на изменение платежа. Передаются только изменяемые поля."""

    amount: Decimal | str | None = None
    payment_method: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    status: str | None = None


class RefundRequest(BaseModel):
    """Запрос на возврат."""

    refund_amount: Decimal | str | None = None
    refund_reason: str | None = None
    refund_method: str | None = None
    refund_reference: str | None = None


class ReceiptResponse(BaseModel):
    """Квитанция."""

    id: uuid.UUID
    payment_id: uuid.UUID
    receipt_number: str
    receipt_data: dict
    generated_by: str
    generated_at: datetime

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    """Платёж."""

    id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    payment_method: str
    reference_number: str | None = None
    transaction_id: str
    receipt_number: str
    status: str
    notes: str | None = None
    refund_amount: Decimal
    processed_by: str
    payment_date: datetime
    updated_by: str | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    model_config = {"from_attributes": True}


class RefundResponse(BaseModel):
    """Возврат."""

    id: uuid.UUID
    payment_id: uuid.UUID
    refund_amount: Decimal
    refund_reason: str
    refund_method: str
    refund_reference: str | None = None
    status: str
    processed_by: str
    processed_at: datetime

    model_config = {"from_attributes": True}


class RecordPaymentResponse(BaseModel):
    """Ответ на запись платежа."""

    success: bool
    payment_id: uuid.UUID
    receipt_number: str
    transaction_id: str
    receipt: ReceiptResponse | None = None
    message: str


class MessageResponse(BaseModel):
    """Простой ответ."""

    success: bool
    message: str


class CreateRefundResponse(BaseModel):
    """Ответ на возврат."""

    success: bool
    refund_id: uuid.UUID
    message: str


class ReceiptResultResponse(BaseModel):
    """Ответ на запрос квитанции."""

    success: bool
    receipt: ReceiptResponse
    message: str
    payment_deleted_at: datetime | None = None  # платёж аннулирован, квитанция осталась


class PaymentListResponse(BaseModel):
    """Страница платежей."""

    payments: List[PaymentResponse]
    total: int
    page: int
    limit: int


class OrderPaymentsResponse(BaseModel):
    """Платежи заказа вместе с его финансовым состоянием."""

    order_id: uuid.UUID
    order_number: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    payment_status: str
    payments: List[PaymentResponse]


class PaymentMethodResponse(BaseModel):
    """Способ оплаты."""

    method_code: str
    method_name: str
    description: str | None = None
    requires_reference: bool
    sort_order: int

    model_config = {"from_attributes": True}


class MethodStats(BaseModel):
    """Разбивка по способу оплаты."""

    payment_method: str
    total: Decimal
    count: int


class PaymentStatsResponse(BaseModel):
    """Дашборд платежей."""

    total_revenue: Decimal
    total_payments: int
    avg_payment: Decimal
    today_revenue: Decimal
    today_payments: int
    outstanding_orders: int
    outstanding_amount: Decimal
    payment_methods: List[MethodStats]


class OutstandingOrderResponse(BaseModel):
    """Заказ с остатком к оплате."""

    order_id: uuid.UUID
    order_number: str
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    payment_status: str
    due_date: date | None = None
    days_overdue: int | None = None
    customer_name: str | None = None
    phone_number: str | None = None


class CustomerSearchResponse(BaseModel):
    """Клиент с общим остатком к оплате."""

    customer_id: uuid.UUID
    customer_name: str
    phone_number: str | None = None
    total_orders: int
    outstanding_amount: Decimal


class PaymentAnalyticsResponse(BaseModel):
    """Выручка за день по одному способу оплаты."""

    day: date
    payment_method: str
    total_amount: Decimal
    total_count: int
    avg_amount: Decimal


# ----------------------------------------------------------------------
# Чтение
# ----------------------------------------------------------------------


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    search: str | None = None,
    payment_method: str | None = None,
    payment_status: str | None = Query(None, alias="status"),
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Список платежей с фильтрами."""
    payments, total = await PaymentService(db).list_payments(
        search=search,
        payment_method=payment_method,
        status=payment_status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/methods/active", response_model=List[PaymentMethodResponse])
async def get_active_methods(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Активные способы оплаты."""
    cache_key = get_cache_key_payment_methods()
    cached = await cache_service.get(cache_key)
    if cached is not None:
        return [PaymentMethodResponse(**item) for item in cached]

    methods = await PaymentService(db).get_active_methods()
    result = [PaymentMethodResponse.model_validate(m) for m in methods]
    await cache_service.set(
        cache_key,
        [item.model_dump(mode="json") for item in result],
        ttl=settings.methods_cache_ttl,
    )
    return result


@router.get("/stats/dashboard", response_model=PaymentStatsResponse)
async def get_dashboard_stats(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Сводная статистика по платежам."""
    cache_key = get_cache_key_payment_stats()
    cached = await cache_service.get(cache_key)
    if cached is not None:
        return PaymentStatsResponse(**cached)

    stats = PaymentStatsResponse(**await PaymentService(db).get_dashboard_stats())
    await cache_service.set(cache_key, stats.model_dump(mode="json"), ttl=settings.stats_cache_ttl)
    return stats


@router.get("/outstanding", response_model=List[OutstandingOrderResponse])
async def get_outstanding_orders(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Заказы с остатком к оплате, по сроку."""
    orders = await PaymentService(db).get_outstanding_orders()
    return [OutstandingOrderResponse(**order) for order in orders]


@router.get("/stats/analytics", response_model=List[PaymentAnalyticsResponse])
async def get_payment_analytics(
    date_from: date | None = None,
    date_to: date | None = None,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Выручка по дням и способам оплаты за период."""
    rows = await PaymentService(db).get_payment_analytics(date_from=date_from, date_to=date_to)
    return [PaymentAnalyticsResponse(**row) for row in rows]


@router.get("/customers/search", response_model=List[CustomerSearchResponse])
async def search_customers(
    phone: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Поиск активных клиентов по номеру телефона для приёма оплаты."""
    try:
        customers = await PaymentService(db).search_customers_by_phone(phone, limit=limit)
    except PaymentServiceError as e:
        raise _http_error(e)
    return [CustomerSearchResponse(**customer) for customer in customers]


@router.get("/customers/{customer_id}/outstanding", response_model=List[OutstandingOrderResponse])
async def get_customer_outstanding_orders(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Неоплаченные заказы клиента."""
    service = PaymentService(db)
    if not await service.get_customer(customer_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Клиент {customer_id} не найден",
        )
    orders = await service.get_outstanding_orders(customer_id=customer_id)
    return [OutstandingOrderResponse(**order) for order in orders]


@router.get("/order/{order_id}", response_model=OrderPaymentsResponse)
async def get_order_payments(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Платежи заказа и его текущий баланс."""
    service = PaymentService(db)
    order = await service.get_order(order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Заказ {order_id} не найден",
        )

    payments = await service.get_order_payments(order_id)
    return OrderPaymentsResponse(
        order_id=order.id,
        order_number=order.order_number,
        total_amount=order.total_amount,
        paid_amount=order.paid_amount,
        outstanding_amount=outstanding_balance(order),
        payment_status=order.payment_status,
        payments=[PaymentResponse.model_validate(p) for p in payments],
    )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: uuid.UUID,
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Получить платёж. include_deleted=true показывает аннулированные."""
    payment = await PaymentService(db).get_payment(payment_id, include_deleted=include_deleted)
    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Платёж {payment_id} не найден",
        )
    return PaymentResponse.model_validate(payment)


@router.get("/{payment_id}/refunds", response_model=List[RefundResponse])
async def get_payment_refunds(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Возвраты по платежу."""
    refunds = await RefundService(db).list_refunds(payment_id)
    return [RefundResponse.model_validate(r) for r in refunds]


# ----------------------------------------------------------------------
# Изменения
# ----------------------------------------------------------------------


@router.post("", response_model=RecordPaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    request: RecordPaymentRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """
    Записать платёж по заказу.

    Обновляет сумму оплаты и статус заказа, по умолчанию сразу выпускает квитанцию.
    """
    try:
        result = await PaymentService(db).record_payment(
            order_id=request.order_id,
            amount=request.amount,
            payment_method=request.payment_method,
            reference_number=request.reference_number,
            notes=request.notes,
            generate_receipt=request.generate_receipt,
            actor=user["username"],
        )
    except PaymentServiceError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Ошибка записи платежа по заказу {request.order_id}: {e}", exc_info=True)
        raise _internal_error()

    receipt = result["receipt"]
    return RecordPaymentResponse(
        success=True,
        payment_id=result["payment_id"],
        receipt_number=result["receipt_number"],
        transaction_id=result["transaction_id"],
        receipt=ReceiptResponse.model_validate(receipt) if receipt else None,
        message="Платёж записан",
    )


@router.put("/{payment_id}", response_model=MessageResponse)
async def update_payment(
    payment_id: uuid.UUID,
    request: UpdatePaymentRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Изменить платёж и согласовать сумму оплаты заказа."""
    try:
        await PaymentService(db).update_payment(
            payment_id,
            actor=user["username"],
            **request.model_dump(exclude_unset=True),
        )
    except PaymentServiceError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Ошибка изменения платежа {payment_id}: {e}", exc_info=True)
        raise _internal_error()

    return MessageResponse(success=True, message="Платёж изменён")


@router.delete("/{payment_id}", response_model=MessageResponse)
async def void_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "manager")),
):
    """Аннулировать платёж (мягкое удаление)."""
    try:
        await PaymentService(db).void_payment(payment_id, actor=user["username"])
    except PaymentServiceError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Ошибка аннулирования платежа {payment_id}: {e}", exc_info=True)
        raise _internal_error()

    return MessageResponse(success=True, message="Платёж аннулирован")


@router.post("/{payment_id}/refund", response_model=CreateRefundResponse, status_code=status.HTTP_201_CREATED)
async def refund_payment(
    payment_id: uuid.UUID,
    request: RefundRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "manager")),
):
    """Оформить возврат по платежу."""
    try:
        refund = await RefundService(db).process_refund(
            payment_id,
            refund_amount=request.refund_amount,
            refund_reason=request.refund_reason,
            refund_method=request.refund_method,
            refund_reference=request.refund_reference,
            actor=user["username"],
        )
    except PaymentServiceError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Ошибка возврата по платежу {payment_id}: {e}", exc_info=True)
        raise _internal_error()

    return CreateRefundResponse(success=True, refund_id=refund.id, message="Возврат оформлен")


@router.post("/{payment_id}/receipt", response_model=ReceiptResultResponse)
async def get_or_generate_receipt(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Вернуть квитанцию платежа, при отсутствии сгенерировать."""
    try:
        receipt, created = await ReceiptService(db).get_or_generate(payment_id, actor=user["username"])
    except PaymentServiceError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Ошибка генерации квитанции для платежа {payment_id}: {e}", exc_info=True)
        raise _internal_error()

    payment = await PaymentService(db).get_payment(payment_id, include_deleted=True)
    deleted_at = payment.deleted_at if payment else None
    if created:
        message = "Квитанция сгенерирована"
    elif deleted_at:
        message = "Квитанция уже существует, платёж аннулирован"
    else:
        message = "Квитанция уже существует"

    return ReceiptResultResponse(
        success=True,
        receipt=ReceiptResponse.model_validate(receipt),
        message=message,
        payment_deleted_at=deleted_at,
    )
