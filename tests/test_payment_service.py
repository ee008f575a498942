"""Запись, изменение и аннулирование платежей."""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models import AuditLog, Order, Payment, PaymentReceipt
from app.services.audit_service import AuditService
from app.services.exceptions import (
    LedgerIntegrityError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentValidationError,
)
from app.services.ledger import derive_payment_status
from app.services.payment_service import PaymentService
from app.services.receipt_service import ReceiptService


async def _record(db, order, amount, method="cash", **kwargs):
    return await PaymentService(db).record_payment(
        order_id=order.id,
        amount=amount,
        payment_method=method,
        actor=kwargs.pop("actor", "cashier1"),
        **kwargs,
    )


def _assert_ledger_invariant(order: Order):
    assert Decimal("0") <= order.paid_amount <= order.total_amount
    assert order.payment_status == derive_payment_status(order.paid_amount, order.total_amount)


# =============================================================================
# Payment Recorder
# =============================================================================

class TestRecordPayment:

    async def test_full_payment_marks_order_paid(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        result = await _record(db, order, "100.00")

        await db.refresh(order)
        assert result["success"] is True
        assert order.paid_amount == Decimal("100.00")
        assert order.payment_status == "paid"
        assert result["receipt"] is not None
        assert result["receipt"].receipt_number == result["receipt_number"]
        assert result["transaction_id"].startswith("TXN-")

    async def test_amount_over_outstanding_is_rejected(self, db, payment_methods, make_order, count_rows):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError) as exc:
            await _record(db, order, "150.00")

        assert "150.00" in str(exc.value)
        assert "100.00" in str(exc.value)
        await db.refresh(order)
        assert order.paid_amount == Decimal("0.00")
        assert order.payment_status == "unpaid"
        assert await count_rows(Payment) == 0
        assert await count_rows(AuditLog) == 0

    async def test_partial_payment(self, db, payment_methods, make_order):
        order = await make_order("200.00", paid="50.00")

        await _record(db, order, "50.00")

        await db.refresh(order)
        assert order.paid_amount == Decimal("100.00")
        assert order.payment_status == "partial"

    async def test_exact_outstanding_balance_is_accepted(self, db, payment_methods, make_order):
        order = await make_order("75.50", paid="25.25")

        await _record(db, order, "50.25")

        await db.refresh(order)
        assert order.paid_amount == Decimal("75.50")
        assert order.payment_status == "paid"

    async def test_one_cent_over_outstanding_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("75.50", paid="25.25")

        with pytest.raises(PaymentValidationError, match="50.26"):
            await _record(db, order, "50.26")

    async def test_fully_paid_order_rejects_further_payments(self, db, payment_methods, make_order):
        order = await make_order("40.00", paid="40.00")

        with pytest.raises(PaymentValidationError, match="0.00"):
            await _record(db, order, "0.01")

    @pytest.mark.parametrize("amount", ["0", "-5.00", "0.001"])
    async def test_non_positive_amount_is_rejected(self, db, payment_methods, make_order, amount):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError, match="больше 0"):
            await _record(db, order, amount)

    async def test_unparsable_amount_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError):
            await _record(db, order, "ten dollars")

    async def test_missing_fields_are_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        service = PaymentService(db)
        order_id = order.id

        with pytest.raises(PaymentValidationError, match="обязательны"):
            await service.record_payment(order_id=order_id, amount=None, payment_method="cash", actor="c")
        with pytest.raises(PaymentValidationError, match="обязательны"):
            await service.record_payment(order_id=order_id, amount="10", payment_method="", actor="c")
        with pytest.raises(PaymentValidationError, match="обязательны"):
            await service.record_payment(order_id=None, amount="10", payment_method="cash", actor="c")

    async def test_unknown_order(self, db, payment_methods):
        with pytest.raises(OrderNotFoundError):
            await PaymentService(db).record_payment(
                order_id=uuid.uuid4(), amount="10.00", payment_method="cash", actor="cashier1",
            )

    async def test_soft_deleted_order_is_not_found(self, db, payment_methods, make_order):
        order = await make_order("100.00", deleted_at=datetime.utcnow())

        with pytest.raises(OrderNotFoundError):
            await _record(db, order, "10.00")

    async def test_inactive_method_is_rejected(self, db, payment_methods, make_order, count_rows):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError, match="cheque"):
            await _record(db, order, "10.00", method="cheque")
        assert await count_rows(Payment) == 0

    async def test_unknown_method_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError, match="bitcoin"):
            await _record(db, order, "10.00", method="bitcoin")

    async def test_method_requiring_reference(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        with pytest.raises(PaymentValidationError, match="ebirr"):
            await _record(db, order, "10.00", method="ebirr")
        # откат после отказа сбрасывает загруженные атрибуты
        await db.refresh(order)

        result = await _record(db, order, "10.00", method="ebirr", reference_number="EB-778812")
        payment = await db.get(Payment, result["payment_id"])
        assert payment.reference_number == "EB-778812"

    async def test_payment_row_contents(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        result = await _record(db, order, "30.00", notes="Задаток", actor="cashier7")

        payment = await db.get(Payment, result["payment_id"])
        assert payment.order_id == order.id
        assert payment.amount == Decimal("30.00")
        assert payment.status == "completed"
        assert payment.refund_amount == Decimal("0.00")
        assert payment.processed_by == "cashier7"
        assert payment.notes == "Задаток"
        assert payment.receipt_number == result["receipt_number"]
        assert payment.deleted_at is None

    async def test_writes_single_create_audit_entry(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        result = await _record(db, order, "30.00")

        entries = (await db.execute(select(AuditLog))).scalars().all()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action_type == "CREATE"
        assert entry.table_name == "payments"
        assert entry.record_id == str(result["payment_id"])
        assert entry.actor == "cashier1"
        assert entry.new_values["amount"] == "30.00"
        assert entry.old_values is None

    async def test_without_receipt(self, db, payment_methods, make_order, count_rows):
        order = await make_order("100.00")

        result = await _record(db, order, "30.00", generate_receipt=False)

        assert result["receipt"] is None
        assert await count_rows(PaymentReceipt) == 0

    async def test_receipt_snapshot_contents(self, db, payment_methods, make_order):
        order = await make_order("100.00")

        result = await _record(db, order, "60.00", method="bank_transfer", reference_number="BT-1")

        data = result["receipt"].receipt_data
        assert data["order_number"] == order.order_number
        assert data["customer_name"] == "Hodan Ali"
        assert data["amount"] == "60.00"
        assert data["payment_method"] == "bank_transfer"
        assert data["payment_method_name"] == "Bank Transfer"
        assert data["paid_amount"] == "60.00"
        assert data["remaining_amount"] == "40.00"
        assert data["payment_status"] == "partial"
        assert data["processed_by"] == "cashier1"

    async def test_order_without_customer_gets_blank_name(self, db, payment_methods, make_order):
        order = await make_order("100.00", with_customer=False)

        result = await _record(db, order, "10.00")

        assert result["receipt"].receipt_data["customer_name"] == ""

    async def test_customer_lookup_failure_does_not_fail_payment(self, db, payment_methods, make_order, monkeypatch):
        order = await make_order("100.00")

        async def broken_lookup(self, customer_id):
            raise RuntimeError("customers table unavailable")

        monkeypatch.setattr(ReceiptService, "_lookup_customer", broken_lookup)

        result = await _record(db, order, "100.00")

        await db.refresh(order)
        assert order.payment_status == "paid"
        assert result["receipt"].receipt_data["customer_name"] == ""

    async def test_audit_failure_rolls_back_everything(self, db, payment_methods, make_order, count_rows, monkeypatch):
        order = await make_order("100.00")

        async def failing_log(self, *args, **kwargs):
            raise RuntimeError("audit storage down")

        monkeypatch.setattr(AuditService, "log", failing_log)

        with pytest.raises(RuntimeError):
            await _record(db, order, "100.00")

        await db.refresh(order)
        assert order.paid_amount == Decimal("0.00")
        assert order.payment_status == "unpaid"
        assert await count_rows(Payment) == 0
        assert await count_rows(PaymentReceipt) == 0

    async def test_sequence_keeps_ledger_invariant(self, db, payment_methods, make_order):
        order = await make_order("90.00")
        service = PaymentService(db)

        first = await _record(db, order, "30.00")
        await _record(db, order, "45.00")
        await service.update_payment(first["payment_id"], actor="admin1", amount="15.00")
        await service.void_payment(first["payment_id"], actor="admin1")
        await _record(db, order, "45.00")

        await db.refresh(order)
        _assert_ledger_invariant(order)
        assert order.paid_amount == Decimal("90.00")
        assert order.payment_status == "paid"

        active = await service.get_order_payments(order.id)
        assert sum(p.amount for p in active) == order.paid_amount


# =============================================================================
# Payment Updater
# =============================================================================

class TestUpdatePayment:

    async def test_amount_increase_applies_delta(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")

        await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="70.00")

        await db.refresh(order)
        payment = await db.get(Payment, result["payment_id"])
        assert payment.amount == Decimal("70.00")
        assert payment.updated_by == "admin1"
        assert order.paid_amount == Decimal("70.00")
        assert order.payment_status == "partial"

    async def test_amount_decrease_applies_delta(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "100.00")

        await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="60.00")

        await db.refresh(order)
        assert order.paid_amount == Decimal("60.00")
        assert order.payment_status == "partial"

    async def test_exceeding_total_is_rejected_with_max_allowed(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")

        with pytest.raises(PaymentValidationError) as exc:
            await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="120.00")

        assert "60.00" in str(exc.value)
        await db.refresh(order)
        payment = await db.get(Payment, result["payment_id"])
        assert order.paid_amount == Decimal("40.00")
        assert payment.amount == Decimal("40.00")

    async def test_non_amount_fields_leave_order_untouched(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")
        await db.refresh(order)
        updated_at = order.updated_at

        await PaymentService(db).update_payment(
            result["payment_id"],
            actor="admin1",
            payment_method="bank_transfer",
            reference_number="BT-42",
            notes="исправлен способ оплаты",
        )

        await db.refresh(order)
        payment = await db.get(Payment, result["payment_id"])
        assert payment.payment_method == "bank_transfer"
        assert payment.reference_number == "BT-42"
        assert order.paid_amount == Decimal("40.00")
        assert order.updated_at == updated_at

    async def test_inactive_method_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")

        with pytest.raises(PaymentValidationError, match="cheque"):
            await PaymentService(db).update_payment(result["payment_id"], actor="admin1", payment_method="cheque")

    async def test_switch_to_method_requiring_reference(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")
        service = PaymentService(db)

        with pytest.raises(PaymentValidationError, match="ebirr"):
            await service.update_payment(result["payment_id"], actor="admin1", payment_method="ebirr")

        payment = await service.update_payment(
            result["payment_id"], actor="admin1", payment_method="ebirr", reference_number="EB-5501",
        )
        assert payment.payment_method == "ebirr"
        assert payment.reference_number == "EB-5501"

    async def test_unknown_status_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")

        with pytest.raises(PaymentValidationError, match="archived"):
            await PaymentService(db).update_payment(result["payment_id"], actor="admin1", status="archived")

    async def test_amount_below_refunded_is_rejected(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")
        payment = await db.get(Payment, result["payment_id"])
        payment.refund_amount = Decimal("30.00")
        await db.commit()

        with pytest.raises(PaymentValidationError, match="30.00"):
            await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="20.00")

    async def test_writes_update_audit_with_old_and_new(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")

        await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="50.00")

        entry = (await db.execute(select(AuditLog).where(AuditLog.action_type == "UPDATE"))).scalar_one()
        assert entry.table_name == "payments"
        assert entry.actor == "admin1"
        assert entry.old_values["amount"] == "40.00"
        assert entry.new_values["amount"] == "50.00"

    async def test_missing_payment(self, db, payment_methods):
        with pytest.raises(PaymentNotFoundError):
            await PaymentService(db).update_payment(uuid.uuid4(), actor="admin1", amount="10.00")

    async def test_voided_payment_cannot_be_updated(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")
        service = PaymentService(db)
        await service.void_payment(result["payment_id"], actor="admin1")

        with pytest.raises(PaymentNotFoundError):
            await service.update_payment(result["payment_id"], actor="admin1", amount="10.00")

    async def test_deleted_order_is_not_found(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "40.00")
        order.deleted_at = datetime.utcnow()
        await db.commit()

        with pytest.raises(OrderNotFoundError):
            await PaymentService(db).update_payment(result["payment_id"], actor="admin1", amount="10.00")


# =============================================================================
# Payment Voider
# =============================================================================

class TestVoidPayment:

    async def test_void_reverses_order_ledger(self, db, payment_methods, make_order):
        order = await make_order("150.00", paid="60.00")
        result = await _record(db, order, "40.00")

        payment = await PaymentService(db).void_payment(result["payment_id"], actor="admin1")

        await db.refresh(order)
        assert order.paid_amount == Decimal("60.00")
        assert order.payment_status == "partial"
        assert payment.deleted_at is not None
        assert payment.deleted_by == "admin1"

    async def test_voided_payment_retrievable_for_audit(self, db, payment_methods, make_order):
        order = await make_order("150.00", paid="60.00")
        result = await _record(db, order, "40.00")
        service = PaymentService(db)
        await service.void_payment(result["payment_id"], actor="admin1")

        assert await service.get_payment(result["payment_id"]) is None
        archived = await service.get_payment(result["payment_id"], include_deleted=True)
        assert archived is not None
        assert archived.amount == Decimal("40.00")
        assert await service.get_order_payments(order.id) == []

    async def test_void_last_payment_makes_order_unpaid(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "100.00")

        await PaymentService(db).void_payment(result["payment_id"], actor="admin1")

        await db.refresh(order)
        assert order.paid_amount == Decimal("0.00")
        assert order.payment_status == "unpaid"

    async def test_void_keeps_receipt(self, db, payment_methods, make_order, count_rows):
        order = await make_order("100.00")
        result = await _record(db, order, "100.00")

        await PaymentService(db).void_payment(result["payment_id"], actor="admin1")

        assert await count_rows(PaymentReceipt) == 1

    async def test_writes_delete_audit_with_snapshot(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "25.00")

        await PaymentService(db).void_payment(result["payment_id"], actor="admin1")

        entry = (await db.execute(select(AuditLog).where(AuditLog.action_type == "DELETE"))).scalar_one()
        assert entry.record_id == str(result["payment_id"])
        assert entry.old_values["amount"] == "25.00"
        assert entry.old_values["deleted_at"] is None
        assert entry.new_values is None

    async def test_double_void_is_not_found(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "25.00")
        service = PaymentService(db)
        await service.void_payment(result["payment_id"], actor="admin1")

        with pytest.raises(PaymentNotFoundError):
            await service.void_payment(result["payment_id"], actor="admin1")

        await db.refresh(order)
        assert order.paid_amount == Decimal("0.00")

    async def test_drifted_ledger_is_integrity_error(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        result = await _record(db, order, "50.00")
        # paid_amount рассинхронизирован с платежами
        order.paid_amount = Decimal("20.00")
        order.payment_status = "partial"
        await db.commit()

        with pytest.raises(LedgerIntegrityError):
            await PaymentService(db).void_payment(result["payment_id"], actor="admin1")

        await db.refresh(order)
        payment = await db.get(Payment, result["payment_id"])
        await db.refresh(payment)
        assert order.paid_amount == Decimal("20.00")
        assert payment.deleted_at is None


# =============================================================================
# Read projections
# =============================================================================

class TestReadProjections:

    async def test_list_payments_filters(self, db, payment_methods, make_order):
        first = await make_order("100.00", order_number="ORD-SEARCH-1")
        second = await make_order("100.00")
        await _record(db, first, "10.00")
        await _record(db, second, "20.00", method="bank_transfer")
        voided = await _record(db, second, "5.00")
        await PaymentService(db).void_payment(voided["payment_id"], actor="admin1")

        service = PaymentService(db)
        payments, total = await service.list_payments()
        assert total == 2

        payments, total = await service.list_payments(payment_method="bank_transfer")
        assert total == 1
        assert payments[0].amount == Decimal("20.00")

        payments, total = await service.list_payments(search="SEARCH")
        assert total == 1
        assert payments[0].order_id == first.id

        payments, total = await service.list_payments(search="Hodan")
        assert total == 2

        payments, total = await service.list_payments(page=2, limit=1)
        assert total == 2
        assert len(payments) == 1

    async def test_active_methods_sorted(self, db, payment_methods):
        methods = await PaymentService(db).get_active_methods()
        assert [m.method_code for m in methods] == ["cash", "ebirr", "bank_transfer"]

    async def test_dashboard_stats(self, db, payment_methods, make_order):
        paid = await make_order("100.00")
        partial = await make_order("200.00")
        await make_order("50.00")
        await _record(db, paid, "100.00")
        await _record(db, partial, "50.00", method="bank_transfer")

        stats = await PaymentService(db).get_dashboard_stats()

        assert stats["total_revenue"] == Decimal("150.00")
        assert stats["total_payments"] == 2
        assert stats["avg_payment"] == Decimal("75.00")
        assert stats["today_payments"] == 2
        assert stats["outstanding_orders"] == 2
        assert stats["outstanding_amount"] == Decimal("200.00")
        by_method = {m["payment_method"]: m for m in stats["payment_methods"]}
        assert by_method["cash"]["total"] == Decimal("100.00")
        assert by_method["bank_transfer"]["count"] == 1

    async def test_outstanding_orders(self, db, payment_methods, make_order):
        paid = await make_order("100.00")
        partial = await make_order("80.00")
        await _record(db, paid, "100.00")
        await _record(db, partial, "30.00")

        outstanding = await PaymentService(db).get_outstanding_orders()

        assert [o["order_id"] for o in outstanding] == [partial.id]
        assert outstanding[0]["outstanding_amount"] == Decimal("50.00")
        assert outstanding[0]["customer_name"] == "Hodan Ali"

    async def test_outstanding_orders_for_one_customer(self, db, payment_methods, make_order):
        own = await make_order("80.00")
        await make_order("60.00", with_customer=False)

        outstanding = await PaymentService(db).get_outstanding_orders(customer_id=own.customer_id)

        assert [o["order_id"] for o in outstanding] == [own.id]


class TestCustomerSearch:

    async def test_totals_per_customer(self, db, payment_methods, make_order, customer):
        partial = await make_order("80.00")
        paid = await make_order("50.00")
        await make_order("30.00", deleted_at=datetime.utcnow())
        await _record(db, partial, "20.00")
        await _record(db, paid, "50.00")

        found = await PaymentService(db).search_customers_by_phone("1234")

        assert len(found) == 1
        assert found[0]["customer_id"] == customer.id
        assert found[0]["total_orders"] == 2
        assert found[0]["outstanding_amount"] == Decimal("60.00")

    async def test_customer_without_orders(self, db, customer):
        found = await PaymentService(db).search_customers_by_phone("+25261")

        assert found[0]["total_orders"] == 0
        assert found[0]["outstanding_amount"] == Decimal("0.00")

    async def test_inactive_and_unmatched_customers_are_skipped(self, db, customer):
        customer.status = "inactive"
        await db.commit()

        assert await PaymentService(db).search_customers_by_phone("1234") == []

    async def test_blank_phone_is_rejected(self, db):
        with pytest.raises(PaymentValidationError):
            await PaymentService(db).search_customers_by_phone("  ")


class TestPaymentAnalytics:

    async def test_breakdown_by_day_and_method(self, db, payment_methods, make_order):
        order = await make_order("300.00")
        await _record(db, order, "100.00")
        await _record(db, order, "50.00")
        await _record(db, order, "30.00", method="bank_transfer")
        voided = await _record(db, order, "10.00")
        await PaymentService(db).void_payment(voided["payment_id"], actor="admin1")

        rows = await PaymentService(db).get_payment_analytics()

        today = datetime.utcnow().date()
        by_method = {row["payment_method"]: row for row in rows}
        assert set(by_method) == {"cash", "bank_transfer"}
        assert by_method["cash"]["day"] == today
        assert by_method["cash"]["total_amount"] == Decimal("150.00")
        assert by_method["cash"]["total_count"] == 2
        assert by_method["cash"]["avg_amount"] == Decimal("75.00")
        assert by_method["bank_transfer"]["total_count"] == 1

    async def test_date_range(self, db, payment_methods, make_order):
        order = await make_order("100.00")
        await _record(db, order, "10.00")
        today = datetime.utcnow().date()

        assert len(await PaymentService(db).get_payment_analytics(date_from=today, date_to=today)) == 1
        assert await PaymentService(db).get_payment_analytics(date_to=today - timedelta(days=1)) == []
