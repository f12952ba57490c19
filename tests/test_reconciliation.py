from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.models.billing import InvoiceStatus, PaymentStatus
from app.models.event_store import EventStore
from app.services import billing as billing_service
from app.services.billing import reconciliation
from app.services.billing.ledger import compute_ledger
from app.services.common import ensure_utc
from app.services.exceptions import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from tests.factories import NOW, make_invoice, make_payment, make_refund, pay, refund


def _event_names(db_session, invoice) -> list[str]:
    rows = (
        db_session.query(EventStore.event_type)
        .filter(EventStore.invoice_id == invoice.id)
        .all()
    )
    return [row.event_type for row in rows]


class TestPaymentSettlement:
    def test_partial_then_final_payment_settles_invoice(self, db_session, invoice):
        pay(db_session, invoice, "60.00")
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.pending
        assert compute_ledger(db_session, invoice).remaining == Decimal("40.00")

        later = NOW + timedelta(hours=2)
        pay(db_session, invoice, "40.00", now=later)
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.paid
        assert ensure_utc(invoice.paid_date) == later
        assert compute_ledger(db_session, invoice).remaining == Decimal("0.00")

    def test_paid_event_follows_payment_completed(self, db_session, invoice):
        pay(db_session, invoice)
        names = _event_names(db_session, invoice)
        assert names.count("invoice.created") == 1
        assert names.count("payment.completed") == 1
        assert names.count("invoice.paid") == 1

    def test_recording_same_payment_twice_is_a_no_op(self, db_session, invoice):
        payment = pay(db_session, invoice)
        db_session.refresh(invoice)
        paid_date = ensure_utc(invoice.paid_date)

        result = reconciliation.record_payment(
            db_session, invoice, payment, now=NOW + timedelta(days=3)
        )

        db_session.refresh(invoice)
        assert result.changed is False
        assert result.ledger.total_paid == Decimal("100.00")
        assert invoice.status == InvoiceStatus.paid
        assert ensure_utc(invoice.paid_date) == paid_date
        assert _event_names(db_session, invoice).count("invoice.paid") == 1

    def test_completion_order_does_not_change_outcome(self, db_session, customer, provider):
        first = make_invoice(db_session, customer, provider)
        second = make_invoice(db_session, customer, provider)
        a1 = make_payment(db_session, first, "60.00")
        a2 = make_payment(db_session, first, "40.00")
        b1 = make_payment(db_session, second, "60.00")
        b2 = make_payment(db_session, second, "40.00")

        for payment in (a1, a2):
            billing_service.payments.complete(db_session, str(payment.id), now=NOW)
        for payment in (b2, b1):
            billing_service.payments.complete(db_session, str(payment.id), now=NOW)

        db_session.refresh(first)
        db_session.refresh(second)
        assert first.status == second.status == InvoiceStatus.paid
        assert ensure_utc(first.paid_date) == ensure_utc(second.paid_date) == NOW
        assert compute_ledger(db_session, first).to_dict() == compute_ledger(
            db_session, second
        ).to_dict()

    def test_overpayment_counts_as_settled(self, db_session, invoice):
        p1 = make_payment(db_session, invoice, "60.00")
        p2 = make_payment(db_session, invoice, "60.00")
        billing_service.payments.complete(db_session, str(p1.id), now=NOW)
        billing_service.payments.complete(db_session, str(p2.id), now=NOW)

        db_session.refresh(invoice)
        ledger = compute_ledger(db_session, invoice)
        assert ledger.remaining == Decimal("-20.00")
        assert invoice.status == InvoiceStatus.paid

    def test_record_payment_requires_completed_payment(self, db_session, invoice):
        payment = make_payment(db_session, invoice, "10.00")
        with pytest.raises(InvalidStateError):
            reconciliation.record_payment(db_session, invoice, payment)

    def test_record_payment_rejects_foreign_payment(self, db_session, customer, provider):
        invoice = make_invoice(db_session, customer, provider)
        other = make_invoice(db_session, customer, provider)
        payment = pay(db_session, other, "10.00")
        with pytest.raises(ValidationError):
            reconciliation.record_payment(db_session, invoice, payment)


class TestRefundReversal:
    def test_partial_refund_reopens_paid_invoice(self, db_session, invoice):
        payment = pay(db_session, invoice)
        refund(db_session, payment, "30.00")

        db_session.refresh(invoice)
        db_session.refresh(payment)
        assert invoice.status == InvoiceStatus.pending
        assert invoice.paid_date is None
        assert compute_ledger(db_session, invoice).remaining == Decimal("30.00")
        assert payment.status == PaymentStatus.completed

    def test_full_refund_round_trip(self, db_session, invoice):
        payment = pay(db_session, invoice)
        refund(db_session, payment)

        db_session.refresh(invoice)
        db_session.refresh(payment)
        assert invoice.status == InvoiceStatus.pending
        assert invoice.paid_date is None
        assert payment.status == PaymentStatus.refunded
        ledger = compute_ledger(db_session, invoice)
        assert ledger.total_paid == Decimal("100.00")
        assert ledger.total_refunded == Decimal("100.00")
        assert ledger.remaining == Decimal("100.00")

    def test_refund_on_unsettled_invoice_keeps_status(self, db_session, invoice):
        payment = pay(db_session, invoice, "50.00")
        refund(db_session, payment, "20.00")
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.pending
        assert compute_ledger(db_session, invoice).remaining == Decimal("70.00")

    def test_racing_refunds_cannot_exceed_payment(self, db_session, invoice):
        payment = pay(db_session, invoice)
        first = make_refund(db_session, payment, "60.00")
        second = make_refund(db_session, payment, "60.00")

        billing_service.refunds.complete(db_session, str(first.id), now=NOW)
        with pytest.raises(InvalidStateError):
            billing_service.refunds.complete(db_session, str(second.id), now=NOW)

    def test_refund_emits_refund_completed(self, db_session, invoice):
        payment = pay(db_session, invoice)
        refund(db_session, payment, "10.00")
        assert _event_names(db_session, invoice).count("refund.completed") == 1


class TestOverdue:
    def test_marks_past_due_invoice_overdue_once(self, db_session, invoice):
        now = NOW.replace(month=3, day=16)
        result = reconciliation.mark_overdue(db_session, invoice, now=now)
        assert result.changed is True
        assert result.to_status == InvoiceStatus.overdue

        again = reconciliation.mark_overdue(db_session, invoice, now=now)
        assert again.changed is False
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.overdue
        assert _event_names(db_session, invoice).count("invoice.overdue") == 1

    def test_due_today_is_not_overdue(self, db_session, invoice):
        assert invoice.due_date == date(2026, 3, 15)
        result = reconciliation.mark_overdue(
            db_session, invoice, now=NOW.replace(month=3, day=15, hour=23)
        )
        assert result.changed is False

    def test_paid_invoice_is_never_overdue(self, db_session, invoice):
        pay(db_session, invoice)
        result = reconciliation.mark_overdue(
            db_session, invoice, now=NOW + timedelta(days=60)
        )
        assert result.changed is False

    def test_overdue_invoice_settles_to_paid(self, db_session, invoice):
        reconciliation.mark_overdue(db_session, invoice, now=NOW + timedelta(days=30))
        pay(db_session, invoice, now=NOW + timedelta(days=31))
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.paid


class TestCancel:
    def test_cancel_records_reason_and_timestamp(self, db_session, invoice):
        result = reconciliation.cancel(db_session, invoice, "Customer left", now=NOW)
        db_session.refresh(invoice)
        assert result.changed is True
        assert invoice.status == InvoiceStatus.cancelled
        assert invoice.metadata_["cancellation_reason"] == "Customer left"
        assert invoice.metadata_["cancelled_at"] == NOW.isoformat()
        assert "invoice.cancelled" in _event_names(db_session, invoice)

    def test_cancel_overdue_invoice(self, db_session, invoice):
        reconciliation.mark_overdue(db_session, invoice, now=NOW + timedelta(days=30))
        reconciliation.cancel(db_session, invoice)
        db_session.refresh(invoice)
        assert invoice.status == InvoiceStatus.cancelled

    def test_cannot_cancel_paid_invoice(self, db_session, invoice):
        pay(db_session, invoice)
        with pytest.raises(InvalidStateError, match="paid"):
            reconciliation.cancel(db_session, invoice)

    def test_cannot_cancel_twice(self, db_session, invoice):
        reconciliation.cancel(db_session, invoice)
        with pytest.raises(InvalidStateError, match="already cancelled"):
            reconciliation.cancel(db_session, invoice)

    def test_cancelled_invoice_ignores_ledger(self, db_session, invoice):
        reconciliation.cancel(db_session, invoice)
        result = reconciliation.reconcile(db_session, invoice)
        assert result.changed is False
        assert result.to_status == InvoiceStatus.cancelled


class TestArchive:
    def test_archives_after_retention_window(self, db_session, invoice):
        pay(db_session, invoice)
        result = reconciliation.archive(
            db_session, invoice, retention_days=365, now=NOW + timedelta(days=366)
        )
        db_session.refresh(invoice)
        assert result.changed is True
        assert invoice.status == InvoiceStatus.archived
        assert "invoice.archived" not in _event_names(db_session, invoice)

    def test_recently_paid_invoice_is_kept(self, db_session, invoice):
        pay(db_session, invoice)
        result = reconciliation.archive(
            db_session, invoice, retention_days=365, now=NOW + timedelta(days=10)
        )
        assert result.changed is False

    def test_unpaid_invoice_is_not_archived(self, db_session, invoice):
        result = reconciliation.archive(
            db_session, invoice, retention_days=0, now=NOW + timedelta(days=1000)
        )
        assert result.changed is False
        assert result.to_status == InvoiceStatus.pending

    def test_archived_invoice_rejects_cancel(self, db_session, invoice):
        pay(db_session, invoice)
        reconciliation.archive(
            db_session, invoice, retention_days=1, now=NOW + timedelta(days=2)
        )
        with pytest.raises(InvalidStateError, match="archived"):
            reconciliation.cancel(db_session, invoice)


class TestPersistenceFailures:
    def test_storage_error_rolls_back(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk full"))
        with pytest.raises(PersistenceError) as excinfo:
            reconciliation.commit_or_raise(db)
        db.rollback.assert_called_once()
        assert excinfo.value.status_code == 503
        assert excinfo.value.detail["code"] == "persistence_error"

    def test_concurrent_modification_rolls_back(self):
        db = MagicMock()
        db.commit.side_effect = StaleDataError("version mismatch")
        with pytest.raises(PersistenceError, match="concurrently"):
            reconciliation.commit_or_raise(db)
        db.rollback.assert_called_once()

    def test_lock_missing_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            reconciliation.lock_invoice(db_session, "8b6a0c1e-8e4f-4d1c-9d6a-0f1b2c3d4e5f")
