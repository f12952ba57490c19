from decimal import Decimal

import pytest

from app.models.billing import Payment, PaymentStatus, Refund, RefundStatus
from app.services.billing.ledger import (
    InvoiceLedger,
    compute_ledger,
    payment_can_be_refunded,
    payment_refundable_amount,
)
from app.services.billing.money import is_settled, parse_amount
from app.services.exceptions import ValidationError
from tests.factories import make_payment, pay, refund


class TestParseAmount:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("10.50"), Decimal("10.50")),
            ("10", Decimal("10.00")),
            (" 7.1 ", Decimal("7.10")),
            (5, Decimal("5.00")),
            ("10.500", Decimal("10.50")),
        ],
    )
    def test_accepts_exact_values(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", ["10.005", "abc", "NaN", "Infinity", 1.5, True, None])
    def test_rejects_inexact_or_non_numeric(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    def test_rejects_negative(self):
        with pytest.raises(ValidationError, match="greater than zero"):
            parse_amount("-1.00")

    def test_zero_only_when_allowed(self):
        with pytest.raises(ValidationError):
            parse_amount("0")
        assert parse_amount("0", allow_zero=True) == Decimal("0.00")

    def test_label_in_message(self):
        with pytest.raises(ValidationError, match="tax_amount"):
            parse_amount("x", "tax_amount")


def test_is_settled_includes_overpayment():
    assert is_settled(Decimal("0.00"))
    assert is_settled(Decimal("-5.00"))
    assert not is_settled(Decimal("0.01"))


class TestInvoiceLedgerFromRecords:
    def test_counts_only_completed_records(self):
        payments = [
            Payment(amount=Decimal("30.00"), status=PaymentStatus.completed),
            Payment(amount=Decimal("20.00"), status=PaymentStatus.pending),
            Payment(amount=Decimal("15.00"), status=PaymentStatus.failed),
            Payment(amount=Decimal("25.00"), status=PaymentStatus.refunded),
        ]
        refunds = [
            Refund(amount=Decimal("25.00"), status=RefundStatus.completed),
            Refund(amount=Decimal("5.00"), status=RefundStatus.cancelled),
        ]
        ledger = InvoiceLedger.from_records(Decimal("100.00"), payments, refunds)
        assert ledger.total_paid == Decimal("55.00")
        assert ledger.total_refunded == Decimal("25.00")
        assert ledger.net_paid == Decimal("30.00")
        assert ledger.remaining == Decimal("70.00")
        assert not ledger.is_settled

    def test_empty_records(self):
        ledger = InvoiceLedger.from_records(Decimal("40"), [], [])
        assert ledger.total_amount == Decimal("40.00")
        assert ledger.remaining == Decimal("40.00")

    def test_sub_cent_sums_are_exact(self):
        payments = [
            Payment(amount=Decimal("0.10"), status=PaymentStatus.completed) for _ in range(3)
        ]
        ledger = InvoiceLedger.from_records(Decimal("0.30"), payments, [])
        assert ledger.remaining == Decimal("0.00")
        assert ledger.is_settled

    def test_to_dict(self):
        ledger = InvoiceLedger(Decimal("10.00"), Decimal("4.00"), Decimal("1.00"))
        assert ledger.to_dict() == {
            "total_amount": Decimal("10.00"),
            "total_paid": Decimal("4.00"),
            "total_refunded": Decimal("1.00"),
            "net_paid": Decimal("3.00"),
            "remaining": Decimal("7.00"),
            "is_settled": False,
        }


class TestComputeLedger:
    def test_pending_payments_do_not_count(self, db_session, invoice):
        make_payment(db_session, invoice, "40.00")
        ledger = compute_ledger(db_session, invoice)
        assert ledger.total_paid == Decimal("0.00")
        assert ledger.remaining == Decimal("100.00")

    def test_completed_payment_and_refund(self, db_session, invoice):
        payment = pay(db_session, invoice, "60.00")
        refund(db_session, payment, "10.00")
        ledger = compute_ledger(db_session, invoice)
        assert ledger.total_paid == Decimal("60.00")
        assert ledger.total_refunded == Decimal("10.00")
        assert ledger.remaining == Decimal("50.00")

    def test_refundable_amount(self, db_session, invoice):
        payment = pay(db_session, invoice, "60.00")
        assert payment_refundable_amount(db_session, payment) == Decimal("60.00")
        refund(db_session, payment, "45.00")
        assert payment_refundable_amount(db_session, payment) == Decimal("15.00")
        assert payment_can_be_refunded(db_session, payment)

    def test_fully_refunded_payment_cannot_be_refunded(self, db_session, invoice):
        payment = pay(db_session, invoice)
        refund(db_session, payment)
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.refunded
        assert not payment_can_be_refunded(db_session, payment)
