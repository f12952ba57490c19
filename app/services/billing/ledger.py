"""Invoice ledger aggregation.

The ledger is derived data: it is always recomputed from completed payments
and completed refunds, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.billing import (
    Invoice,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
)
from app.services.billing.money import ZERO, is_settled, round_money

# Payments that were completed and later fully refunded still count as paid;
# the refund row carries the reversal.
COUNTED_PAYMENT_STATUSES = (PaymentStatus.completed, PaymentStatus.refunded)


@dataclass(frozen=True)
class InvoiceLedger:
    total_amount: Decimal
    total_paid: Decimal
    total_refunded: Decimal

    @property
    def net_paid(self) -> Decimal:
        return self.total_paid - self.total_refunded

    @property
    def remaining(self) -> Decimal:
        return self.total_amount - self.net_paid

    @property
    def is_settled(self) -> bool:
        return is_settled(self.remaining)

    def to_dict(self) -> dict:
        return {
            "total_amount": self.total_amount,
            "total_paid": self.total_paid,
            "total_refunded": self.total_refunded,
            "net_paid": self.net_paid,
            "remaining": self.remaining,
            "is_settled": self.is_settled,
        }

    @classmethod
    def from_records(
        cls,
        total_amount,
        payments: Iterable[Payment],
        refunds: Iterable[Refund],
    ) -> "InvoiceLedger":
        """Compute a ledger from in-memory records without touching the database."""
        total_paid = sum(
            (round_money(p.amount) for p in payments if p.status in COUNTED_PAYMENT_STATUSES),
            ZERO,
        )
        total_refunded = sum(
            (round_money(r.amount) for r in refunds if r.status == RefundStatus.completed),
            ZERO,
        )
        return cls(
            total_amount=round_money(total_amount),
            total_paid=round_money(total_paid),
            total_refunded=round_money(total_refunded),
        )


def _sum_completed_payments(db: Session, invoice_id) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.invoice_id == invoice_id)
        .filter(Payment.status.in_(COUNTED_PAYMENT_STATUSES))
        .scalar()
    )
    return round_money(total or 0)


def _sum_completed_refunds(db: Session, invoice_id) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.invoice_id == invoice_id)
        .filter(Refund.status == RefundStatus.completed)
        .scalar()
    )
    return round_money(total or 0)


def compute_ledger(db: Session, invoice: Invoice) -> InvoiceLedger:
    db.flush()
    return InvoiceLedger(
        total_amount=round_money(invoice.total_amount),
        total_paid=_sum_completed_payments(db, invoice.id),
        total_refunded=_sum_completed_refunds(db, invoice.id),
    )


def payment_total_refunded(db: Session, payment: Payment) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.payment_id == payment.id)
        .filter(Refund.status == RefundStatus.completed)
        .scalar()
    )
    return round_money(total or 0)


def payment_refundable_amount(db: Session, payment: Payment) -> Decimal:
    return round_money(payment.amount) - payment_total_refunded(db, payment)


def payment_can_be_refunded(db: Session, payment: Payment) -> bool:
    return (
        payment.status == PaymentStatus.completed
        and payment_refundable_amount(db, payment) > ZERO
    )
