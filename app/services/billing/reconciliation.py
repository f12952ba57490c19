"""Invoice status reconciliation.

Every transition follows the same unit of work: lock the invoice row,
recompute the ledger from completed payments and refunds, apply the status
rule, emit events, commit. The status decision is a function of the
recomputed ledger only, so payments completing in any order converge on the
same invoice state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.billing import (
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    RefundType,
)
from app.services.billing.ledger import (
    InvoiceLedger,
    compute_ledger,
    payment_total_refunded,
)
from app.services.common import ensure_utc, utc_now
from app.services.events import emit_event
from app.services.events.types import EventType
from app.services.exceptions import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    InvoiceStatus.pending: {InvoiceStatus.paid, InvoiceStatus.overdue, InvoiceStatus.cancelled},
    InvoiceStatus.overdue: {InvoiceStatus.paid, InvoiceStatus.cancelled},
    InvoiceStatus.paid: {InvoiceStatus.pending, InvoiceStatus.archived},
    InvoiceStatus.cancelled: set(),
    InvoiceStatus.archived: set(),
}

CLOSED_STATUSES = (InvoiceStatus.cancelled, InvoiceStatus.archived)


@dataclass(frozen=True)
class TransitionResult:
    changed: bool
    from_status: InvoiceStatus
    to_status: InvoiceStatus
    ledger: InvoiceLedger | None = None


def commit_or_raise(db: Session) -> None:
    """Commit, turning storage failures into a rolled back PersistenceError."""
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Concurrent modification detected: %s", exc)
        raise PersistenceError(
            "The invoice was modified concurrently; retry the operation"
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Billing transaction failed")
        raise PersistenceError("Storage failure; the operation was rolled back") from exc


def lock_invoice(db: Session, invoice_id) -> Invoice:
    """Load the invoice with a row lock, serialising transitions per invoice."""
    try:
        db.flush()
        invoice = (
            db.query(Invoice)
            .filter(Invoice.id == invoice_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not lock invoice") from exc
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def _set_status(invoice: Invoice, to_status: InvoiceStatus) -> None:
    if to_status not in VALID_TRANSITIONS[invoice.status]:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} cannot move from "
            f"{invoice.status.value} to {to_status.value}"
        )
    invoice.status = to_status


def _apply_ledger(
    db: Session,
    invoice: Invoice,
    now: datetime,
    actor: str | None,
    allow_reopen: bool,
) -> TransitionResult:
    """Settle or re-open the invoice according to its recomputed ledger."""
    from_status = invoice.status
    ledger = compute_ledger(db, invoice)
    if invoice.status in CLOSED_STATUSES:
        return TransitionResult(False, from_status, from_status, ledger)

    if ledger.is_settled and invoice.status != InvoiceStatus.paid:
        _set_status(invoice, InvoiceStatus.paid)
        invoice.paid_date = now
        emit_event(db, EventType.invoice_paid, invoice, actor=actor, now=now)
        logger.info(
            "Invoice %s paid (net paid %s of %s)",
            invoice.invoice_number,
            ledger.net_paid,
            ledger.total_amount,
        )
        return TransitionResult(True, from_status, invoice.status, ledger)

    if allow_reopen and invoice.status == InvoiceStatus.paid and not ledger.is_settled:
        _set_status(invoice, InvoiceStatus.pending)
        invoice.paid_date = None
        logger.info(
            "Invoice %s re-opened, %s remaining",
            invoice.invoice_number,
            ledger.remaining,
        )
        return TransitionResult(True, from_status, invoice.status, ledger)

    return TransitionResult(False, from_status, from_status, ledger)


def record_payment(
    db: Session,
    invoice: Invoice,
    payment: Payment,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    """Reconcile an invoice after one of its payments completed.

    Idempotent: repeating the call for an already counted payment changes
    nothing, including ``paid_date``.
    """
    now = utc_now(now)
    if payment.invoice_id != invoice.id:
        raise ValidationError("Payment does not belong to this invoice")
    if payment.status != PaymentStatus.completed:
        raise InvalidStateError(
            f"Payment {payment.payment_reference} is {payment.status.value}, not completed"
        )
    invoice = lock_invoice(db, invoice.id)
    result = _apply_ledger(db, invoice, now, actor, allow_reopen=False)
    if commit:
        commit_or_raise(db)
    return result


def record_refund(
    db: Session,
    payment: Payment,
    refund: Refund,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    """Reconcile an invoice after a refund against one of its payments completed.

    A full refund also marks the payment refunded. A refund that leaves a
    balance re-opens a paid invoice and clears its ``paid_date``.
    """
    now = utc_now(now)
    if refund.payment_id != payment.id:
        raise ValidationError("Refund does not belong to this payment")
    if refund.status != RefundStatus.completed:
        raise InvalidStateError(
            f"Refund {refund.refund_reference} is {refund.status.value}, not completed"
        )
    invoice = lock_invoice(db, payment.invoice_id)
    if payment_total_refunded(db, payment) > payment.amount:
        raise InvalidStateError(
            f"Refunds would exceed payment {payment.payment_reference} amount"
        )
    if refund.refund_type == RefundType.full and payment.status != PaymentStatus.refunded:
        payment.status = PaymentStatus.refunded
    result = _apply_ledger(db, invoice, now, actor, allow_reopen=True)
    if commit:
        commit_or_raise(db)
    return result


def reconcile(
    db: Session,
    invoice: Invoice,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    """Re-apply the status rule after the invoice amounts changed."""
    now = utc_now(now)
    invoice = lock_invoice(db, invoice.id)
    result = _apply_ledger(db, invoice, now, actor, allow_reopen=True)
    if commit:
        commit_or_raise(db)
    return result


def cancel(
    db: Session,
    invoice: Invoice,
    reason: str | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    now = utc_now(now)
    invoice = lock_invoice(db, invoice.id)
    from_status = invoice.status
    if invoice.status == InvoiceStatus.paid:
        raise InvalidStateError("Cannot cancel a paid invoice")
    if invoice.status == InvoiceStatus.cancelled:
        raise InvalidStateError("Invoice is already cancelled")
    if invoice.status == InvoiceStatus.archived:
        raise InvalidStateError("Cannot cancel an archived invoice")

    _set_status(invoice, InvoiceStatus.cancelled)
    metadata = dict(invoice.metadata_ or {})
    if reason:
        metadata["cancellation_reason"] = reason
    metadata["cancelled_at"] = now.isoformat()
    invoice.metadata_ = metadata
    emit_event(db, EventType.invoice_cancelled, invoice, actor=actor, now=now)
    logger.info("Invoice %s cancelled", invoice.invoice_number)
    if commit:
        commit_or_raise(db)
    return TransitionResult(True, from_status, invoice.status)


def mark_overdue(
    db: Session,
    invoice: Invoice,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    """Mark a pending invoice overdue once its due date has passed; no-op otherwise."""
    now = utc_now(now)
    invoice = lock_invoice(db, invoice.id)
    from_status = invoice.status
    if invoice.status != InvoiceStatus.pending or not invoice.due_date < now.date():
        return TransitionResult(False, from_status, from_status)

    _set_status(invoice, InvoiceStatus.overdue)
    emit_event(db, EventType.invoice_overdue, invoice, actor=actor, now=now)
    logger.info("Invoice %s overdue (due %s)", invoice.invoice_number, invoice.due_date)
    if commit:
        commit_or_raise(db)
    return TransitionResult(True, from_status, invoice.status)


def archive(
    db: Session,
    invoice: Invoice,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> TransitionResult:
    """Archive a paid invoice whose paid date is older than the retention window."""
    now = utc_now(now)
    retention_days = (
        settings.archive_retention_days if retention_days is None else retention_days
    )
    invoice = lock_invoice(db, invoice.id)
    from_status = invoice.status
    paid_date = ensure_utc(invoice.paid_date)
    if (
        invoice.status != InvoiceStatus.paid
        or paid_date is None
        or paid_date >= now - timedelta(days=retention_days)
    ):
        return TransitionResult(False, from_status, from_status)

    _set_status(invoice, InvoiceStatus.archived)
    logger.info("Invoice %s archived", invoice.invoice_number)
    if commit:
        commit_or_raise(db)
    return TransitionResult(True, from_status, invoice.status)
