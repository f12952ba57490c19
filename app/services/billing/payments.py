"""Payment management services.

Gateway processing is simulated: a payment is created ``pending`` and moved
to ``completed`` or ``failed`` by an explicit call (or immediately, when the
caller asks for inline processing).
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.billing import Invoice, Payment, PaymentStatus, PaymentType
from app.schemas.billing import PaymentCreate
from app.services import numbering
from app.services.billing import reconciliation
from app.services.billing.ledger import compute_ledger
from app.services.billing.money import ZERO, parse_amount
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    utc_now,
    validate_enum,
)
from app.services.events import emit_event
from app.services.events.types import EventType
from app.services.exceptions import InvalidStateError, ValidationError
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

OPEN_STATUSES = (PaymentStatus.pending, PaymentStatus.processing)


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


class Payments(ListResponseMixin):
    @staticmethod
    def create(
        db: Session,
        payload: PaymentCreate,
        actor: str | None = None,
        process: bool = False,
        now: datetime | None = None,
    ):
        now = utc_now(now)
        invoice = get_or_404(db, Invoice, payload.invoice_id, "Invoice not found")
        if not invoice.is_active:
            raise InvalidStateError("Invoice has been deleted")
        if invoice.status in reconciliation.CLOSED_STATUSES:
            raise InvalidStateError(f"Cannot pay a {invoice.status.value} invoice")

        remaining = compute_ledger(db, invoice).remaining
        if remaining <= ZERO:
            raise InvalidStateError("Invoice is already fully paid")
        if payload.payment_type == PaymentType.full:
            amount = remaining
        else:
            amount = parse_amount(payload.amount, "amount")
            if amount > remaining:
                raise ValidationError(
                    f"Payment amount exceeds remaining balance of {remaining}",
                    details={"remaining": str(remaining)},
                )

        payment = Payment(
            payment_reference=numbering.next_payment_reference(db, now),
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            payment_method_reference=payload.payment_method_reference,
            amount=amount,
            status=PaymentStatus.pending,
            payment_type=payload.payment_type,
            gateway=payload.gateway or "manual",
            notes=payload.notes,
        )
        db.add(payment)
        reconciliation.commit_or_raise(db)
        db.refresh(payment)
        logger.info(
            "Payment %s of %s created for invoice %s",
            payment.payment_reference,
            payment.amount,
            invoice.invoice_number,
        )
        if process:
            return Payments.complete(db, str(payment.id), actor=actor, now=now)
        return payment

    @staticmethod
    def get(db: Session, payment_id: str):
        return get_or_404(db, Payment, payment_id, "Payment not found")

    @staticmethod
    def list(
        db: Session,
        invoice_id: str | None,
        customer_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Payment)
        if invoice_id:
            query = query.filter(Payment.invoice_id == coerce_uuid(invoice_id))
        if customer_id:
            query = query.filter(Payment.customer_id == coerce_uuid(customer_id))
        if status:
            query = query.filter(
                Payment.status == validate_enum(status, PaymentStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Payment.created_at,
                "amount": Payment.amount,
                "status": Payment.status,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def complete(
        db: Session,
        payment_id: str,
        gateway_transaction_id: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        """Mark a payment completed and reconcile its invoice in one transaction."""
        now = utc_now(now)
        payment = Payments.get(db, payment_id)
        invoice = reconciliation.lock_invoice(db, payment.invoice_id)
        db.refresh(payment)
        if payment.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Payment {payment.payment_reference} is already {payment.status.value}"
            )
        if not invoice.is_active:
            raise InvalidStateError("Invoice has been deleted")
        if invoice.status in reconciliation.CLOSED_STATUSES:
            raise InvalidStateError(
                f"Cannot complete a payment on a {invoice.status.value} invoice"
            )

        payment.status = PaymentStatus.completed
        payment.processed_at = now
        payment.gateway_transaction_id = (
            gateway_transaction_id
            or payment.gateway_transaction_id
            or f"TXN-{payment.payment_reference}"
        )
        emit_event(db, EventType.payment_completed, invoice, payment, actor=actor, now=now)
        reconciliation.record_payment(db, invoice, payment, actor=actor, now=now, commit=False)
        reconciliation.commit_or_raise(db)
        db.refresh(payment)
        logger.info("Payment %s completed", payment.payment_reference)
        return payment

    @staticmethod
    def fail(
        db: Session,
        payment_id: str,
        reason: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        now = utc_now(now)
        payment = Payments.get(db, payment_id)
        if payment.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Payment {payment.payment_reference} is already {payment.status.value}"
            )
        payment.status = PaymentStatus.failed
        payment.processed_at = now
        payment.notes = _append_note(payment.notes, reason)
        emit_event(
            db, EventType.payment_failed, payment.invoice, payment, actor=actor, now=now
        )
        reconciliation.commit_or_raise(db)
        db.refresh(payment)
        logger.info("Payment %s failed", payment.payment_reference)
        return payment

    @staticmethod
    def delete(db: Session, payment_id: str):
        payment = Payments.get(db, payment_id)
        if payment.status not in (PaymentStatus.pending, PaymentStatus.failed):
            raise InvalidStateError(
                f"Cannot delete a {payment.status.value} payment"
            )
        db.delete(payment)
        reconciliation.commit_or_raise(db)
        logger.info("Payment %s deleted", payment.payment_reference)

