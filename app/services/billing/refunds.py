"""Refund management services."""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.billing import (
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    RefundType,
)
from app.schemas.billing import RefundCreate
from app.services import numbering
from app.services.billing import reconciliation
from app.services.billing.ledger import payment_refundable_amount
from app.services.billing.money import ZERO, parse_amount, round_money
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

OPEN_STATUSES = (RefundStatus.pending, RefundStatus.processing)


class Refunds(ListResponseMixin):
    @staticmethod
    def create(
        db: Session,
        payload: RefundCreate,
        actor: str | None = None,
        process: bool = False,
        now: datetime | None = None,
    ):
        now = utc_now(now)
        payment = get_or_404(db, Payment, payload.payment_id, "Payment not found")
        refundable = payment_refundable_amount(db, payment)
        if payment.status != PaymentStatus.completed or refundable <= ZERO:
            raise InvalidStateError(
                "Payment must be completed and have a refundable amount"
            )

        payment_amount = round_money(payment.amount)
        if payload.refund_type == RefundType.full:
            amount = (
                payment_amount
                if payload.amount is None
                else parse_amount(payload.amount, "amount")
            )
            if amount != payment_amount:
                raise ValidationError(
                    f"Full refund amount must equal the payment amount of {payment_amount}"
                )
        else:
            amount = parse_amount(payload.amount, "amount")
        if amount > refundable:
            raise ValidationError(
                f"Refund amount exceeds refundable amount of {refundable}",
                details={"refundable_amount": str(refundable)},
            )

        refund = Refund(
            refund_reference=numbering.next_refund_reference(db, now),
            payment_id=payment.id,
            invoice_id=payment.invoice_id,
            customer_id=payment.customer_id,
            processed_by=actor,
            amount=amount,
            status=RefundStatus.pending,
            refund_type=payload.refund_type,
            reason=payload.reason,
            notes=payload.notes,
            gateway=payment.gateway or "manual",
        )
        db.add(refund)
        reconciliation.commit_or_raise(db)
        db.refresh(refund)
        logger.info(
            "Refund %s of %s created for payment %s",
            refund.refund_reference,
            refund.amount,
            payment.payment_reference,
        )
        if process:
            return Refunds.complete(db, str(refund.id), actor=actor, now=now)
        return refund

    @staticmethod
    def get(db: Session, refund_id: str):
        return get_or_404(db, Refund, refund_id, "Refund not found")

    @staticmethod
    def list(
        db: Session,
        payment_id: str | None,
        invoice_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Refund)
        if payment_id:
            query = query.filter(Refund.payment_id == coerce_uuid(payment_id))
        if invoice_id:
            query = query.filter(Refund.invoice_id == coerce_uuid(invoice_id))
        if status:
            query = query.filter(
                Refund.status == validate_enum(status, RefundStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Refund.created_at,
                "amount": Refund.amount,
                "status": Refund.status,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def complete(
        db: Session,
        refund_id: str,
        gateway_refund_id: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        """Complete a refund and reconcile its invoice in one transaction.

        The refundable amount is re-checked under the invoice lock so two
        refunds racing on the same payment cannot over-refund it.
        """
        now = utc_now(now)
        refund = Refunds.get(db, refund_id)
        invoice = reconciliation.lock_invoice(db, refund.invoice_id)
        db.refresh(refund)
        if refund.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Refund {refund.refund_reference} is already {refund.status.value}"
            )
        payment = refund.payment
        db.refresh(payment)
        if payment.status != PaymentStatus.completed:
            raise InvalidStateError(
                f"Payment {payment.payment_reference} is {payment.status.value}"
            )
        if round_money(refund.amount) > payment_refundable_amount(db, payment):
            raise InvalidStateError("Refund exceeds the payment's refundable amount")

        refund.status = RefundStatus.completed
        refund.processed_at = now
        refund.gateway_refund_id = (
            gateway_refund_id or refund.gateway_refund_id or f"GW-{refund.refund_reference}"
        )
        if actor and not refund.processed_by:
            refund.processed_by = actor
        reconciliation.record_refund(db, payment, refund, actor=actor, now=now, commit=False)
        emit_event(
            db, EventType.refund_completed, invoice, payment, refund, actor=actor, now=now
        )
        reconciliation.commit_or_raise(db)
        db.refresh(refund)
        logger.info("Refund %s completed", refund.refund_reference)
        return refund

    @staticmethod
    def fail(
        db: Session,
        refund_id: str,
        reason: str | None = None,
        now: datetime | None = None,
    ):
        now = utc_now(now)
        refund = Refunds.get(db, refund_id)
        if refund.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Refund {refund.refund_reference} is already {refund.status.value}"
            )
        refund.status = RefundStatus.failed
        refund.processed_at = now
        if reason:
            refund.notes = f"{refund.notes}\n{reason}" if refund.notes else reason
        reconciliation.commit_or_raise(db)
        db.refresh(refund)
        logger.info("Refund %s failed", refund.refund_reference)
        return refund

    @staticmethod
    def cancel(db: Session, refund_id: str):
        refund = Refunds.get(db, refund_id)
        if refund.status != RefundStatus.pending:
            raise InvalidStateError("Only pending refunds can be cancelled")
        refund.status = RefundStatus.cancelled
        reconciliation.commit_or_raise(db)
        db.refresh(refund)
        logger.info("Refund %s cancelled", refund.refund_reference)
        return refund
