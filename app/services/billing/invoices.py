"""Invoice management services."""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.billing import Invoice, InvoiceStatus
from app.models.customer import Customer
from app.models.service_provider import ServiceProvider
from app.schemas.billing import InvoiceCreate, InvoiceUpdate
from app.services import numbering
from app.services.billing import reconciliation
from app.services.billing.ledger import compute_ledger
from app.services.billing.money import parse_amount
from app.services.common import (
    apply_is_active_filter,
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_by_id,
    get_or_404,
    utc_now,
    validate_enum,
)
from app.services.events import emit_event
from app.services.events.types import EventType
from app.services.exceptions import InvalidStateError, NotFoundError, ValidationError
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

LOCKED_STATUSES = (InvoiceStatus.paid, InvoiceStatus.cancelled, InvoiceStatus.archived)


def _validate_parties(db: Session, customer_id, service_provider_id) -> None:
    customer = get_by_id(db, Customer, customer_id)
    if not customer or not customer.is_active:
        raise NotFoundError("Customer not found")
    provider = get_by_id(db, ServiceProvider, service_provider_id)
    if not provider or not provider.is_active:
        raise NotFoundError("Service provider not found")


class Invoices(ListResponseMixin):
    @staticmethod
    def create(
        db: Session,
        payload: InvoiceCreate,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        now = utc_now(now)
        _validate_parties(db, payload.customer_id, payload.service_provider_id)
        amount = parse_amount(payload.amount, "amount")
        tax_amount = parse_amount(payload.tax_amount, "tax_amount", allow_zero=True)
        issue_date = payload.issue_date or now.date()
        if payload.due_date < issue_date:
            raise ValidationError("due_date cannot be before issue_date")

        invoice = Invoice(
            invoice_number=numbering.next_invoice_number(db, now),
            customer_id=payload.customer_id,
            service_provider_id=payload.service_provider_id,
            title=payload.title,
            description=payload.description,
            amount=amount,
            tax_amount=tax_amount,
            status=InvoiceStatus.pending,
            issue_date=issue_date,
            due_date=payload.due_date,
            metadata_={},
            is_active=True,
        )
        db.add(invoice)
        db.flush()
        emit_event(db, EventType.invoice_created, invoice, actor=actor, now=now)
        reconciliation.commit_or_raise(db)
        db.refresh(invoice)
        logger.info("Invoice %s created", invoice.invoice_number)
        return invoice

    @staticmethod
    def get(db: Session, invoice_id: str):
        return get_or_404(db, Invoice, invoice_id, "Invoice not found")

    @staticmethod
    def list(
        db: Session,
        customer_id: str | None,
        service_provider_id: str | None,
        status: str | None,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Invoice)
        if customer_id:
            query = query.filter(Invoice.customer_id == coerce_uuid(customer_id))
        if service_provider_id:
            query = query.filter(
                Invoice.service_provider_id == coerce_uuid(service_provider_id)
            )
        if status:
            query = query.filter(
                Invoice.status == validate_enum(status, InvoiceStatus, "status")
            )
        query = apply_is_active_filter(query, Invoice, is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Invoice.created_at,
                "due_date": Invoice.due_date,
                "issue_date": Invoice.issue_date,
                "invoice_number": Invoice.invoice_number,
                "status": Invoice.status,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(
        db: Session,
        invoice_id: str,
        payload: InvoiceUpdate,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        invoice = Invoices.get(db, invoice_id)
        if invoice.status in LOCKED_STATUSES:
            raise InvalidStateError(f"Cannot update a {invoice.status.value} invoice")
        data = payload.model_dump(exclude_unset=True)
        for key in ("title", "amount", "issue_date", "due_date"):
            if key in data and data[key] is None:
                raise ValidationError(f"{key} cannot be empty")
        if "amount" in data:
            data["amount"] = parse_amount(data["amount"], "amount")
        if "tax_amount" in data:
            data["tax_amount"] = parse_amount(
                data["tax_amount"] or 0, "tax_amount", allow_zero=True
            )
        issue_date = data.get("issue_date", invoice.issue_date)
        due_date = data.get("due_date", invoice.due_date)
        if due_date < issue_date:
            raise ValidationError("due_date cannot be before issue_date")

        for key, value in data.items():
            setattr(invoice, key, value)
        if "amount" in data or "tax_amount" in data:
            reconciliation.reconcile(db, invoice, actor=actor, now=now, commit=False)
        reconciliation.commit_or_raise(db)
        db.refresh(invoice)
        return invoice

    @staticmethod
    def delete(db: Session, invoice_id: str):
        invoice = Invoices.get(db, invoice_id)
        if invoice.status == InvoiceStatus.paid:
            raise InvalidStateError("Cannot delete a paid invoice")
        invoice.is_active = False
        reconciliation.commit_or_raise(db)
        logger.info("Invoice %s deleted", invoice.invoice_number)

    @staticmethod
    def ledger(db: Session, invoice_id: str) -> dict:
        invoice = Invoices.get(db, invoice_id)
        return {"invoice_id": invoice.id, **compute_ledger(db, invoice).to_dict()}

    @staticmethod
    def cancel(
        db: Session,
        invoice_id: str,
        reason: str | None = None,
        actor: str | None = None,
        now: datetime | None = None,
    ):
        invoice = Invoices.get(db, invoice_id)
        reconciliation.cancel(db, invoice, reason, actor=actor, now=now)
        db.refresh(invoice)
        return invoice
