from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.models.billing import InvoiceStatus
from app.models.event_store import EventStatus, EventStore
from app.schemas.billing import (
    CustomerCreate,
    InvoiceCreate,
    InvoiceUpdate,
    ServiceProviderCreate,
)
from app.services import billing as billing_service
from app.services import numbering
from app.services.exceptions import InvalidStateError, NotFoundError, ValidationError
from tests.factories import NOW, make_customer, make_invoice, make_provider, pay


class TestInvoiceCreate:
    def test_create_numbers_and_totals(self, db_session, customer, provider):
        invoice = make_invoice(db_session, customer, provider, "100.00", "7.50")
        assert invoice.invoice_number == "INV-2026-000001"
        assert invoice.status == InvoiceStatus.pending
        assert invoice.total_amount == Decimal("107.50")
        assert invoice.metadata_ == {}
        assert invoice.version >= 1

        second = make_invoice(db_session, customer, provider)
        assert second.invoice_number == "INV-2026-000002"

    def test_create_emits_invoice_created(self, db_session, invoice):
        event = (
            db_session.query(EventStore)
            .filter(EventStore.invoice_id == invoice.id)
            .one()
        )
        assert event.event_type == "invoice.created"
        assert event.status == EventStatus.completed
        assert event.payload["invoice"]["total_amount"] == "100.00"
        assert event.payload["customer"]["id"] == str(invoice.customer_id)

    def test_issue_date_defaults_to_today(self, db_session, customer, provider):
        payload = InvoiceCreate(
            customer_id=customer.id,
            service_provider_id=provider.id,
            title="Setup fee",
            amount=Decimal("10.00"),
            due_date=date(2026, 4, 1),
        )
        invoice = billing_service.invoices.create(db_session, payload, now=NOW)
        assert invoice.issue_date == NOW.date()

    def test_due_before_issue_rejected(self, db_session, customer, provider):
        payload = InvoiceCreate(
            customer_id=customer.id,
            service_provider_id=provider.id,
            title="Setup fee",
            amount=Decimal("10.00"),
            due_date=date(2026, 2, 1),
        )
        with pytest.raises(ValidationError, match="due_date"):
            billing_service.invoices.create(db_session, payload, now=NOW)

    def test_zero_amount_rejected(self, db_session, customer, provider):
        with pytest.raises(ValidationError):
            make_invoice(db_session, customer, provider, "0.00")

    def test_inactive_customer_rejected(self, db_session, provider):
        inactive = make_customer(db_session, is_active=False)
        with pytest.raises(NotFoundError, match="Customer"):
            make_invoice(db_session, inactive, provider)

    def test_inactive_provider_rejected(self, db_session, customer):
        inactive = make_provider(db_session, is_active=False)
        with pytest.raises(NotFoundError, match="Service provider"):
            make_invoice(db_session, customer, inactive)


class TestInvoiceUpdate:
    def test_update_recomputes_total(self, db_session, invoice):
        updated = billing_service.invoices.update(
            db_session, str(invoice.id), InvoiceUpdate(tax_amount=Decimal("5.00"))
        )
        assert updated.total_amount == Decimal("105.00")
        assert updated.status == InvoiceStatus.pending

    def test_lowering_amount_to_paid_total_settles(self, db_session, invoice):
        pay(db_session, invoice, "60.00")
        updated = billing_service.invoices.update(
            db_session, str(invoice.id), InvoiceUpdate(amount=Decimal("60.00")), now=NOW
        )
        assert updated.status == InvoiceStatus.paid

    def test_paid_invoice_is_read_only(self, db_session, invoice):
        pay(db_session, invoice)
        with pytest.raises(InvalidStateError):
            billing_service.invoices.update(
                db_session, str(invoice.id), InvoiceUpdate(title="Renamed")
            )

    def test_null_required_field_rejected(self, db_session, invoice):
        with pytest.raises(ValidationError, match="title"):
            billing_service.invoices.update(
                db_session, str(invoice.id), InvoiceUpdate(title=None)
            )


class TestInvoiceDeleteAndQuery:
    def test_soft_delete_hides_from_default_list(self, db_session, invoice):
        billing_service.invoices.delete(db_session, str(invoice.id))
        active = billing_service.invoices.list(
            db_session, None, None, None, None, "created_at", "desc", 50, 0
        )
        deleted = billing_service.invoices.list(
            db_session, None, None, None, False, "created_at", "desc", 50, 0
        )
        assert invoice.id not in {item.id for item in active}
        assert invoice.id in {item.id for item in deleted}

    def test_paid_invoice_cannot_be_deleted(self, db_session, invoice):
        pay(db_session, invoice)
        with pytest.raises(InvalidStateError):
            billing_service.invoices.delete(db_session, str(invoice.id))

    def test_list_filters_by_status(self, db_session, customer, provider):
        paid = make_invoice(db_session, customer, provider)
        open_invoice = make_invoice(db_session, customer, provider)
        pay(db_session, paid)
        results = billing_service.invoices.list(
            db_session, str(customer.id), None, "pending", None, "created_at", "asc", 50, 0
        )
        assert [item.id for item in results] == [open_invoice.id]

    def test_list_rejects_unknown_order_by(self, db_session):
        with pytest.raises(ValidationError, match="order_by"):
            billing_service.invoices.list(
                db_session, None, None, None, None, "amount_due", "asc", 50, 0
            )

    def test_ledger(self, db_session, invoice):
        pay(db_session, invoice, "25.00")
        ledger = billing_service.invoices.ledger(db_session, str(invoice.id))
        assert ledger["invoice_id"] == invoice.id
        assert ledger["remaining"] == Decimal("75.00")
        assert ledger["is_settled"] is False

    def test_get_with_malformed_id(self, db_session):
        with pytest.raises(ValidationError):
            billing_service.invoices.get(db_session, "not-a-uuid")


class TestAccounts:
    def test_customer_email_is_normalised_and_unique(self, db_session):
        created = billing_service.customers.create(
            db_session, CustomerCreate(name="Grace", email="  Grace@Example.COM ")
        )
        assert created.email == "grace@example.com"
        with pytest.raises(ValidationError, match="already exists"):
            billing_service.customers.create(
                db_session, CustomerCreate(name="Other", email="grace@example.com")
            )

    def test_provider_list_filters_status(self, db_session):
        billing_service.service_providers.create(
            db_session, ServiceProviderCreate(company_name="Active Co")
        )
        billing_service.service_providers.create(
            db_session, ServiceProviderCreate(company_name="Dormant Co", status="inactive")
        )
        results = billing_service.service_providers.list(
            db_session, "inactive", None, "company_name", "asc", 50, 0
        )
        assert [p.company_name for p in results] == ["Dormant Co"]


class TestNumbering:
    def test_counters_are_per_prefix(self, db_session):
        jan = datetime(2026, 1, 5, tzinfo=timezone.utc)
        feb = datetime(2026, 2, 5, tzinfo=timezone.utc)
        assert numbering.next_payment_reference(db_session, jan) == "PAY-20260105-000001"
        assert numbering.next_payment_reference(db_session, jan) == "PAY-20260105-000002"
        assert numbering.next_payment_reference(db_session, feb) == "PAY-20260205-000001"
        assert numbering.next_refund_reference(db_session, jan) == "REF-20260105-000001"

    def test_invoice_counter_restarts_each_year(self, db_session):
        assert numbering.next_invoice_number(
            db_session, datetime(2026, 12, 31, tzinfo=timezone.utc)
        ) == "INV-2026-000001"
        assert numbering.next_invoice_number(
            db_session, datetime(2027, 1, 1, tzinfo=timezone.utc)
        ) == "INV-2027-000001"

    def test_format_without_padding(self):
        assert numbering._format_number("X-", 0, 42) == "X-42"
