"""JSON-ready snapshots of billing records for event payloads.

Money is rendered as a two-decimal string and dates as ISO-8601.
"""

from datetime import date, datetime
from decimal import Decimal

from app.models.billing import Invoice, Payment, Refund
from app.models.customer import Customer
from app.services.common import round_money


def _money(value: Decimal | None) -> str:
    return f"{round_money(value):.2f}"


def _iso(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def invoice_snapshot(invoice: Invoice) -> dict:
    return {
        "id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "title": invoice.title,
        "amount": _money(invoice.amount),
        "tax_amount": _money(invoice.tax_amount),
        "total_amount": _money(invoice.total_amount),
        "status": invoice.status.value,
        "due_date": _iso(invoice.due_date),
        "issue_date": _iso(invoice.issue_date),
        "paid_date": _iso(invoice.paid_date),
    }


def customer_snapshot(customer: Customer | None) -> dict | None:
    if customer is None:
        return None
    return {
        "id": str(customer.id),
        "name": customer.name,
        "email": customer.email,
    }


def payment_snapshot(payment: Payment) -> dict:
    return {
        "id": str(payment.id),
        "reference": payment.payment_reference,
        "amount": _money(payment.amount),
        "status": payment.status.value,
        "type": payment.payment_type.value,
        "method": payment.payment_method_reference,
        "created_at": _iso(payment.created_at),
    }


def refund_snapshot(refund: Refund) -> dict:
    return {
        "id": str(refund.id),
        "reference": refund.refund_reference,
        "payment_id": str(refund.payment_id),
        "amount": _money(refund.amount),
        "status": refund.status.value,
        "type": refund.refund_type.value,
        "reason": refund.reason,
        "processed_at": _iso(refund.processed_at),
    }
