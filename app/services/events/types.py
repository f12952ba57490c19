"""Event types and data structures for the event system.

This module defines the closed catalog of billing events plus the Event
dataclass that carries point-in-time snapshots of the records involved.
"""

import copy
import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4


class EventType(enum.Enum):
    """All event types supported by the event system.

    Event naming convention: {entity}.{action}
    """

    # Invoice events
    invoice_created = "invoice.created"
    invoice_paid = "invoice.paid"
    invoice_overdue = "invoice.overdue"
    invoice_cancelled = "invoice.cancelled"

    # Payment events
    payment_completed = "payment.completed"
    payment_failed = "payment.failed"

    # Refund events
    refund_completed = "refund.completed"


@dataclass(frozen=True)
class Event:
    """An immutable record of a billing transition.

    Snapshots are JSON-ready dicts captured when the event is emitted, so
    later changes to the invoice never leak into an already emitted event.
    """

    event_type: EventType
    service_provider_id: UUID
    invoice: dict[str, Any]
    customer: dict[str, Any] | None = None
    payment: dict[str, Any] | None = None
    refund: dict[str, Any] | None = None
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    actor: str | None = None

    @property
    def name(self) -> str:
        return self.event_type.value

    @property
    def invoice_id(self) -> UUID | None:
        value = self.invoice.get("id")
        return UUID(value) if value else None

    @property
    def payment_id(self) -> UUID | None:
        if not self.payment:
            return None
        return UUID(self.payment["id"])

    @property
    def refund_id(self) -> UUID | None:
        if not self.refund:
            return None
        return UUID(self.refund["id"])

    def to_webhook_payload(self) -> dict[str, Any]:
        """Build the body posted to webhook subscribers."""
        invoice = copy.deepcopy(self.invoice)
        invoice["customer"] = copy.deepcopy(self.customer)
        payload: dict[str, Any] = {"event": self.name, "invoice": invoice}
        if self.payment is not None:
            payload["payment"] = copy.deepcopy(self.payment)
        if self.refund is not None:
            payload["refund"] = copy.deepcopy(self.refund)
        payload["timestamp"] = self.occurred_at.isoformat()
        return payload

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for the event store."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.name,
            "occurred_at": self.occurred_at.isoformat(),
            "service_provider_id": str(self.service_provider_id),
            "invoice": copy.deepcopy(self.invoice),
            "customer": copy.deepcopy(self.customer),
            "payment": copy.deepcopy(self.payment),
            "refund": copy.deepcopy(self.refund),
            "actor": self.actor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        return cls(
            event_type=EventType(data["event_type"]),
            service_provider_id=UUID(data["service_provider_id"]),
            invoice=data["invoice"],
            customer=data.get("customer"),
            payment=data.get("payment"),
            refund=data.get("refund"),
            event_id=UUID(data["event_id"]),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            actor=data.get("actor"),
        )
