"""Central event dispatcher for the event system.

This module provides the main entry point for emitting billing events. When
an event is emitted it is persisted to the event store and routed to all
registered handlers, all inside the caller's unit of work. The dispatcher
never commits and never performs network I/O; webhook handlers only record
deliveries that are queued once the caller's transaction commits.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.billing import Invoice, Payment, Refund
from app.services.events import snapshots
from app.services.events.types import Event, EventType

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Central dispatcher that routes events to all registered handlers.

    Events are persisted to the event_store table in the same transaction as
    the change that produced them, enabling retry of failed handlers and
    providing an audit trail. Each handler runs in its own savepoint, so a
    handler whose writes fail leaves the caller's transaction usable.
    """

    def __init__(self):
        self._handlers: list = []

    def register_handler(self, handler):
        """Register an event handler."""
        self._handlers.append(handler)

    def _run_handlers(self, db: Session, event: Event, only: set[str] | None = None):
        failed_handlers: list[dict[str, str]] = []
        for handler in self._handlers:
            handler_name = handler.__class__.__name__
            if only and handler_name not in only:
                continue
            try:
                with db.begin_nested():
                    handler.handle(db, event)
            except Exception as exc:
                logger.exception(
                    "Handler %s failed for event %s (id=%s)",
                    handler_name,
                    event.name,
                    event.event_id,
                )
                failed_handlers.append({"handler": handler_name, "error": str(exc)})
        return failed_handlers

    @staticmethod
    def _record_outcome(event_record, failed_handlers: list[dict[str, str]]) -> None:
        from app.models.event_store import EventStatus

        if failed_handlers:
            event_record.status = EventStatus.failed
            event_record.failed_handlers = failed_handlers
            event_record.error = json.dumps([fh["error"] for fh in failed_handlers])
        else:
            event_record.status = EventStatus.completed
            event_record.failed_handlers = None
            event_record.error = None
        event_record.processed_at = datetime.now(timezone.utc)

    def dispatch(self, db: Session, event: Event) -> None:
        """Persist an event and run every handler against it.

        Handler failures are logged and recorded on the event record; they
        never raise to the caller.
        """
        from app.models.event_store import EventStatus, EventStore

        logger.debug("Dispatching event %s (id=%s)", event.name, event.event_id)

        event_record = EventStore(
            event_id=event.event_id,
            event_type=event.name,
            payload=event.to_dict(),
            status=EventStatus.processing,
            occurred_at=event.occurred_at,
            actor=event.actor,
            service_provider_id=event.service_provider_id,
            invoice_id=event.invoice_id,
            payment_id=event.payment_id,
            refund_id=event.refund_id,
        )
        db.add(event_record)

        failed_handlers = self._run_handlers(db, event)
        self._record_outcome(event_record, failed_handlers)

    def retry_event(self, db: Session, event_record) -> bool:
        """Re-run the handlers that failed for a stored event.

        Unlike ``dispatch`` this runs outside any business transaction, so it
        commits its own work.

        Returns:
            True if all handlers succeeded, False otherwise
        """
        from app.models.event_store import EventStatus

        event = Event.from_dict(event_record.payload)
        failed_handler_names = set()
        if event_record.failed_handlers:
            failed_handler_names = {fh["handler"] for fh in event_record.failed_handlers}

        event_record.retry_count = (event_record.retry_count or 0) + 1
        event_record.status = EventStatus.processing

        new_failures = self._run_handlers(db, event, only=failed_handler_names or None)
        self._record_outcome(event_record, new_failures)
        db.commit()
        return len(new_failures) == 0


# Global dispatcher instance
_dispatcher: EventDispatcher | None = None


def get_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher, initializing handlers if needed."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher()
        _initialize_handlers(_dispatcher)
    return _dispatcher


def _initialize_handlers(dispatcher: EventDispatcher) -> None:
    from app.services.events.handlers.webhook import WebhookHandler

    dispatcher.register_handler(WebhookHandler())
    logger.info("Event handlers initialized: webhook")


def build_event(
    event_type: EventType,
    invoice: Invoice,
    payment: Payment | None = None,
    refund: Refund | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Event:
    return Event(
        event_type=event_type,
        service_provider_id=invoice.service_provider_id,
        invoice=snapshots.invoice_snapshot(invoice),
        customer=snapshots.customer_snapshot(invoice.customer),
        payment=snapshots.payment_snapshot(payment) if payment is not None else None,
        refund=snapshots.refund_snapshot(refund) if refund is not None else None,
        occurred_at=now or datetime.now(timezone.utc),
        actor=actor,
    )


def emit_event(
    db: Session,
    event_type: EventType,
    invoice: Invoice,
    payment: Payment | None = None,
    refund: Refund | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Event:
    """Emit a billing event to all registered handlers.

    Call this after mutating the records and before committing: the event
    row and any webhook deliveries become part of the same transaction, and
    deliveries are handed to the Celery queue only after it commits.

    Example:
        from app.services.events import emit_event
        from app.services.events.types import EventType

        emit_event(db, EventType.invoice_paid, invoice, actor=actor)
        db.commit()
    """
    db.flush()
    event = build_event(event_type, invoice, payment, refund, actor=actor, now=now)
    get_dispatcher().dispatch(db, event)
    logger.info("Event emitted: %s (id=%s)", event.name, event.event_id)
    return event
