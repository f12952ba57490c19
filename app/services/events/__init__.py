"""Event system module.

Provides a centralized event dispatcher that records billing events and
fans them out to webhook subscriptions.

Usage:
    from app.services.events import emit_event
    from app.services.events.types import EventType

    # In a service after a state change, before commit:
    emit_event(db, EventType.invoice_cancelled, invoice, actor=actor)
"""

from app.services.events.dispatcher import emit_event
from app.services.events.types import Event, EventType

__all__ = ["emit_event", "Event", "EventType"]
