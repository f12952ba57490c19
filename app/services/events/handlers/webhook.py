"""Webhook handler for the event system.

Creates WebhookDelivery records for the matching subscriptions of the
event's service provider. The deliveries are flushed with the caller's
transaction and handed to Celery only once that transaction commits; a
rollback discards them together with the rest of the unit of work.
"""

import logging

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from app.models.webhook import (
    WebhookDelivery,
    WebhookDeliveryStatus,
    WebhookEventType,
    WebhookSubscription,
)
from app.services.events.types import Event

logger = logging.getLogger(__name__)

PENDING_DELIVERIES_KEY = "pending_webhook_deliveries"


def queue_delivery(delivery_id: str) -> None:
    from app.tasks.webhooks import deliver_webhook

    deliver_webhook.delay(delivery_id)


def enqueue_deliveries(delivery_ids: list[str]) -> int:
    """Hand deliveries to the Celery queue; returns how many were queued.

    Queue failures are logged only. The periodic retry sweep picks up any
    delivery that never reached a worker.
    """
    queued = 0
    for delivery_id in delivery_ids:
        try:
            queue_delivery(delivery_id)
            queued += 1
        except Exception:
            logger.exception("Failed to queue webhook delivery %s", delivery_id)
    return queued


@sa_event.listens_for(Session, "after_commit")
def _enqueue_after_commit(session: Session) -> None:
    delivery_ids = session.info.pop(PENDING_DELIVERIES_KEY, None)
    if not delivery_ids:
        return
    queued = enqueue_deliveries(delivery_ids)
    logger.info("Queued %d of %d webhook deliveries", queued, len(delivery_ids))


@sa_event.listens_for(Session, "after_soft_rollback")
def _discard_after_rollback(session: Session, previous_transaction) -> None:
    if session.in_transaction():
        return
    if session.info.pop(PENDING_DELIVERIES_KEY, None):
        logger.debug("Discarded webhook deliveries from rolled back transaction")


class WebhookHandler:
    """Handler that creates webhook deliveries for subscribed endpoints."""

    def handle(self, db: Session, event: Event) -> None:
        webhook_event_type = WebhookEventType(event.name)
        subscriptions = (
            db.query(WebhookSubscription)
            .filter(WebhookSubscription.service_provider_id == event.service_provider_id)
            .filter(WebhookSubscription.is_active.is_(True))
            .order_by(WebhookSubscription.created_at)
            .all()
        )
        subscriptions = [sub for sub in subscriptions if sub.listens_to(event.name)]
        if not subscriptions:
            logger.debug(
                "No webhook subscriptions for %s on provider %s",
                event.name,
                event.service_provider_id,
            )
            return

        payload = event.to_webhook_payload()
        delivery_ids = []
        for subscription in subscriptions:
            delivery = WebhookDelivery(
                subscription_id=subscription.id,
                service_provider_id=subscription.service_provider_id,
                event_id=event.event_id,
                event_type=webhook_event_type,
                url=subscription.url,
                payload=payload,
                status=WebhookDeliveryStatus.pending,
                attempt_count=0,
            )
            db.add(delivery)
            db.flush()
            delivery_ids.append(str(delivery.id))

        db.info.setdefault(PENDING_DELIVERIES_KEY, []).extend(delivery_ids)
        logger.info(
            "Recorded %d webhook deliveries for event %s (id=%s)",
            len(delivery_ids),
            event.name,
            event.event_id,
        )
