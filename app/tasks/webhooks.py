"""Celery tasks for webhook delivery.

Handles asynchronous HTTP delivery of webhook events with retry logic.
"""

import logging

from celery.exceptions import Retry

from app.celery_app import celery_app
from app.db import SessionLocal
from app.models.webhook import WebhookDelivery, WebhookDeliveryStatus
from app.services import webhook_delivery
from app.services.common import coerce_uuid, ensure_utc, utc_now

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.tasks.webhooks.deliver_webhook",
    bind=True,
    max_retries=None,
)
def deliver_webhook(self, delivery_id: str):
    """Make one delivery attempt and schedule the next one on failure.

    The attempt count and backoff live on the WebhookDelivery row, so a
    retry scheduled here and a re-queue from ``retry_due_deliveries`` both
    continue the same sequence.

    Args:
        delivery_id: UUID of the WebhookDelivery record
    """
    session = SessionLocal()
    try:
        delivery_uuid = coerce_uuid(delivery_id)
        delivery = webhook_delivery.lock_delivery(session, delivery_uuid)
        if not delivery:
            if session.get(WebhookDelivery, delivery_uuid) is None:
                logger.error("WebhookDelivery not found: %s", delivery_id)
            else:
                logger.info("WebhookDelivery %s is locked by another worker", delivery_id)
            return None

        status = webhook_delivery.attempt_delivery(session, delivery)
        if status == WebhookDeliveryStatus.retrying:
            countdown = (ensure_utc(delivery.next_retry_at) - utc_now()).total_seconds()
            raise self.retry(countdown=max(int(countdown), 0))
        return status.value

    except Retry:
        raise
    except Exception:
        session.rollback()
        logger.exception("Unexpected error delivering webhook %s", delivery_id)
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.webhooks.retry_due_deliveries")
def retry_due_deliveries():
    """Re-queue open deliveries whose task was lost (broker or worker failure)."""
    from app.services.events.handlers.webhook import enqueue_deliveries

    session = SessionLocal()
    try:
        delivery_ids = webhook_delivery.claim_due_deliveries(session)
        requeued = enqueue_deliveries(delivery_ids) if delivery_ids else 0
        if requeued:
            logger.info("Requeued %d due webhook deliveries", requeued)
        return {"due": len(delivery_ids), "requeued": requeued}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
