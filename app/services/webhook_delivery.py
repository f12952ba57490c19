"""Signed HTTP delivery of webhook payloads with exponential backoff.

One call to ``attempt_delivery`` makes at most one HTTP request and records
its outcome on the delivery row. Failures never raise: they move the
delivery to ``retrying`` with a ``next_retry_at`` or, once the attempt limit
is spent, to ``failed``.
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import observe_webhook_attempt
from app.models.webhook import WebhookDelivery, WebhookDeliveryStatus
from app.services.common import utc_now
from app.services.exceptions import DeliveryError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (WebhookDeliveryStatus.delivered, WebhookDeliveryStatus.failed)


def serialize_payload(payload: dict) -> bytes:
    """Compact JSON body; the signature covers exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the hex HMAC-SHA256 of the body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_headers(delivery: WebhookDelivery, body: bytes, secret: str | None) -> dict:
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Event": delivery.event_type.value,
        "X-Webhook-Delivery": str(delivery.id),
    }
    if secret:
        headers["X-Webhook-Signature"] = compute_signature(body, secret)
    return headers


def backoff_seconds(
    attempt: int,
    base: int | None = None,
    maximum: int | None = None,
) -> int:
    """Delay before the retry that follows failed attempt number ``attempt``."""
    base = settings.webhook_retry_base_seconds if base is None else base
    maximum = settings.webhook_retry_max_seconds if maximum is None else maximum
    return min(base * 2 ** max(attempt - 1, 0), maximum)


def _post(client: httpx.Client, url: str, body: bytes, headers: dict) -> int:
    try:
        response = client.post(url, content=body, headers=headers)
    except httpx.TimeoutException as exc:
        raise DeliveryError(f"Timeout: {exc}") from exc
    except httpx.HTTPError as exc:
        raise DeliveryError(f"Transport error: {exc}") from exc
    if not 200 <= response.status_code < 300:
        text = getattr(response, "text", "") or ""
        raise DeliveryError(
            f"HTTP {response.status_code}: {text[:500]}",
            status_code=response.status_code,
        )
    return response.status_code


def _fail_permanently(delivery: WebhookDelivery, error: str) -> None:
    delivery.status = WebhookDeliveryStatus.failed
    delivery.next_retry_at = None
    delivery.error = error


def lock_delivery(db: Session, delivery_id) -> WebhookDelivery | None:
    """Load a delivery with a row lock, or None if another worker holds it.

    The lock is held until ``attempt_delivery`` commits, so one delivery is
    never posted by two workers at once.
    """
    return (
        db.query(WebhookDelivery)
        .filter(WebhookDelivery.id == delivery_id)
        .populate_existing()
        .with_for_update(skip_locked=True)
        .first()
    )


def attempt_delivery(
    db: Session,
    delivery: WebhookDelivery,
    client: httpx.Client | None = None,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> WebhookDeliveryStatus:
    """Make one delivery attempt and commit the recorded outcome."""
    now = utc_now(now)
    max_attempts = settings.webhook_max_attempts if max_attempts is None else max_attempts

    if delivery.status in TERMINAL_STATUSES:
        logger.debug("Delivery %s already %s", delivery.id, delivery.status.value)
        return delivery.status

    subscription = delivery.subscription
    if subscription is None or not subscription.is_active:
        _fail_permanently(delivery, "Subscription is inactive or deleted")
        db.commit()
        logger.info("Skipped delivery %s: subscription inactive", delivery.id)
        return delivery.status

    body = serialize_payload(delivery.payload or {})
    headers = build_headers(delivery, body, subscription.secret)

    delivery.attempt_count = (delivery.attempt_count or 0) + 1
    delivery.last_attempt_at = now
    logger.info(
        "Delivering webhook %s to %s (attempt %d)",
        delivery.id,
        delivery.url,
        delivery.attempt_count,
    )

    try:
        if client is None:
            with httpx.Client(timeout=settings.webhook_timeout_seconds) as http:
                status_code = _post(http, delivery.url, body, headers)
        else:
            status_code = _post(client, delivery.url, body, headers)
    except DeliveryError as exc:
        delivery.response_status = exc.status_code
        delivery.error = str(exc)
        if delivery.attempt_count >= max_attempts:
            delivery.status = WebhookDeliveryStatus.failed
            delivery.next_retry_at = None
            logger.error(
                "Webhook delivery %s exhausted %d attempts: %s",
                delivery.id,
                delivery.attempt_count,
                exc,
            )
        else:
            delay = backoff_seconds(delivery.attempt_count)
            delivery.status = WebhookDeliveryStatus.retrying
            delivery.next_retry_at = now + timedelta(seconds=delay)
            logger.warning(
                "Webhook delivery %s failed (attempt %d), retrying in %ds: %s",
                delivery.id,
                delivery.attempt_count,
                delay,
                exc,
            )
    else:
        delivery.status = WebhookDeliveryStatus.delivered
        delivery.response_status = status_code
        delivery.delivered_at = now
        delivery.next_retry_at = None
        delivery.error = None
        logger.info("Webhook %s delivered (status %d)", delivery.id, status_code)

    db.commit()
    observe_webhook_attempt(delivery.event_type.value, delivery.status.value)
    return delivery.status


def claim_due_deliveries(
    db: Session,
    now: datetime | None = None,
    grace_seconds: int | None = None,
    limit: int = 200,
) -> list[str]:
    """Return ids of open deliveries whose queued task looks lost.

    A delivery qualifies when its retry time (or, if it was never retried,
    its creation time) is more than ``grace_seconds`` in the past. Claimed
    deliveries get ``next_retry_at = now`` so the next sweep leaves them
    alone for another grace period.
    """
    now = utc_now(now)
    grace_seconds = (
        settings.webhook_sweep_interval_seconds if grace_seconds is None else grace_seconds
    )
    cutoff = now - timedelta(seconds=grace_seconds)
    deliveries = (
        db.query(WebhookDelivery)
        .filter(
            WebhookDelivery.status.in_(
                (WebhookDeliveryStatus.pending, WebhookDeliveryStatus.retrying)
            )
        )
        .filter(
            or_(
                and_(
                    WebhookDelivery.next_retry_at.is_not(None),
                    WebhookDelivery.next_retry_at <= cutoff,
                ),
                and_(
                    WebhookDelivery.next_retry_at.is_(None),
                    WebhookDelivery.created_at <= cutoff,
                ),
            )
        )
        .order_by(WebhookDelivery.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for delivery in deliveries:
        delivery.next_retry_at = now
    db.commit()
    return [str(delivery.id) for delivery in deliveries]
