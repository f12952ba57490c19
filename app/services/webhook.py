import logging
import secrets
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.service_provider import ServiceProvider
from app.models.webhook import (
    WebhookDelivery,
    WebhookDeliveryStatus,
    WebhookEventType,
    WebhookSubscription,
)
from app.schemas.webhook import WebhookSubscriptionCreate, WebhookSubscriptionUpdate
from app.services.common import (
    apply_is_active_filter,
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    utc_now,
    validate_enum,
)
from app.services.exceptions import InvalidStateError
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

SECRET_LENGTH = 32


def generate_secret() -> str:
    return secrets.token_hex(SECRET_LENGTH // 2)


class WebhookSubscriptions(ListResponseMixin):
    @staticmethod
    def create(db: Session, service_provider_id: str, payload: WebhookSubscriptionCreate):
        provider = get_or_404(
            db, ServiceProvider, service_provider_id, "Service provider not found"
        )
        data = payload.model_dump()
        if not data.get("secret"):
            data["secret"] = generate_secret()
        subscription = WebhookSubscription(service_provider_id=provider.id, **data)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        logger.info(
            "Webhook subscription %s created for provider %s", subscription.id, provider.id
        )
        return subscription

    @staticmethod
    def get(db: Session, subscription_id: str):
        return get_or_404(
            db, WebhookSubscription, subscription_id, "Webhook subscription not found"
        )

    @staticmethod
    def list(
        db: Session,
        service_provider_id: str,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        get_or_404(db, ServiceProvider, service_provider_id, "Service provider not found")
        query = db.query(WebhookSubscription).filter(
            WebhookSubscription.service_provider_id == coerce_uuid(service_provider_id)
        )
        query = apply_is_active_filter(query, WebhookSubscription, is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": WebhookSubscription.created_at, "url": WebhookSubscription.url},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def update(db: Session, subscription_id: str, payload: WebhookSubscriptionUpdate):
        subscription = WebhookSubscriptions.get(db, subscription_id)
        data = payload.model_dump(exclude_unset=True)
        for key in ("url", "events", "is_active"):
            if key in data and data[key] is None:
                data.pop(key)
        for key, value in data.items():
            setattr(subscription, key, value)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def delete(db: Session, subscription_id: str):
        subscription = WebhookSubscriptions.get(db, subscription_id)
        subscription.is_active = False
        db.commit()
        logger.info("Webhook subscription %s deactivated", subscription.id)


class WebhookDeliveries(ListResponseMixin):
    @staticmethod
    def get(db: Session, delivery_id: str):
        return get_or_404(db, WebhookDelivery, delivery_id, "Webhook delivery not found")

    @staticmethod
    def list(
        db: Session,
        service_provider_id: str | None,
        subscription_id: str | None,
        status: str | None,
        event_type: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(WebhookDelivery)
        if service_provider_id:
            query = query.filter(
                WebhookDelivery.service_provider_id == coerce_uuid(service_provider_id)
            )
        if subscription_id:
            query = query.filter(
                WebhookDelivery.subscription_id == coerce_uuid(subscription_id)
            )
        if status:
            query = query.filter(
                WebhookDelivery.status
                == validate_enum(status, WebhookDeliveryStatus, "status")
            )
        if event_type:
            query = query.filter(
                WebhookDelivery.event_type
                == validate_enum(event_type, WebhookEventType, "event_type")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": WebhookDelivery.created_at,
                "next_retry_at": WebhookDelivery.next_retry_at,
                "status": WebhookDelivery.status,
            },
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def retry(db: Session, delivery_id: str, now: datetime | None = None):
        """Reset a permanently failed delivery and queue it once more."""
        from app.services.events.handlers.webhook import enqueue_deliveries

        delivery = WebhookDeliveries.get(db, delivery_id)
        if delivery.status != WebhookDeliveryStatus.failed:
            raise InvalidStateError("Only failed deliveries can be retried")
        delivery.status = WebhookDeliveryStatus.pending
        delivery.attempt_count = 0
        delivery.next_retry_at = utc_now(now)
        delivery.error = None
        db.commit()
        db.refresh(delivery)
        enqueue_deliveries([str(delivery.id)])
        logger.info("Webhook delivery %s manually re-queued", delivery.id)
        return delivery


webhook_subscriptions = WebhookSubscriptions()
webhook_deliveries = WebhookDeliveries()
