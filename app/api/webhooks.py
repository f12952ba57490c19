from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.common import ListResponse
from app.schemas.webhook import (
    WebhookDeliveryRead,
    WebhookSubscriptionCreate,
    WebhookSubscriptionCreated,
    WebhookSubscriptionRead,
    WebhookSubscriptionUpdate,
)
from app.services import webhook as webhook_service

router = APIRouter()


@router.post(
    "/service-providers/{provider_id}/webhooks",
    response_model=WebhookSubscriptionCreated,
    status_code=status.HTTP_201_CREATED,
    tags=["webhook-subscriptions"],
)
def create_webhook_subscription(
    provider_id: str, payload: WebhookSubscriptionCreate, db: Session = Depends(get_db)
):
    return webhook_service.webhook_subscriptions.create(db, provider_id, payload)


@router.get(
    "/service-providers/{provider_id}/webhooks",
    response_model=ListResponse[WebhookSubscriptionRead],
    tags=["webhook-subscriptions"],
)
def list_webhook_subscriptions(
    provider_id: str,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return webhook_service.webhook_subscriptions.list_response(
        db, provider_id, is_active, order_by, order_dir, limit, offset
    )


@router.get(
    "/webhooks/subscriptions/{subscription_id}",
    response_model=WebhookSubscriptionRead,
    tags=["webhook-subscriptions"],
)
def get_webhook_subscription(subscription_id: str, db: Session = Depends(get_db)):
    return webhook_service.webhook_subscriptions.get(db, subscription_id)


@router.patch(
    "/webhooks/subscriptions/{subscription_id}",
    response_model=WebhookSubscriptionRead,
    tags=["webhook-subscriptions"],
)
def update_webhook_subscription(
    subscription_id: str, payload: WebhookSubscriptionUpdate, db: Session = Depends(get_db)
):
    return webhook_service.webhook_subscriptions.update(db, subscription_id, payload)


@router.delete(
    "/webhooks/subscriptions/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhook-subscriptions"],
)
def delete_webhook_subscription(subscription_id: str, db: Session = Depends(get_db)):
    webhook_service.webhook_subscriptions.delete(db, subscription_id)


@router.get(
    "/webhooks/deliveries",
    response_model=ListResponse[WebhookDeliveryRead],
    tags=["webhook-deliveries"],
)
def list_webhook_deliveries(
    service_provider_id: str | None = None,
    subscription_id: str | None = None,
    status: str | None = None,
    event_type: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return webhook_service.webhook_deliveries.list_response(
        db,
        service_provider_id,
        subscription_id,
        status,
        event_type,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get(
    "/webhooks/deliveries/{delivery_id}",
    response_model=WebhookDeliveryRead,
    tags=["webhook-deliveries"],
)
def get_webhook_delivery(delivery_id: str, db: Session = Depends(get_db)):
    return webhook_service.webhook_deliveries.get(db, delivery_id)


@router.post(
    "/webhooks/deliveries/{delivery_id}/retry",
    response_model=WebhookDeliveryRead,
    tags=["webhook-deliveries"],
)
def retry_webhook_delivery(delivery_id: str, db: Session = Depends(get_db)):
    return webhook_service.webhook_deliveries.retry(db, delivery_id)
