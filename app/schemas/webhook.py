from datetime import datetime
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from app.models.webhook import WebhookDeliveryStatus, WebhookEventType

EVENT_CATALOG = {event.value for event in WebhookEventType}


def _validate_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http or https URL")
    return value


def _validate_events(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("events must not be empty")
    unknown = sorted(set(value) - EVENT_CATALOG)
    if unknown:
        raise ValueError(f"Unknown events: {', '.join(unknown)}")
    # De-duplicate, keeping order.
    return list(dict.fromkeys(value))


class WebhookSubscriptionBase(BaseModel):
    url: str = Field(min_length=1, max_length=500)
    events: list[str]
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _validate_url(value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str]) -> list[str]:
        return _validate_events(value)


class WebhookSubscriptionCreate(WebhookSubscriptionBase):
    secret: str | None = Field(default=None, min_length=8, max_length=255)


class WebhookSubscriptionUpdate(BaseModel):
    url: str | None = Field(default=None, min_length=1, max_length=500)
    events: list[str] | None = None
    secret: str | None = Field(default=None, min_length=8, max_length=255)
    is_active: bool | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _validate_url(value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        return _validate_events(value)


class WebhookSubscriptionRead(WebhookSubscriptionBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_provider_id: UUID
    secret: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("secret")
    def _mask_secret(self, value: str | None) -> str | None:
        if not value:
            return None
        suffix = value[-4:]
        return f"{'*' * max(len(value) - 4, 4)}{suffix}"


class WebhookSubscriptionCreated(WebhookSubscriptionBase):
    """Returned once on create; the only response carrying the clear secret."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    service_provider_id: UUID
    secret: str | None = None
    created_at: datetime
    updated_at: datetime


class WebhookDeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    service_provider_id: UUID
    event_id: UUID
    event_type: WebhookEventType
    url: str
    status: WebhookDeliveryStatus
    attempt_count: int
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    response_status: int | None = None
    error: str | None = None
    payload: dict | None = None
    created_at: datetime
    updated_at: datetime
