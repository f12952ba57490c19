import pydantic
import pytest

from app.models.webhook import WebhookDelivery, WebhookDeliveryStatus
from app.schemas.webhook import (
    WebhookSubscriptionCreate,
    WebhookSubscriptionRead,
    WebhookSubscriptionUpdate,
)
from app.services import webhook as webhook_service
from app.services.exceptions import InvalidStateError, NotFoundError
from tests.factories import NOW, make_invoice, make_subscription


def _create(db_session, provider, **kwargs):
    payload = WebhookSubscriptionCreate(
        url=kwargs.pop("url", "https://hooks.example.com/in"),
        events=kwargs.pop("events", ["invoice.paid", "refund.completed"]),
        **kwargs,
    )
    return webhook_service.webhook_subscriptions.create(db_session, str(provider.id), payload)


class TestWebhookSubscriptions:
    def test_create_generates_secret(self, db_session, provider):
        subscription = _create(db_session, provider)
        assert len(subscription.secret) == 32
        assert subscription.service_provider_id == provider.id
        assert subscription.is_active is True

    def test_create_keeps_supplied_secret(self, db_session, provider):
        subscription = _create(db_session, provider, secret="my-own-secret")
        assert subscription.secret == "my-own-secret"

    def test_create_for_unknown_provider(self, db_session):
        payload = WebhookSubscriptionCreate(
            url="https://hooks.example.com/in", events=["invoice.paid"]
        )
        with pytest.raises(NotFoundError):
            webhook_service.webhook_subscriptions.create(
                db_session, "5d9c1c0e-0b1a-4d55-9a3e-3f0e6b7c8d9e", payload
            )

    @pytest.mark.parametrize(
        "url, events",
        [
            ("ftp://hooks.example.com", ["invoice.paid"]),
            ("not a url", ["invoice.paid"]),
            ("https://hooks.example.com", []),
            ("https://hooks.example.com", ["invoice.refunded"]),
        ],
    )
    def test_payload_validation(self, url, events):
        with pytest.raises(pydantic.ValidationError):
            WebhookSubscriptionCreate(url=url, events=events)

    def test_duplicate_events_collapse(self):
        payload = WebhookSubscriptionCreate(
            url="https://hooks.example.com", events=["invoice.paid", "invoice.paid"]
        )
        assert payload.events == ["invoice.paid"]

    def test_read_model_masks_secret(self, db_session, provider):
        subscription = _create(db_session, provider, secret="abcdefgh12345678")
        data = WebhookSubscriptionRead.model_validate(subscription).model_dump()
        assert data["secret"] == "************5678"

    def test_update_replaces_events_and_ignores_nulls(self, db_session, provider):
        subscription = _create(db_session, provider)
        updated = webhook_service.webhook_subscriptions.update(
            db_session,
            str(subscription.id),
            WebhookSubscriptionUpdate(events=["invoice.overdue"], url=None),
        )
        assert updated.events == ["invoice.overdue"]
        assert updated.url == "https://hooks.example.com/in"

    def test_delete_deactivates(self, db_session, provider):
        subscription = _create(db_session, provider)
        webhook_service.webhook_subscriptions.delete(db_session, str(subscription.id))
        assert subscription.is_active is False
        active = webhook_service.webhook_subscriptions.list(
            db_session, str(provider.id), None, "created_at", "asc", 50, 0
        )
        assert active == []

    def test_deactivated_subscription_gets_no_deliveries(
        self, db_session, customer, provider, queued_deliveries
    ):
        subscription = _create(db_session, provider, events=["invoice.created"])
        webhook_service.webhook_subscriptions.delete(db_session, str(subscription.id))
        make_invoice(db_session, customer, provider)
        queued_deliveries.assert_not_called()


class TestWebhookDeliveries:
    def _delivery(self, db_session, subscription):
        return (
            db_session.query(WebhookDelivery)
            .filter(WebhookDelivery.subscription_id == subscription.id)
            .one()
        )

    def test_retry_resets_failed_delivery(
        self, db_session, customer, provider, queued_deliveries
    ):
        subscription = make_subscription(db_session, provider, events=["invoice.created"])
        make_invoice(db_session, customer, provider)
        delivery = self._delivery(db_session, subscription)
        delivery.status = WebhookDeliveryStatus.failed
        delivery.attempt_count = 6
        delivery.error = "HTTP 500"
        db_session.commit()

        retried = webhook_service.webhook_deliveries.retry(db_session, str(delivery.id), now=NOW)

        assert retried.status == WebhookDeliveryStatus.pending
        assert retried.attempt_count == 0
        assert retried.error is None
        queued_deliveries.assert_called_with(str(delivery.id))

    def test_retry_rejects_open_delivery(self, db_session, customer, provider):
        subscription = make_subscription(db_session, provider, events=["invoice.created"])
        make_invoice(db_session, customer, provider)
        delivery = self._delivery(db_session, subscription)
        with pytest.raises(InvalidStateError):
            webhook_service.webhook_deliveries.retry(db_session, str(delivery.id))

    def test_list_filters(self, db_session, customer, provider):
        subscription = make_subscription(db_session, provider)
        make_invoice(db_session, customer, provider)
        make_invoice(db_session, customer, provider)

        created = webhook_service.webhook_deliveries.list(
            db_session,
            str(provider.id),
            str(subscription.id),
            "pending",
            "invoice.created",
            "created_at",
            "asc",
            50,
            0,
        )
        paid = webhook_service.webhook_deliveries.list(
            db_session, None, None, None, "invoice.paid", "created_at", "asc", 50, 0
        )
        assert len(created) == 2
        assert paid == []
