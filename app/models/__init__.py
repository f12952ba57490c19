from app.models.billing import (  # noqa: F401
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    Refund,
    RefundStatus,
    RefundType,
)
from app.models.customer import Customer  # noqa: F401
from app.models.event_store import EventStatus, EventStore  # noqa: F401
from app.models.sequence import DocumentSequence  # noqa: F401
from app.models.service_provider import ServiceProvider, ServiceProviderStatus  # noqa: F401
from app.models.webhook import (  # noqa: F401
    WebhookDelivery,
    WebhookDeliveryStatus,
    WebhookEventType,
    WebhookSubscription,
)
