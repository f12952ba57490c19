"""Event handlers module.

Provides handlers for processing events:
- WebhookHandler: Creates webhook deliveries and queues Celery tasks after commit
"""

from app.services.events.handlers.webhook import WebhookHandler

__all__ = ["WebhookHandler"]
