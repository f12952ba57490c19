"""Celery tasks for event system maintenance.

Replays handlers that failed while an event was being dispatched.
"""

import logging
from datetime import UTC, datetime, timedelta

from app.celery_app import celery_app
from app.db import SessionLocal

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
MAX_EVENT_AGE_HOURS = 24
BATCH_SIZE = 100


@celery_app.task(name="app.tasks.events.retry_failed_events")
def retry_failed_events():
    """Retry events whose handlers failed, up to MAX_RETRIES times within
    MAX_EVENT_AGE_HOURS of being recorded."""
    from app.models.event_store import EventStatus, EventStore
    from app.services.events.dispatcher import get_dispatcher

    session = SessionLocal()
    try:
        cutoff = datetime.now(UTC) - timedelta(hours=MAX_EVENT_AGE_HOURS)
        failed_events = (
            session.query(EventStore)
            .filter(EventStore.status == EventStatus.failed)
            .filter(EventStore.retry_count < MAX_RETRIES)
            .filter(EventStore.created_at > cutoff)
            .order_by(EventStore.created_at.asc())
            .limit(BATCH_SIZE)
            .all()
        )
        if not failed_events:
            return {"retried": 0, "succeeded": 0, "failed": 0}

        dispatcher = get_dispatcher()
        succeeded = 0
        failed = 0
        for event_record in failed_events:
            try:
                if dispatcher.retry_event(session, event_record):
                    succeeded += 1
                else:
                    failed += 1
                    logger.warning(
                        "Event %s failed retry (attempt %d/%d)",
                        event_record.event_id,
                        event_record.retry_count,
                        MAX_RETRIES,
                    )
            except Exception:
                failed += 1
                logger.exception("Error retrying event %s", event_record.event_id)
                session.rollback()

        result = {"retried": len(failed_events), "succeeded": succeeded, "failed": failed}
        logger.info("Event retry task completed: %s", result)
        return result
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
