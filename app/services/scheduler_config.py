import logging
from datetime import timedelta

from app.config import Settings, settings

logger = logging.getLogger(__name__)

MIN_SWEEP_INTERVAL_SECONDS = 30


def get_celery_config(config: Settings | None = None) -> dict:
    config = config or settings
    return {
        "broker_url": config.celery_broker_url,
        "result_backend": config.celery_result_backend,
        "timezone": config.celery_timezone,
        "enable_utc": True,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
    }


def _interval(seconds: int) -> timedelta:
    return timedelta(seconds=max(int(seconds), MIN_SWEEP_INTERVAL_SECONDS))


def build_beat_schedule(config: Settings | None = None) -> dict:
    config = config or settings
    schedule: dict[str, dict] = {}
    if config.webhook_sweep_enabled:
        schedule["webhook_retry_due_deliveries"] = {
            "task": "app.tasks.webhooks.retry_due_deliveries",
            "schedule": _interval(config.webhook_sweep_interval_seconds),
        }
    schedule["event_retry_failed"] = {
        "task": "app.tasks.events.retry_failed_events",
        "schedule": _interval(config.event_retry_interval_seconds),
    }
    if config.overdue_sweep_enabled:
        schedule["billing_overdue_sweep"] = {
            "task": "app.tasks.billing.run_overdue_sweep",
            "schedule": _interval(config.overdue_sweep_interval_seconds),
        }
    if config.archive_sweep_enabled:
        schedule["billing_archive_sweep"] = {
            "task": "app.tasks.billing.run_archive_sweep",
            "schedule": _interval(config.archive_sweep_interval_seconds),
        }
    logger.debug("Beat schedule: %s", ", ".join(sorted(schedule)) or "empty")
    return schedule
