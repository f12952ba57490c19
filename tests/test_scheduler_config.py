"""Tests for scheduler config and ambient service plumbing."""

import json
import logging
from datetime import timedelta

from app.config import Settings
from app.logging import JsonLogFormatter
from app.services import scheduler_config


# =============================================================================
# Beat Schedule Tests
# =============================================================================


class TestBuildBeatSchedule:
    """Tests for build_beat_schedule."""

    def test_all_sweeps_enabled(self):
        config = Settings(
            webhook_sweep_enabled=True,
            overdue_sweep_enabled=True,
            archive_sweep_enabled=True,
            webhook_sweep_interval_seconds=300,
            overdue_sweep_interval_seconds=3600,
            archive_sweep_interval_seconds=86400,
            event_retry_interval_seconds=600,
        )
        schedule = scheduler_config.build_beat_schedule(config)

        assert set(schedule) == {
            "webhook_retry_due_deliveries",
            "event_retry_failed",
            "billing_overdue_sweep",
            "billing_archive_sweep",
        }
        assert schedule["webhook_retry_due_deliveries"] == {
            "task": "app.tasks.webhooks.retry_due_deliveries",
            "schedule": timedelta(seconds=300),
        }
        assert schedule["billing_overdue_sweep"]["task"] == "app.tasks.billing.run_overdue_sweep"
        assert schedule["billing_archive_sweep"]["schedule"] == timedelta(days=1)
        assert schedule["event_retry_failed"]["schedule"] == timedelta(seconds=600)

    def test_disabled_sweeps_are_left_out(self):
        config = Settings(
            webhook_sweep_enabled=False,
            overdue_sweep_enabled=False,
            archive_sweep_enabled=False,
        )
        schedule = scheduler_config.build_beat_schedule(config)
        assert list(schedule) == ["event_retry_failed"]

    def test_interval_has_a_floor(self):
        config = Settings(overdue_sweep_enabled=True, overdue_sweep_interval_seconds=1)
        schedule = scheduler_config.build_beat_schedule(config)
        assert schedule["billing_overdue_sweep"]["schedule"] == timedelta(
            seconds=scheduler_config.MIN_SWEEP_INTERVAL_SECONDS
        )


def test_celery_config_acks_late():
    config = Settings(celery_broker_url="redis://broker:6379/5", celery_timezone="UTC")
    celery_config = scheduler_config.get_celery_config(config)
    assert celery_config["broker_url"] == "redis://broker:6379/5"
    assert celery_config["task_acks_late"] is True
    assert celery_config["enable_utc"] is True


# =============================================================================
# Logging Tests
# =============================================================================


def test_json_log_formatter_includes_request_id():
    record = logging.LogRecord(
        "app.errors", logging.INFO, __file__, 1, "Invoice %s paid", ("INV-2026-000001",), None
    )
    record.request_id = "req-1"
    entry = json.loads(JsonLogFormatter().format(record))
    assert entry["message"] == "Invoice INV-2026-000001 paid"
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "req-1"
