from app.tasks.billing import run_archive_sweep, run_overdue_sweep
from app.tasks.events import retry_failed_events
from app.tasks.webhooks import deliver_webhook, retry_due_deliveries

__all__ = [
    "run_overdue_sweep",
    "run_archive_sweep",
    "retry_failed_events",
    "deliver_webhook",
    "retry_due_deliveries",
]
