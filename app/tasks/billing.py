import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services.billing import automation as billing_automation

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.billing.run_overdue_sweep")
def run_overdue_sweep():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    logger.info("OVERDUE_SWEEP_START")
    try:
        return billing_automation.run_overdue_sweep(session)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("overdue_sweep", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.billing.run_archive_sweep")
def run_archive_sweep():
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    logger.info("ARCHIVE_SWEEP_START")
    try:
        return billing_automation.run_archive_sweep(session)
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("archive_sweep", status, time.monotonic() - start)
