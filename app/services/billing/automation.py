"""Periodic invoice sweeps run by Celery beat.

Each invoice is handled in its own transaction so one failure does not stop
the sweep.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import Invoice, InvoiceStatus
from app.services.billing import reconciliation
from app.services.common import utc_now

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 500


def _sweep(db: Session, invoice_ids: list, transition, now: datetime, label: str, **kwargs) -> dict:
    summary = {"scanned": len(invoice_ids), "changed": 0, "errors": 0}
    for invoice_id in invoice_ids:
        try:
            invoice = db.get(Invoice, invoice_id)
            if invoice is None:
                continue
            result = transition(db, invoice, now=now, **kwargs)
            if result.changed:
                summary["changed"] += 1
        except Exception:
            db.rollback()
            summary["errors"] += 1
            logger.exception("%s sweep failed for invoice %s", label, invoice_id)
    logger.info(
        "%s sweep: scanned=%d changed=%d errors=%d",
        label,
        summary["scanned"],
        summary["changed"],
        summary["errors"],
    )
    return summary


def run_overdue_sweep(db: Session, now: datetime | None = None) -> dict:
    """Mark every pending invoice whose due date has passed as overdue."""
    now = utc_now(now)
    invoice_ids = [
        row.id
        for row in db.query(Invoice.id)
        .filter(Invoice.status == InvoiceStatus.pending)
        .filter(Invoice.is_active.is_(True))
        .filter(Invoice.due_date < now.date())
        .order_by(Invoice.due_date)
        .limit(SWEEP_BATCH_SIZE)
        .all()
    ]
    return _sweep(db, invoice_ids, reconciliation.mark_overdue, now, "Overdue")


def run_archive_sweep(
    db: Session,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> dict:
    """Archive paid invoices whose paid date is older than the retention window."""
    now = utc_now(now)
    retention_days = (
        settings.archive_retention_days if retention_days is None else retention_days
    )
    cutoff = now - timedelta(days=retention_days)
    invoice_ids = [
        row.id
        for row in db.query(Invoice.id)
        .filter(Invoice.status == InvoiceStatus.paid)
        .filter(Invoice.paid_date.is_not(None))
        .filter(Invoice.paid_date < cutoff)
        .order_by(Invoice.paid_date)
        .limit(SWEEP_BATCH_SIZE)
        .all()
    ]
    return _sweep(
        db,
        invoice_ids,
        reconciliation.archive,
        now,
        "Archive",
        retention_days=retention_days,
    )
