"""Human-readable document numbers backed by row-locked sequences."""

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.sequence import DocumentSequence

INVOICE_PADDING = 6
REFERENCE_PADDING = 6


def _format_number(prefix: str, padding: int, value: int) -> str:
    pad = max(int(padding or 0), 0)
    if pad > 0:
        return f"{prefix}{value:0{pad}d}"
    return f"{prefix}{value}"


def _next_sequence_value(db: Session, key: str, start_value: int = 1) -> int:
    sequence = (
        db.query(DocumentSequence)
        .filter(DocumentSequence.key == key)
        .with_for_update()
        .first()
    )
    if not sequence:
        sequence = DocumentSequence(key=key, next_value=start_value)
        db.add(sequence)
        db.flush()
    value = sequence.next_value
    sequence.next_value = value + 1
    db.flush()
    return value


def generate_number(db: Session, kind: str, prefix: str, padding: int) -> str:
    value = _next_sequence_value(db, f"{kind}:{prefix}")
    return _format_number(prefix, padding, value)


def next_invoice_number(db: Session, now: datetime | None = None) -> str:
    """Return the next ``INV-<YYYY>-NNNNNN`` number; the counter restarts yearly."""
    now = now or datetime.now(timezone.utc)
    return generate_number(db, "invoice_number", f"INV-{now:%Y}-", INVOICE_PADDING)


def next_payment_reference(db: Session, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return generate_number(
        db, "payment_reference", f"PAY-{now:%Y%m%d}-", REFERENCE_PADDING
    )


def next_refund_reference(db: Session, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return generate_number(
        db, "refund_reference", f"REF-{now:%Y%m%d}-", REFERENCE_PADDING
    )
