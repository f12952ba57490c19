"""Exact decimal money handling."""

from decimal import Decimal, InvalidOperation

from app.services.common import round_money
from app.services.exceptions import ValidationError

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def parse_amount(value, label: str = "amount", allow_zero: bool = False) -> Decimal:
    """Parse a monetary amount from a Decimal, int or numeric string.

    Floats are rejected because they cannot represent most cent values
    exactly. Values with more than two fractional digits are rejected rather
    than silently rounded.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{label} must be a decimal string or integer")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValidationError(f"{label} is not a valid number") from exc
    else:
        raise ValidationError(f"{label} must be a decimal string or integer")
    if not parsed.is_finite():
        raise ValidationError(f"{label} must be finite")
    if parsed.as_tuple().exponent < -2 and parsed != parsed.quantize(CENT):
        raise ValidationError(f"{label} cannot have more than two decimal places")
    parsed = parsed.quantize(CENT)
    if parsed < 0 or (parsed == 0 and not allow_zero):
        raise ValidationError(f"{label} must be greater than zero")
    return parsed


def is_settled(remaining: Decimal) -> bool:
    """An invoice is settled once nothing remains; overpayment counts as settled."""
    return remaining <= ZERO
