"""Money parsing helpers.

Amounts arrive as strings ("10.00") and are held as Decimal quantized to
two places. Providers that bill in minor units get integer cents.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from planner_api.errors import ValidationError

TWO_PLACES = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000")


def parse_amount(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    """Parse a caller-supplied amount.

    Raises:
        ValidationError: If the value is missing, non-numeric, not finite,
            not positive, or absurdly large
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("amount is required")
    if isinstance(raw, bool):
        raise ValidationError("amount must be a positive number")

    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError("amount must be a positive number")

    if not value.is_finite() or value <= 0:
        raise ValidationError("amount must be a positive number")
    if value > MAX_AMOUNT:
        raise ValidationError("amount exceeds the maximum allowed")

    quantized = value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    if quantized <= 0:
        raise ValidationError("amount must be at least 0.01")
    return quantized


def format_amount(value: Decimal) -> str:
    """Render as a fixed two-decimal string ("10.00")."""
    return str(value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def to_minor_units(value: Decimal) -> int:
    """Decimal major units → integer cents (10.00 → 1000)."""
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_currency(raw: Union[str, None]) -> str:
    if not raw or not isinstance(raw, str) or not raw.strip():
        raise ValidationError("currency is required")
    return raw.strip().upper()
