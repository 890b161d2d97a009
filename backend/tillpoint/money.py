"""
Money helpers.

All amounts are integer cents and VAT-inclusive. Tax is extracted by
division, never added on top:

    subtotal = total / (1 + rate)
    vat      = total - subtotal

so subtotal + vat always equals total exactly.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .validation import ValidationError

BPS_DENOMINATOR = 10_000


def split_vat(total_cents: int, rate_bps: int = 500) -> tuple[int, int]:
    """Return (subtotal_cents, vat_cents) for a VAT-inclusive total."""
    divisor = BPS_DENOMINATOR + rate_bps
    # half-up rounding, sign-aware so refunds/negatives mirror positives
    sign = -1 if total_cents < 0 else 1
    magnitude = abs(total_cents)
    subtotal = sign * ((magnitude * BPS_DENOMINATOR * 2 + divisor) // (divisor * 2))
    return subtotal, total_cents - subtotal


def to_cents(value, field: str = "price") -> int:
    """Parse a decimal currency amount (str/int/float/Decimal) into cents."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field} value: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field} value: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_money(cents: int, currency: str | None = None) -> str:
    text = f"{cents_to_decimal(cents):,.2f}"
    return f"{currency} {text}" if currency else text
