# Overview: Paise/rupee conversion and GST rate helpers shared by services, routes and templates.

"""
All money is stored and computed as integer paise (1 rupee = 100 paise).
GST rates are integer basis points (18% = 1800).

Rounding is ROUND_HALF_UP to the paisa, matching the two-decimal figures
printed on cart summaries and invoices.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

from .validation import ValidationError


PAISE_PER_RUPEE = 100
BPS_PER_PERCENT = 100

# Maximum unit price: Rs 99,99,999.99
MAX_PRICE_PAISE = 999_999_999


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount_paise: int, rate_bps: int) -> int:
    """amount x rate, rounded to the paisa."""
    return round_half_up(Decimal(amount_paise) * Decimal(rate_bps) / Decimal(10_000))


def to_paise(value, *, field: str = "amount") -> int:
    """
    Parse a rupee amount ("12.50", 12.5, 12) into paise.

    Rejects negatives, NaN and more than two decimal places.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    paise = amount * PAISE_PER_RUPEE
    if paise != paise.to_integral_value():
        raise ValidationError(f"{field} cannot have more than two decimal places")
    paise = int(paise)
    if paise > MAX_PRICE_PAISE:
        raise ValidationError(f"{field} is too large")
    return paise


def rate_to_bps(value, *, field: str = "gst_rate") -> int:
    """Parse a GST percentage ("18", 2.5) into basis points."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    bps = rate * BPS_PER_PERCENT
    if bps != bps.to_integral_value():
        raise ValidationError(f"{field} cannot have more than two decimal places")
    return int(bps)


def to_rupees(paise: int | None) -> str | None:
    """Render paise as a fixed two-decimal rupee string ("308.50")."""
    if paise is None:
        return None
    return str((Decimal(paise) / PAISE_PER_RUPEE).quantize(Decimal("0.01")))


def bps_to_percent(bps: int | None) -> str | None:
    if bps is None:
        return None
    percent = (Decimal(bps) / BPS_PER_PERCENT).normalize()
    return format(percent, "f")


def floor_rupees(paise: int) -> int:
    """Whole rupees, rounded down."""
    return int((Decimal(paise) / PAISE_PER_RUPEE).to_integral_value(rounding=ROUND_DOWN))


def format_inr(paise: int | None) -> str:
    """Jinja filter: 30850 -> '₹308.50'."""
    if paise is None:
        return ""
    sign = "-" if paise < 0 else ""
    return f"{sign}₹{to_rupees(abs(paise))}"
