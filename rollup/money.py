"""
Money Helpers

Public values are Decimal majors with two places. Sums and rate applications
run in integer cents so repeated recomputation never drifts.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to Decimal via str()."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def apply_rate_cents(cents: int, rate) -> int:
    """Apply a fractional rate (0.08 = 8%) to an amount in cents."""
    return int((Decimal(cents) * to_decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_percent_cents(cents: int, percent) -> int:
    """Apply a percentage rate (10 = 10%) to an amount in cents."""
    return apply_rate_cents(cents, to_decimal(percent) / 100)


def sum_money(values) -> Decimal:
    return from_cents(sum(to_cents(v) for v in values))
