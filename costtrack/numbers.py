"""Decimal helpers for the numeric contract.

Currency and percentages leave the engines with 2 decimal places and
quantities with 3. Intermediate values stay unrounded.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal('0.01')
MILLI = Decimal('0.001')
ZERO = Decimal('0')
HUNDRED = Decimal('100')


def to_decimal(value, field: str = 'value') -> Decimal | None:
    """Coerce ``value`` to ``Decimal``; ``None`` passes through."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f'{field} must be numeric')
    try:
        # str() keeps floats such as 0.1 from dragging binary noise along
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} must be numeric') from None
    if not result.is_finite():
        raise ValueError(f'{field} must be finite')
    return result


def money(value) -> Decimal:
    return (to_decimal(value) or ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def quantity(value) -> Decimal:
    return (to_decimal(value) or ZERO).quantize(MILLI, rounding=ROUND_HALF_UP)


def percent(value) -> Decimal:
    return (to_decimal(value) or ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """``part / whole * 100`` unrounded, guarded against a zero denominator."""
    if whole == 0:
        return ZERO
    return part / whole * HUNDRED


def as_str(value: Decimal | None) -> str | None:
    """JSON form of a decimal figure."""
    return None if value is None else str(value)
