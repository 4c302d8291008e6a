"""Amount handling.

Amounts travel as Decimal inside the service and are quantized to cents.
SQLite hands NUMERIC columns back as float/int and psycopg2 as Decimal, so
everything read from the store goes through `to_amount` first.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    """Coerce a number or numeric string to a 2-place Decimal.

    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("amount_not_numeric")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("amount_not_numeric")
    if not d.is_finite():
        raise ValueError("amount_not_numeric")
    try:
        return d.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # More digits than the decimal context can carry.
        raise ValueError("amount_not_numeric")


def amount_json(value: Any) -> float:
    """Render an amount for JSON responses."""
    return float(to_amount(value))


def percentage(part: Decimal, total: Decimal) -> float:
    if not total:
        return 0.0
    return float((part / total * 100).quantize(CENT, rounding=ROUND_HALF_UP))
