"""
Decimal helpers.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

LAMPORTS_PER_SOL = Decimal("1000000000")


def safe_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Safely convert a value to Decimal.

    Returns default for None, NaN, Infinity, and invalid values.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        if value.is_nan() or value.is_infinite():
            return default
        return value
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default
    if result.is_nan() or result.is_infinite():
        return default
    return result


def parse_positive_decimal(value: Any, field_name: str) -> Decimal:
    """Strict variant for request parsing: raises ValueError on anything but a positive number."""
    result = safe_decimal(value, default=Decimal("-1"))
    if result <= 0:
        raise ValueError(f"{field_name} must be a positive number, got {value!r}")
    return result


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL
