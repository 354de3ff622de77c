"""Common helper functions for service layer.

This module provides reusable utilities for:
- Monetary rounding
- Error message normalisation
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

UNEXPECTED_ERROR_MESSAGE = "Unexpected error"


def round_money(value: Decimal | int | float | str) -> Decimal:
    """Round monetary value to 2 decimal places, half up.

    Args:
        value: Monetary value to round

    Returns:
        Decimal rounded to 2 decimal places
    """
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value: Decimal | int | float | str | None, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    return Decimal(str(value))


def normalize_error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or UNEXPECTED_ERROR_MESSAGE
