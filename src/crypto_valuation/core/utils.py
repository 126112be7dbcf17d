"""
Utility functions for the valuation engine.
"""

import math
from importlib import metadata
from typing import Any, Optional

from .exceptions import MalformedInputError


def get_version() -> str:
    """Get the installed package version."""
    try:
        return metadata.version("crypto-valuation")
    except metadata.PackageNotFoundError:
        from .. import __version__

        return __version__


def require_finite(value: Any, field: str) -> float:
    """Coerce a numeric input to float, rejecting NaN, infinities and non-numbers.

    Args:
        value: Value to check
        field: Field name used in the error message

    Returns:
        The value as a float

    Raises:
        MalformedInputError: If the value is not a finite number
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedInputError(
            f"{field} must be a number, got {type(value).__name__}", field=field, value=value
        )
    number = float(value)
    if not math.isfinite(number):
        raise MalformedInputError(f"{field} must be finite, got {value}", field=field, value=value)
    return number


def require_non_negative(value: Any, field: str) -> float:
    """Like require_finite, additionally rejecting negative values."""
    number = require_finite(value, field)
    if number < 0:
        raise MalformedInputError(f"{field} must be >= 0, got {value}", field=field, value=value)
    return number


def is_usable_price(value: Any) -> bool:
    """True for finite numbers strictly greater than zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def safe_pct(numerator: float, denominator: float) -> float:
    """Percentage of numerator over |denominator|, 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return numerator / abs(denominator) * 100


def format_currency(amount: Optional[float], currency: str = "EUR", decimals: int = 2) -> str:
    """Format an amount for display, e.g. 1234.5 -> '€1,234.50'."""
    if amount is None:
        return "n/a"
    symbols = {"EUR": "€", "USD": "$"}
    prefix = symbols.get(currency.upper(), "")
    sign = "-" if amount < 0 else ""
    formatted = f"{abs(amount):,.{decimals}f}"
    if prefix:
        return f"{sign}{prefix}{formatted}"
    return f"{sign}{formatted} {currency.upper()}"


def format_percentage(value: Optional[float], decimals: int = 2) -> str:
    """Format a percentage with an explicit sign, e.g. 5.0 -> '+5.00%'."""
    if value is None:
        return "n/a"
    return f"{value:+.{decimals}f}%"
