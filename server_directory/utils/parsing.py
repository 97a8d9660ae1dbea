"""
Permissive query-parameter parsing.

Listing filters never reject a request: a malformed or out-of-range value
is replaced by the permissive default (usually "no filter").
"""

import math
from datetime import date, datetime

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_float(value, default: float | None = None) -> float | None:
    """Parse a finite float, or return default."""
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def parse_int(value, default: int | None = None) -> int | None:
    """Parse an integer (accepting "2.0"), or return default."""
    parsed = parse_float(value)
    if parsed is None:
        return default
    return int(parsed)


def parse_date(value) -> date | None:
    """
    Parse an ISO date ("2025-01-31") or datetime; anything else is None.

    Only the date part is kept; range filters widen it to the whole day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_bool(value, default: bool | None = None) -> bool | None:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
