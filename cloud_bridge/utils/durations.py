"""
Duration parsing and formatting for schedule settings.
"""

import logging
import re
from datetime import timedelta
from typing import Any, Optional

logger = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$', re.IGNORECASE)

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration(
    value: Any,
    default: Optional[timedelta] = None,
    numeric_unit: str = "ms"
) -> timedelta:
    """
    Parse a duration from a config or API value.

    Accepts a timedelta, a bare number interpreted in ``numeric_unit``,
    or a string such as '500ms', '30s', '5m', '1h' or '1d'. Numeric
    strings without a unit are also interpreted in ``numeric_unit``.

    Args:
        value: Value to parse
        default: Returned instead of raising when the value is unusable
        numeric_unit: Unit for bare numbers ('ms', 's', 'm', 'h' or 'd')

    Returns:
        Parsed timedelta

    Raises:
        ValueError: If the value cannot be parsed and no default is given
    """
    if numeric_unit not in _UNIT_SECONDS:
        raise ValueError(f"Unsupported duration unit: {numeric_unit}")

    try:
        return _parse(value, numeric_unit)
    except ValueError as e:
        if default is not None:
            logger.warning(f"{e}, using default {format_duration(default)}")
            return default
        raise


def _parse(value: Any, numeric_unit: str) -> timedelta:
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid duration format: {value!r}")
    elif isinstance(value, (int, float)):
        seconds = value * _UNIT_SECONDS[numeric_unit]
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"Invalid duration format: {value!r}")
        number, unit = match.groups()
        seconds = float(number) * _UNIT_SECONDS[(unit or numeric_unit).lower()]

    if seconds < 0:
        raise ValueError(f"Duration must be non-negative: {value!r}")

    return timedelta(seconds=seconds)


def format_minutes(duration: timedelta) -> int:
    """Whole minutes in a duration."""
    return int(duration.total_seconds() // 60)


def format_duration(duration: timedelta) -> str:
    """Render a duration in the largest unit that represents it exactly."""
    millis = int(round(duration.total_seconds() * 1000))
    for unit in ("d", "h", "m", "s"):
        unit_millis = int(_UNIT_SECONDS[unit] * 1000)
        if millis and millis % unit_millis == 0:
            return f"{millis // unit_millis}{unit}"
    return f"{millis}ms"
