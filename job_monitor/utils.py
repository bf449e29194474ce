"""Shared utility functions for the job_monitor package."""

import math
import time


def unix_now() -> int:
    """Current time as integer unix seconds."""
    return int(time.time())


def safe_int(value, default=None):
    """Safely convert value to integer.

    Args:
        value: Value to convert
        default: Default value if conversion fails

    Returns:
        Integer value or default
    """
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def parse_time_range(value: str) -> tuple[int, int]:
    """Parse a ``<from>-<to>`` range of unix timestamps.

    Args:
        value: e.g. "1649723812-1649763839"

    Returns:
        (from, to) tuple of integers

    Raises:
        ValueError: If the value is not two integers separated by '-'
    """
    parts = value.split("-")
    if len(parts) != 2:
        raise ValueError(f"invalid time range: {value!r} (expected '<from>-<to>')")
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"invalid time range: {value!r} (timestamps must be integers)") from None


def finite(values):
    """Yield the values that are real numbers (drop None and NaN samples)."""
    for v in values:
        if v is None:
            continue
        v = float(v)
        if not math.isnan(v):
            yield v
