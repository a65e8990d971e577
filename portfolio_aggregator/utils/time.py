"""
UTC day-bucket helpers for epoch-millisecond timestamps.

All day arithmetic in the engine goes through this module. A "day" is a fixed
86,400,000 ms window anchored at the UTC epoch, never a local calendar day, so
day indices are plain integers (`floor(ms / MS_IN_DAY)`) that compare and
subtract without any timezone lookup.
"""

import math
from typing import Optional, Set

import pandas as pd

MS_IN_DAY = 24 * 60 * 60 * 1000
MS_IN_SECOND = 1000
SECONDS_IN_DAY = 24 * 60 * 60


def day_index(timestamp_ms: float) -> int:
    """
    Return the UTC day bucket containing a timestamp.

    **Mathematical**:
        day_index = floor(timestamp_ms / 86_400_000)

    Negative timestamps (before 1970) map to negative indices; floor (not
    truncation) keeps every bucket exactly one day wide.

    Args:
        timestamp_ms: Epoch milliseconds (must be finite).

    Returns:
        Integer day index.
    """
    return int(math.floor(timestamp_ms / MS_IN_DAY))


def day_start_ms(index: int) -> int:
    """Return the epoch-ms start of a UTC day bucket."""
    return index * MS_IN_DAY


def end_day_index(start_ms: float, end_ms: float) -> int:
    """
    Return the last day touched by a half-open interval [start, end).

    An interval ending exactly at midnight does not touch the following day,
    so the end is pulled back by one millisecond when the interval has length.
    Zero-length intervals touch the day they sit on.
    """
    anchor = end_ms - 1 if end_ms > start_ms else end_ms
    return day_index(anchor)


def mark_active_range(days: Set[int], start_ms: Optional[float], end_ms: Optional[float]) -> None:
    """
    Add every UTC day touched by [start_ms, end_ms) to `days`.

    Non-finite bounds and reversed intervals are ignored.

    Args:
        days: Set of day indices, updated in place.
        start_ms: Interval start (epoch ms).
        end_ms: Interval end (epoch ms).
    """
    if start_ms is None or end_ms is None:
        return
    if not (math.isfinite(start_ms) and math.isfinite(end_ms)) or end_ms < start_ms:
        return
    first = day_index(start_ms)
    last = end_day_index(start_ms, end_ms)
    days.update(range(first, last + 1))


def to_utc_timestamp(timestamp_ms: float) -> pd.Timestamp:
    """Convert epoch milliseconds to a timezone-aware UTC pandas Timestamp."""
    return pd.Timestamp(int(timestamp_ms), unit="ms", tz="UTC")
