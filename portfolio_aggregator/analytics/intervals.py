"""
Cycle interval resolution and interval-set helpers.

**Conceptual**: Every statistic about simultaneity (how many trades were open
at once, how much capital was at risk at once, which days saw activity) starts
from one question per trade: "over which time span was this position open?"
Platform cycles only record a close timestamp and a duration, sometimes not
even that, so this module derives a best-effort `TimeInterval` per cycle and
provides the small set operations the rest of the engine needs on intervals.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from portfolio_aggregator.data.schemas import CycleRecord, TimeInterval
from portfolio_aggregator.utils.time import MS_IN_SECOND


@dataclass(frozen=True)
class CycleInterval:
    """A cycle paired with its resolved interval."""
    cycle: CycleRecord
    interval: TimeInterval


@dataclass(frozen=True)
class Coverage:
    """
    Union statistics of an interval set.

    Attributes:
        total_active_ms: Length of the union of all intervals (overlaps counted once).
        span_ms: Distance from the earliest start to the latest end.
        min_start: Earliest start, or None for an empty set.
        max_end: Latest end, or None for an empty set.
    """
    total_active_ms: float = 0.0
    span_ms: float = 0.0
    min_start: Optional[float] = None
    max_end: Optional[float] = None


def resolve_cycle_interval(cycle: CycleRecord) -> Optional[TimeInterval]:
    """
    Derive the (start, end) interval of one trade.

    **Resolution order**:
      1. end = close timestamp; no finite close time -> None.
      2. start = end - duration_sec * 1000 when the duration is finite.
      3. Otherwise start = earliest finite order execution timestamp.
      4. Otherwise start = end (zero-length interval).
    A start later than the end is clamped to the end.

    **Edge cases**:
    - Non-finite duration and no orders -> zero-length interval, not an error.
    - Negative durations put start after end and are clamped.

    Args:
        cycle: A normalized cycle record (status is not checked here).

    Returns:
        TimeInterval, or None when the close time is missing.
    """
    end = cycle.close_time
    if end is None or not math.isfinite(end):
        return None

    if math.isfinite(cycle.duration_sec):
        start = end - cycle.duration_sec * MS_IN_SECOND
    elif cycle.order_times:
        start = min(cycle.order_times)
    else:
        start = end

    if start > end:
        start = end

    return TimeInterval(start=start, end=end)


def collect_cycle_intervals(cycles: Iterable[CycleRecord]) -> List[CycleInterval]:
    """Resolve intervals for many cycles, silently dropping unresolvable ones."""
    resolved: List[CycleInterval] = []
    dropped = 0
    for cycle in cycles:
        interval = resolve_cycle_interval(cycle)
        if interval is None:
            dropped += 1
            continue
        resolved.append(CycleInterval(cycle=cycle, interval=interval))
    if dropped:
        logger.debug(f"Dropped {dropped} cycles without a usable close time")
    return resolved


def is_valid_interval(interval: TimeInterval) -> bool:
    """True when both bounds are finite and end >= start."""
    return (
        math.isfinite(interval.start)
        and math.isfinite(interval.end)
        and interval.end >= interval.start
    )


def sanitize_intervals(intervals: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Drop invalid intervals and sort the rest by (start, end)."""
    return sorted(
        (interval for interval in intervals if is_valid_interval(interval)),
        key=lambda interval: (interval.start, interval.end),
    )


def compute_coverage(intervals: Sequence[TimeInterval]) -> Coverage:
    """
    Merge overlapping intervals and measure their union.

    **Mathematical**: After sorting by start, a running [current_start,
    current_end] block absorbs each interval that starts no later than the
    block's end; otherwise the block is closed and its length added.
    O(n log n).

    Returns:
        Coverage with all-zero / None fields for an empty or all-invalid set.
    """
    cleaned = sanitize_intervals(intervals)
    if not cleaned:
        return Coverage()

    total_active_ms = 0.0
    current_start = cleaned[0].start
    current_end = cleaned[0].end
    max_end = current_end

    for interval in cleaned[1:]:
        if interval.start > current_end:
            total_active_ms += current_end - current_start
            current_start, current_end = interval.start, interval.end
        else:
            current_end = max(current_end, interval.end)
        max_end = max(max_end, interval.end)

    total_active_ms += current_end - current_start
    min_start = cleaned[0].start

    return Coverage(
        total_active_ms=total_active_ms,
        span_ms=max(0.0, max_end - min_start),
        min_start=min_start,
        max_end=max_end,
    )
