"""
Daily concurrency bucketing and percentile sizing statistics.

**Conceptual**: "How many bots should I allow to run at once?" is best
answered from the distribution of daily peaks: if on 90% of days no more than
4 trades were ever open together, a cap of 4 would rarely have bitten. This
module runs the concurrency sweep again, but clips every gap between events
to UTC day boundaries so each day accumulates its own active time, weighted
count and peak count, then summarizes the per-day peaks with percentiles.
"""

import math
from typing import Dict, List, Sequence

from loguru import logger

from portfolio_aggregator.analytics.concurrency import START, build_sweep_events
from portfolio_aggregator.data.schemas import (
    DailyConcurrencyRecord,
    DailyConcurrencyResult,
    DailyConcurrencyStats,
    PercentileLimits,
    TimeInterval,
)
from portfolio_aggregator.utils.math import ceil_limit, compute_percentile, safe_mean
from portfolio_aggregator.utils.time import MS_IN_DAY, day_index, day_start_ms


class _DayBucket:
    """Mutable accumulator for one day; never leaves this module."""

    __slots__ = ("active_ms", "weighted_sum", "max_count")

    def __init__(self) -> None:
        self.active_ms = 0.0
        self.weighted_sum = 0.0
        self.max_count = 0


def _accumulate(buckets: Dict[int, _DayBucket], start: float, end: float, count: int) -> None:
    """Spread a constant-count segment [start, end) over the days it touches."""
    segment_start = start
    while segment_start < end:
        index = day_index(segment_start)
        segment_end = min(end, (index + 1) * MS_IN_DAY)
        duration = segment_end - segment_start
        if duration <= 0:
            break
        bucket = buckets.get(index)
        if bucket is None:
            bucket = buckets[index] = _DayBucket()
        bucket.active_ms += duration
        bucket.weighted_sum += duration * count
        bucket.max_count = max(bucket.max_count, count)
        segment_start = segment_end


def summarize_daily_maxima(daily_max_values: Sequence[float]) -> DailyConcurrencyStats:
    """
    Percentile statistics over per-day maximum counts.

    p75/p90/p95 use linear interpolation between order statistics; `limits`
    rounds each up to a whole number of position slots. Empty input -> zeros.
    """
    if not daily_max_values:
        return DailyConcurrencyStats()

    p75 = compute_percentile(daily_max_values, 0.75)
    p90 = compute_percentile(daily_max_values, 0.90)
    p95 = compute_percentile(daily_max_values, 0.95)

    return DailyConcurrencyStats(
        mean_max=safe_mean(daily_max_values),
        p75=p75,
        p90=p90,
        p95=p95,
        limits=PercentileLimits(
            p75=ceil_limit(p75),
            p90=ceil_limit(p90),
            p95=ceil_limit(p95),
        ),
    )


def compute_daily_concurrency(intervals: Sequence[TimeInterval]) -> DailyConcurrencyResult:
    """
    Per-UTC-day concurrency records and daily-peak percentiles.

    **Functionally**:
    - Zero-length and invalid intervals are ignored (they occupy no time).
    - Events are swept in the same order as `sweep_concurrency` (starts
      before ends on ties). Each gap with a positive count is split at
      86,400,000 ms boundaries and credited to the days it covers.
    - A day's `max_count` is the highest count held for a positive duration
      that day; `avg_active_count` is time-weighted over the day's active time.
    - Days with no active time are omitted. Records are sorted by day.

    **Example**: one interval of 36 hours starting at midnight UTC yields two
    records: day 1 active 24h, day 2 active 12h, both with max_count 1.

    Args:
        intervals: Trade intervals, typically from many backtests.

    Returns:
        DailyConcurrencyResult (empty records and zero stats for empty input).
    """
    events = build_sweep_events(
        interval for interval in intervals
        if math.isfinite(interval.start) and math.isfinite(interval.end) and interval.end > interval.start
    )
    if not events:
        return DailyConcurrencyResult()

    buckets: Dict[int, _DayBucket] = {}
    current = 0
    previous_time = events[0][0]

    for time, kind in events:
        if time > previous_time and current > 0:
            _accumulate(buckets, previous_time, time, current)
        previous_time = time
        if kind == START:
            current += 1
        else:
            current = max(0, current - 1)

    records: List[DailyConcurrencyRecord] = []
    for index in sorted(buckets):
        bucket = buckets[index]
        if bucket.active_ms <= 0 or bucket.max_count <= 0:
            continue
        records.append(
            DailyConcurrencyRecord(
                day_index=index,
                day_start_ms=day_start_ms(index),
                active_duration_ms=bucket.active_ms,
                max_count=bucket.max_count,
                avg_active_count=bucket.weighted_sum / bucket.active_ms,
            )
        )

    stats = summarize_daily_maxima([record.max_count for record in records])
    logger.debug(f"Daily concurrency: {len(records)} active days, p90 limit {stats.limits.p90}")
    return DailyConcurrencyResult(records=tuple(records), stats=stats)
