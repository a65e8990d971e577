"""
Interval-overlap sweeps: simultaneous counts, capital at risk, concurrency caps.

**Conceptual**: Running many strategies together is constrained by how many
positions are open at the same time and how much capital those positions put
at risk together. Pairwise overlap checks are O(n²) and the inputs are every
trade of every selected backtest, so everything here uses the classic
sweep line instead: turn each interval into a +1 "start" and a -1 "end" event,
sort once, and walk left to right keeping a running count.

**Tie-break rule**: At equal timestamps all starts are processed before any
end. An interval that ends exactly when another begins is therefore counted as
momentarily overlapping it. Consistently applied, this makes `max` the number
of slots a portfolio would have needed to take both trades.

Three sweeps live here:
  - sweep_concurrency: max / time-weighted average count, active and idle time.
  - sweep_risk: the same walk with +value/-value, tracking the peak summed risk.
  - apply_concurrency_limit: greedy admission of trades under a slot cap.
"""

import heapq
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from portfolio_aggregator.analytics.intervals import is_valid_interval
from portfolio_aggregator.data.schemas import (
    AggregateRiskPoint,
    AggregateRiskSeries,
    AggregationTrade,
    ConcurrencyResult,
    RiskInterval,
    TimeInterval,
)

START = 0
END = 1

# Risk values are floats summed in arbitrary order; treat tiny residues as equal.
_RISK_EPSILON = 1e-9


def build_sweep_events(intervals: Iterable[TimeInterval]) -> List[Tuple[float, int]]:
    """
    Turn intervals into sorted (time, kind) events, starts before ends on ties.

    Invalid intervals (non-finite bounds, end < start) are skipped.
    """
    events: List[Tuple[float, int]] = []
    for interval in intervals:
        if not is_valid_interval(interval):
            continue
        events.append((interval.start, START))
        events.append((interval.end, END))
    events.sort()
    return events


def sweep_concurrency(
    intervals: Sequence[TimeInterval],
    span_start: Optional[float] = None,
    span_end: Optional[float] = None,
) -> ConcurrencyResult:
    """
    Compute simultaneous-position statistics for an interval set.

    **Mathematical**: Walking the sorted events with a running count c, each
    gap g between consecutive distinct event times contributes:
        weighted_sum    += c * g
        total_duration  += g
        active_duration += g            (only when c > 0)
    `max` is updated whenever a start is processed. When the declared span
    ends after the last event, the trailing gap is added to the total duration
    at the post-sweep count (normally 0, i.e. idle time).
        average        = weighted_sum / total_duration
        total_span_ms  = max(span_end, last event) - min(span_start, first event)
        zero_span_ms   = total_span_ms - active_duration

    **Functionally**:
    - Average is time-weighted over [first event, span end]: a portfolio with
      two overlapping trades for 1 hour and one trade for 9 hours averages 1.1.
    - Declared span bounds only widen the window; they never cut events off.
    - O(n log n).

    **Edge cases**:
    - No valid intervals and no span -> all zeros.
    - No valid intervals but a span -> max/average 0, whole span idle.
    - Zero-length intervals still count towards `max` (start-before-end rule).

    Args:
        intervals: Trade intervals (any order).
        span_start: Optional declared start of the observation window (ms).
        span_end: Optional declared end of the observation window (ms).

    Returns:
        ConcurrencyResult with 0 <= average <= max.
    """
    events = build_sweep_events(intervals)

    window_start = span_start if span_start is not None and math.isfinite(span_start) else math.inf
    window_end = span_end if span_end is not None and math.isfinite(span_end) else -math.inf
    if events:
        window_start = min(window_start, events[0][0])
        window_end = max(window_end, events[-1][0])

    if not events:
        if math.isfinite(window_start) and math.isfinite(window_end) and window_end > window_start:
            total_span_ms = window_end - window_start
            return ConcurrencyResult(max=0, average=0.0, total_span_ms=total_span_ms, zero_span_ms=total_span_ms)
        return ConcurrencyResult()

    current = 0
    max_count = 0
    weighted_sum = 0.0
    total_duration = 0.0
    active_duration = 0.0
    previous_time = events[0][0]

    for time, kind in events:
        if time > previous_time:
            gap = time - previous_time
            weighted_sum += current * gap
            total_duration += gap
            if current > 0:
                active_duration += gap
            previous_time = time

        if kind == START:
            current += 1
            max_count = max(max_count, current)
        else:
            current = max(0, current - 1)

    if window_end > previous_time:
        tail = window_end - previous_time
        weighted_sum += current * tail
        total_duration += tail
        if current > 0:
            active_duration += tail

    total_span_ms = max(window_end - window_start, 0.0)
    zero_span_ms = max(min(total_span_ms - active_duration, total_span_ms), 0.0)
    average = weighted_sum / total_duration if total_duration > 0 else 0.0

    logger.debug(
        f"Concurrency sweep over {len(events) // 2} intervals: max={max_count}, average={average:.4f}"
    )

    return ConcurrencyResult(
        max=max_count,
        average=average,
        total_span_ms=total_span_ms,
        zero_span_ms=zero_span_ms,
    )


def sweep_risk(risk_intervals: Iterable[RiskInterval]) -> AggregateRiskSeries:
    """
    Sum capital at risk over time and find its peak.

    **Conceptual**: Each open trade ties up its max-adverse-excursion magnitude
    as capital at risk. Summing that across every open trade at each instant
    answers "how much could the whole portfolio have been underwater at once?"

    **Functionally**: Structurally identical to `sweep_concurrency` with
    +value at a start and -value at an end (starts first on ties). The running
    sum never drops below 0. A point is emitted after every event (consecutive
    duplicates skipped), so instantaneous overlaps show up as spikes on the
    step series and count towards `max_value`.

    **Edge cases**:
    - Intervals with a non-positive or non-finite value are ignored.
    - No usable intervals -> empty series, max_value 0.

    Returns:
        AggregateRiskSeries (step points and peak summed risk).
    """
    events: List[Tuple[float, int, float]] = []
    for interval in risk_intervals:
        if not is_valid_interval(interval):
            continue
        if not math.isfinite(interval.value) or interval.value <= 0:
            continue
        events.append((interval.start, START, interval.value))
        events.append((interval.end, END, -interval.value))

    if not events:
        return AggregateRiskSeries()

    events.sort(key=lambda event: (event[0], event[1]))

    points: List[AggregateRiskPoint] = []

    def push(time: float, value: float) -> None:
        if points and points[-1].time == time and abs(points[-1].value - value) < _RISK_EPSILON:
            return
        points.append(AggregateRiskPoint(time=time, value=value))

    current = 0.0
    peak = 0.0
    push(events[0][0], 0.0)

    for time, _, delta in events:
        # Hold the previous level up to this instant so the series is a step
        push(time, current)
        current = max(0.0, current + delta)
        if current < _RISK_EPSILON:
            current = 0.0
        peak = max(peak, current)
        push(time, current)

    return AggregateRiskSeries(points=tuple(points), max_value=peak)


def flat_risk_series(times: Iterable[Optional[float]], value: float = 0.0) -> AggregateRiskSeries:
    """
    A constant risk series over the given timestamps.

    Used when a portfolio has activity but no trade with a positive risk
    magnitude, so the chart still spans the active period.
    """
    level = max(0.0, value)
    distinct = sorted({time for time in times if time is not None and math.isfinite(time)})
    return AggregateRiskSeries(
        points=tuple(AggregateRiskPoint(time=time, value=level) for time in distinct),
        max_value=level,
    )


def apply_concurrency_limit(trades: Sequence[AggregationTrade], limit: int) -> List[AggregationTrade]:
    """
    Admit trades greedily while fewer than `limit` admitted trades are open.

    **Conceptual**: Simulates a portfolio with `limit` position slots that
    takes every signal it has room for, first come first served. A trade
    that arrives while all slots are busy is skipped entirely.

    **Functionally**:
    - Trades are visited in (start, end, backtest_id, id) order, so ties are
      resolved deterministically.
    - A slot is free again once its trade's end < the candidate's start. A
      trade ending exactly when the candidate starts still holds its slot,
      matching the start-before-end tie rule of `sweep_concurrency`.
    - Open slots are kept in a min-heap of end times: O(n log n).

    **Edge cases**:
    - limit <= 0 or no trades -> nothing admitted.

    Args:
        trades: Finished trades from all backtests.
        limit: Number of position slots.

    Returns:
        Admitted trades, in visiting order.
    """
    if limit <= 0 or not trades:
        return []

    ordered = sorted(trades, key=lambda trade: (trade.start, trade.end, trade.backtest_id, trade.id))
    open_ends: List[float] = []
    admitted: List[AggregationTrade] = []

    for trade in ordered:
        while open_ends and open_ends[0] < trade.start:
            heapq.heappop(open_ends)
        if len(open_ends) < limit:
            admitted.append(trade)
            heapq.heappush(open_ends, trade.end)

    logger.debug(f"Concurrency limit {limit}: admitted {len(admitted)} of {len(ordered)} trades")
    return admitted
