"""
Drawdown timeline: trade-close P&L events -> cumulative equity and drawdown.

**Conceptual**: A backtest's realized equity only moves when a trade closes.
Ordering those closes in time and summing their net P&L gives the cumulative
equity curve; the distance from its running peak is the drawdown, and the
largest such distance is the maximum drawdown, the worst peak-to-trough pain
a trader would have sat through.

**Mathematical**: For events sorted by time with deltas d_0..d_{n-1}:
    cumulative_i = d_0 + ... + d_i
    peak_i       = max(0, cumulative_0, ..., cumulative_i)
    drawdown_i   = peak_i - cumulative_i
    maxDrawdown  = max_i(drawdown_i)
The peak starts at 0 (flat equity before the first trade), so a losing first
trade is already a drawdown. Values are absolute currency, not percentages:
trade logs carry no account equity to divide by.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

from portfolio_aggregator.data.schemas import EquityEvent


@dataclass(frozen=True)
class DrawdownTimeline:
    """Maximum drawdown plus the enriched equity events it was computed from."""
    max_drawdown: float = 0.0
    events: Tuple[EquityEvent, ...] = ()


def build_drawdown_timeline(
    events: Iterable[Tuple[float, float]],
    collapse_ties: bool = False,
) -> DrawdownTimeline:
    """
    Build the cumulative equity curve and maximum drawdown from close events.

    **Functionally**:
    - Input: (time_ms, net_delta) pairs in any order. Pairs with a non-finite
      time or delta are dropped.
    - Sorting is stable: equal-time events keep their input order.
    - With `collapse_ties=True`, events sharing a timestamp are first merged
      into one event with the summed delta. The portfolio-level drawdown uses
      this so that two backtests closing at the same instant cannot create a
      peak that never existed between them.
    - O(n log n) for the sort, then vectorized cumulative sums.

    **Edge cases**:
    - Empty input -> max_drawdown 0, no events.
    - Non-decreasing cumulative series -> max_drawdown 0.

    Args:
        events: Iterable of (time, delta) tuples.
        collapse_ties: Merge same-timestamp events before the peak walk.

    Returns:
        DrawdownTimeline with max_drawdown >= 0.
    """
    pairs = [
        (float(time), float(delta))
        for time, delta in events
        if math.isfinite(time) and math.isfinite(delta)
    ]
    if not pairs:
        return DrawdownTimeline()

    times = np.array([time for time, _ in pairs], dtype=float)
    deltas = np.array([delta for _, delta in pairs], dtype=float)

    order = np.argsort(times, kind="stable")
    times = times[order]
    deltas = deltas[order]

    if collapse_ties:
        # np.unique returns sorted unique times; bincount sums deltas per time
        times, inverse = np.unique(times, return_inverse=True)
        deltas = np.bincount(inverse.ravel(), weights=deltas, minlength=len(times))

    cumulative = np.cumsum(deltas)
    peak = np.maximum(np.maximum.accumulate(cumulative), 0.0)
    drawdown = peak - cumulative

    enriched = tuple(
        EquityEvent(
            time=float(time),
            delta=float(delta),
            cumulative=float(total),
            drawdown=float(dd),
        )
        for time, delta, total, dd in zip(times, deltas, cumulative, drawdown)
    )

    return DrawdownTimeline(max_drawdown=float(drawdown.max()), events=enriched)


def compute_max_drawdown(events: Iterable[Tuple[float, float]], collapse_ties: bool = True) -> float:
    """Maximum drawdown only; collapses same-time events by default (portfolio view)."""
    return build_drawdown_timeline(events, collapse_ties=collapse_ties).max_drawdown
