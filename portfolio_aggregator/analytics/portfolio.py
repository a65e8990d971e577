"""
Portfolio equity merger: many backtests' trade closes -> one cumulative curve.

**Conceptual**: If every selected backtest had been traded from one account,
its realized P&L would be the running sum of all their trade closes in time
order. That curve is what a trader looks at to judge a portfolio, and it is
the input to the portfolio-level drawdown.
"""

import math
from typing import Iterable, List, Optional, Sequence

from portfolio_aggregator.data.schemas import (
    AggregationTrade,
    PortfolioEquityPoint,
    PortfolioEquitySeries,
)


def _trade_order_key(trade: AggregationTrade):
    # Trades with an unknown start sort after known ones closing at the same time
    start_known = math.isfinite(trade.start)
    return (trade.end, 0 if start_known else 1, trade.start if start_known else 0.0)


def merge_portfolio_equity(
    trades: Sequence[AggregationTrade],
    span_starts: Iterable[Optional[float]] = (),
) -> PortfolioEquitySeries:
    """
    Merge trade closes of all included backtests into one cumulative series.

    **Functionally**:
    - Trades without a finite close time are ignored; non-finite nets count as 0.
    - Trades are ordered by (end, start) so equal-time closes are deterministic.
    - When anything is known about timing, the series opens with a 0 baseline
      at the earliest of: declared span starts, trade starts and trade ends.
      Charts then show the pre-trade flat period.
    - One point per trade close follows, carrying the running sum.
    - min_value / max_value cover every emitted point, baseline included.

    **Properties**:
    - The final value equals the sum of all trade nets, whatever the arrival
      order of equal-time trades (addition is commutative).

    **Edge cases**:
    - No trades and no span starts -> empty series with zero extrema.
    - Span starts but no trades -> a single baseline point.

    Args:
        trades: Finished trades of every included backtest.
        span_starts: Declared span start of each included backtest (None allowed).

    Returns:
        PortfolioEquitySeries.
    """
    closed = [trade for trade in trades if math.isfinite(trade.end)]

    candidates: List[float] = [
        start for start in span_starts if start is not None and math.isfinite(start)
    ]
    for trade in closed:
        if math.isfinite(trade.start):
            candidates.append(trade.start)
        candidates.append(trade.end)

    if not candidates:
        return PortfolioEquitySeries()

    points: List[PortfolioEquityPoint] = [PortfolioEquityPoint(time=min(candidates), value=0.0)]

    cumulative = 0.0
    for trade in sorted(closed, key=_trade_order_key):
        cumulative += trade.net if math.isfinite(trade.net) else 0.0
        points.append(PortfolioEquityPoint(time=trade.end, value=cumulative))

    values = [point.value for point in points]
    return PortfolioEquitySeries(points=tuple(points), min_value=min(values), max_value=max(values))
