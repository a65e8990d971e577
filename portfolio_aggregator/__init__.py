"""
portfolio_aggregator – portfolio-level analytics over many backtests.

Turns independent per-backtest trade logs into portfolio statistics: equity
curves, drawdown, simultaneous-position counts, capital at risk over time and
percentile-based sizing guidance. Everything here is a pure, synchronous
transform of in-memory records; fetching the records is someone else's job.

Public entry points:
  - compute_backtest_metrics(stats, cycles): one backtest -> BacktestMetrics.
  - summarize_aggregations(metrics_list, options): many -> AggregationSummary.
  - sweep_concurrency_limits(metrics_list, options): "what-if" curve over caps.
"""

from portfolio_aggregator.analytics.metrics import compute_backtest_metrics
from portfolio_aggregator.analytics.summary import (
    summarize_aggregations,
    sweep_concurrency_limits,
)
from portfolio_aggregator.data.schemas import (
    AggregationOptions,
    AggregationSummary,
    BacktestMetrics,
)

__all__ = [
    "compute_backtest_metrics",
    "summarize_aggregations",
    "sweep_concurrency_limits",
    "AggregationOptions",
    "AggregationSummary",
    "BacktestMetrics",
]
