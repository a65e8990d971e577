"""
Canonical record types for the aggregation engine.

**Conceptual**: This module defines the "data contracts" of the engine. Raw
platform records arrive with loosely typed, alternately spelled fields; the
ingress adapter (`data.adapters`) maps them once onto the strict types below,
and every computation downstream can then assume:
  - All timestamps are epoch milliseconds (floats), UTC.
  - Durations on raw cycles are seconds; durations on intervals are ms.
  - Money values are finite floats; risk magnitudes are non-negative.
  - Sequences are tuples, so results are immutable and safe to memoize.

**Schema philosophy**: Types are frozen dataclasses. Derived values (cumulative
equity, drawdown) are computed by the analytics modules and stored here; they
are never set by callers.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

import pandas as pd

from portfolio_aggregator.utils.time import to_utc_timestamp


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderRecord:
    """One child execution of a cycle; only its timestamp matters here."""
    executed_at: Optional[float] = None


@dataclass(frozen=True)
class CycleRecord:
    """
    One trade (cycle) of a backtest, normalized.

    Attributes:
        id: Cycle identifier (unique within its backtest).
        status: Upper-cased status ("FINISHED", "STARTED", "CANCELED", ...).
        close_time: Close timestamp in epoch ms, or None when unparseable.
        duration_sec: Trade duration in seconds (NaN when unknown).
        net: Realized net P&L in quote currency (NaN when unknown).
        mae: Max adverse excursion magnitude (NaN when unknown).
        mfe: Max favorable excursion magnitude (NaN when unknown).
        orders: Child executions, in platform order.
    """
    id: int
    status: str
    close_time: Optional[float]
    duration_sec: float = float("nan")
    net: float = float("nan")
    mae: float = float("nan")
    mfe: float = float("nan")
    orders: Tuple[OrderRecord, ...] = ()

    @property
    def order_times(self) -> Tuple[float, ...]:
        """Finite execution timestamps of the cycle's orders."""
        return tuple(
            order.executed_at
            for order in self.orders
            if order.executed_at is not None and math.isfinite(order.executed_at)
        )


@dataclass(frozen=True)
class BacktestStats:
    """
    Aggregate counters for one backtest, normalized.

    Attributes:
        id: Backtest identifier.
        name: Display name.
        symbol: Traded symbol ("BASE/QUOTE" when the platform omits it).
        pnl: Net P&L over the whole backtest.
        profits: Count of profitable deals.
        losses: Count of losing deals.
        total_deals: Count of all deals.
        avg_duration_sec: Average deal duration in seconds.
        avg_net_per_day: Platform-reported average net per day.
        win_rate_profits: Winning deals used for the win rate.
        win_rate_losses: Losing deals used for the win rate.
        span_start: Declared start of the backtest window (epoch ms) or None.
        span_end: Declared end of the backtest window (epoch ms) or None.
        deposit_amount: Deposit size, if configured.
        deposit_currency: Deposit currency, if known.
        deposit_leverage: Leverage, if configured.
    """
    id: int
    name: str = "—"
    symbol: str = "—"
    pnl: float = 0.0
    profits: int = 0
    losses: int = 0
    total_deals: int = 0
    avg_duration_sec: float = 0.0
    avg_net_per_day: float = 0.0
    win_rate_profits: int = 0
    win_rate_losses: int = 0
    span_start: Optional[float] = None
    span_end: Optional[float] = None
    deposit_amount: Optional[float] = None
    deposit_currency: Optional[str] = None
    deposit_leverage: Optional[float] = None


# ---------------------------------------------------------------------------
# Intervals and events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeInterval:
    """Half-open time span [start, end) in epoch ms; valid only when end >= start."""
    start: float
    end: float

    @property
    def duration_ms(self) -> float:
        return max(self.end - self.start, 0.0)


@dataclass(frozen=True)
class RiskInterval(TimeInterval):
    """A TimeInterval carrying the capital-at-risk magnitude held during it."""
    value: float = 0.0


@dataclass(frozen=True)
class EquityEvent:
    """A trade close on the cumulative equity curve."""
    time: float
    delta: float
    cumulative: float
    drawdown: float


@dataclass(frozen=True)
class AggregationTrade:
    """A finished trade as the summarizer sees it (interval plus outcome)."""
    id: int
    backtest_id: int
    start: float
    end: float
    net: float
    mfe: float
    mae: float


@dataclass(frozen=True)
class OpenPositionRisk:
    """Risk held by a backtest's latest still-open position."""
    cycle_id: int
    mpu: float


# ---------------------------------------------------------------------------
# Per-backtest metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BacktestMetrics:
    """
    Everything the summarizer needs from one backtest, computed once.

    A pure function of `(stats, cycles)`, so it can be cached indefinitely.
    See `analytics.metrics.compute_backtest_metrics` for how each field is derived.
    """
    id: int
    name: str
    symbol: str
    pnl: float
    profits_count: int
    losses_count: int
    total_deals: int
    avg_trade_duration_days: float
    total_trade_duration_sec: float
    avg_net_per_day: float
    max_drawdown: float
    max_mpu: float
    max_mpp: float
    worst_risk: float
    risk_efficiency: Optional[float]
    downtime_days: float
    active_mpu: float
    open_position: Optional[OpenPositionRisk]
    span_start: Optional[float]
    span_end: Optional[float]
    active_duration_ms: float
    equity_events: Tuple[EquityEvent, ...]
    concurrency_intervals: Tuple[TimeInterval, ...]
    risk_intervals: Tuple[RiskInterval, ...]
    active_day_indices: Tuple[int, ...]
    trades: Tuple[AggregationTrade, ...]
    win_rate_percent: Optional[float] = None
    deposit_amount: Optional[float] = None
    deposit_currency: Optional[str] = None
    deposit_leverage: Optional[float] = None


# ---------------------------------------------------------------------------
# Statistics results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConcurrencyResult:
    """Output of the concurrency sweep."""
    max: int = 0
    average: float = 0.0
    total_span_ms: float = 0.0
    zero_span_ms: float = 0.0


@dataclass(frozen=True)
class DailyConcurrencyRecord:
    """Concurrency observed within one UTC day bucket."""
    day_index: int
    day_start_ms: int
    active_duration_ms: float
    max_count: int
    avg_active_count: float


@dataclass(frozen=True)
class PercentileLimits:
    """Ceiling-rounded percentiles: candidate position-count caps."""
    p75: int = 0
    p90: int = 0
    p95: int = 0


@dataclass(frozen=True)
class DailyConcurrencyStats:
    """Distribution of daily maximum concurrency."""
    mean_max: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    limits: PercentileLimits = field(default_factory=PercentileLimits)


@dataclass(frozen=True)
class DailyConcurrencyResult:
    """Per-day records plus percentile statistics over their maxima."""
    records: Tuple[DailyConcurrencyRecord, ...] = ()
    stats: DailyConcurrencyStats = field(default_factory=DailyConcurrencyStats)

    def to_frame(self) -> pd.DataFrame:
        """
        Records as a DataFrame indexed by the UTC day start.

        Columns: day_index, active_duration_ms, max_count, avg_active_count.
        """
        columns = ["day_index", "active_duration_ms", "max_count", "avg_active_count"]
        if not self.records:
            return pd.DataFrame(
                columns=columns,
                index=pd.DatetimeIndex([], tz="UTC", name="day_start"),
            )
        frame = pd.DataFrame(
            {
                "day_index": [record.day_index for record in self.records],
                "active_duration_ms": [record.active_duration_ms for record in self.records],
                "max_count": [record.max_count for record in self.records],
                "avg_active_count": [record.avg_active_count for record in self.records],
            },
            index=pd.DatetimeIndex(
                [to_utc_timestamp(record.day_start_ms) for record in self.records],
                name="day_start",
            ),
        )
        return frame


@dataclass(frozen=True)
class PortfolioEquityPoint:
    time: float
    value: float


@dataclass(frozen=True)
class PortfolioEquitySeries:
    """Chronological cumulative P&L of a set of backtests."""
    points: Tuple[PortfolioEquityPoint, ...] = ()
    min_value: float = 0.0
    max_value: float = 0.0

    def to_series(self) -> pd.Series:
        """Cumulative values as a Series indexed by UTC timestamps."""
        index = pd.DatetimeIndex(
            [to_utc_timestamp(point.time) for point in self.points],
            tz="UTC",
            name="time",
        )
        return pd.Series(
            [point.value for point in self.points],
            index=index,
            dtype=float,
            name="cumulative_pnl",
        )


@dataclass(frozen=True)
class AggregateRiskPoint:
    time: float
    value: float


@dataclass(frozen=True)
class AggregateRiskSeries:
    """Summed capital at risk over time (step points) and its peak."""
    points: Tuple[AggregateRiskPoint, ...] = ()
    max_value: float = 0.0


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregationOptions:
    """
    Caller choices for one summarization.

    Attributes:
        max_concurrent_bots: Optional cap on simultaneously open trades across
                             the portfolio. None (or non-finite) means no cap.
        excluded_ids: Backtest ids to leave out of this summary.
    """
    max_concurrent_bots: Optional[float] = None
    excluded_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class AggregationSummary:
    """Portfolio-level projection of a set of BacktestMetrics."""
    total_selected: int = 0
    total_pnl: float = 0.0
    total_profits: int = 0
    total_losses: int = 0
    total_deals: int = 0
    open_deals: int = 0
    active_mpu: float = 0.0
    avg_pnl_per_deal: float = 0.0
    avg_pnl_per_backtest: float = 0.0
    avg_net_per_day: float = 0.0
    avg_trade_duration_days: float = 0.0
    avg_max_drawdown: float = 0.0
    aggregate_drawdown: float = 0.0
    aggregate_mpu: float = 0.0
    aggregate_worst_risk: float = 0.0
    aggregate_risk_efficiency: Optional[float] = None
    max_concurrent: int = 0
    avg_concurrent: float = 0.0
    concurrency: ConcurrencyResult = field(default_factory=ConcurrencyResult)
    total_days: int = 0
    no_trade_days: int = 0
    daily_concurrency: DailyConcurrencyResult = field(default_factory=DailyConcurrencyResult)
    portfolio_equity: PortfolioEquitySeries = field(default_factory=PortfolioEquitySeries)
    aggregate_risk_series: AggregateRiskSeries = field(default_factory=AggregateRiskSeries)


@dataclass(frozen=True)
class LimitImpactPoint:
    """How the portfolio looks under one concurrency cap ("∞" for none)."""
    label: str
    limit: Optional[int]
    total_pnl: float
    aggregate_drawdown: float
    aggregate_mpu: float
    aggregate_worst_risk: float
    aggregate_risk_efficiency: Optional[float]
