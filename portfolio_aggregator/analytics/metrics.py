"""
Per-backtest metrics: (stats, cycles) -> BacktestMetrics.

**Conceptual**: Summaries are recomputed every time the user changes the
selection or the concurrency cap, so the per-backtest work (parsing,
interval resolution, drawdown walk, risk intervals, active days) is done once
here and cached by the caller. The result is a pure function of its inputs.

**Which cycles count where**:
  - Finished cycles provide trades, equity events, concurrency and risk
    intervals.
  - The latest open cycle provides the open-position risk.
  - Any cycle (whatever its status) marks the days it touched as active,
    including every day holding one of its order timestamps.
"""

import math
from typing import Any, Iterable, List, Optional, Set

from loguru import logger

from portfolio_aggregator.analytics.drawdown import build_drawdown_timeline
from portfolio_aggregator.analytics.intervals import (
    CycleInterval,
    collect_cycle_intervals,
    compute_coverage,
    sanitize_intervals,
)
from portfolio_aggregator.config.settings import DEFAULT_SETTINGS, AggregationSettings
from portfolio_aggregator.data.adapters import normalize_cycles, normalize_stats
from portfolio_aggregator.data.schemas import (
    AggregationTrade,
    BacktestMetrics,
    BacktestStats,
    OpenPositionRisk,
    RiskInterval,
)
from portfolio_aggregator.utils.math import finite_or
from portfolio_aggregator.utils.time import MS_IN_DAY, SECONDS_IN_DAY, day_index, mark_active_range


def _abs_or_zero(value: float) -> float:
    return abs(value) if math.isfinite(value) else 0.0


def build_risk_intervals(finished: Iterable[CycleInterval]) -> List[RiskInterval]:
    """Risk intervals (value = |MAE|) of finished cycles with positive risk, sorted."""
    risk_intervals = [
        RiskInterval(start=entry.interval.start, end=entry.interval.end, value=abs(entry.cycle.mae))
        for entry in finished
        if math.isfinite(entry.cycle.mae) and abs(entry.cycle.mae) > 0
    ]
    risk_intervals.sort(key=lambda interval: (interval.start, interval.end))
    return risk_intervals


def resolve_open_position(open_cycles: Iterable[CycleInterval]) -> Optional[OpenPositionRisk]:
    """
    Risk of the most recent still-open position.

    mpu = max(|MAE|, unrealized loss) where unrealized loss is -net for a
    negative net. Among several open cycles the one with the latest interval
    end wins; on ties the later one in input order.
    """
    latest: Optional[OpenPositionRisk] = None
    latest_end = -math.inf
    for entry in open_cycles:
        net = entry.cycle.net
        unrealized_loss = abs(net) if math.isfinite(net) and net < 0 else 0.0
        mpu = max(_abs_or_zero(entry.cycle.mae), unrealized_loss)
        if latest is None or entry.interval.end >= latest_end:
            latest = OpenPositionRisk(cycle_id=entry.cycle.id, mpu=mpu)
            latest_end = entry.interval.end
    return latest


def compute_backtest_metrics(
    stats: Any,
    cycles: Optional[Iterable[Any]],
    settings: Optional[AggregationSettings] = None,
) -> BacktestMetrics:
    """
    Compute everything the summarizer needs from one backtest.

    **Functionally**:
    - `stats` / `cycles` may be raw platform mappings or normalized
      `BacktestStats` / `CycleRecord` objects; both go through the ingress
      adapter.
    - Counters (pnl, deals, durations, win rate) come from `stats`.
    - max_drawdown: per-backtest drawdown timeline over finished trade closes
      (same-time closes are not merged at this level).
    - max_mpu: largest |MAE| among finished trades; max_mpp: largest MFE
      among all resolved cycles.
    - worst_risk = max(0, max_drawdown, max_mpu); risk_efficiency =
      pnl / worst_risk (None when worst_risk is 0).
    - span: declared span widened to cover every concurrency interval.
    - downtime_days: (span - union of active time) / 1 day.

    **Edge cases**:
    - Cycles without a usable close time are dropped, not fatal.
    - No cycles at all -> zero risk metrics, empty event/interval tuples.

    Args:
        stats: Aggregate counters for the backtest.
        cycles: The backtest's trade records.
        settings: Status conventions; DEFAULT_SETTINGS when omitted.

    Returns:
        Immutable BacktestMetrics.
    """
    settings = settings or DEFAULT_SETTINGS
    normalized_stats: BacktestStats = normalize_stats(stats)
    normalized_cycles = normalize_cycles(cycles)

    completed_for_rate = normalized_stats.win_rate_profits + normalized_stats.win_rate_losses
    win_rate_percent = (
        normalized_stats.win_rate_profits / completed_for_rate * 100.0
        if completed_for_rate > 0
        else None
    )

    total_deals = normalized_stats.total_deals
    total_trade_duration_sec = normalized_stats.avg_duration_sec * total_deals
    avg_trade_duration_days = (
        total_trade_duration_sec / total_deals / SECONDS_IN_DAY if total_deals > 0 else 0.0
    )

    finished_status = settings.finished_status.upper()
    open_status = settings.open_status.upper()
    cycle_intervals = collect_cycle_intervals(normalized_cycles)
    finished = [entry for entry in cycle_intervals if entry.cycle.status == finished_status]
    still_open = [entry for entry in cycle_intervals if entry.cycle.status == open_status]

    trades = tuple(
        AggregationTrade(
            id=entry.cycle.id,
            backtest_id=normalized_stats.id,
            start=entry.interval.start,
            end=entry.interval.end,
            net=finite_or(entry.cycle.net),
            mfe=max(0.0, finite_or(entry.cycle.mfe)),
            mae=_abs_or_zero(entry.cycle.mae),
        )
        for entry in finished
    )

    max_mpp = max((max(0.0, finite_or(entry.cycle.mfe)) for entry in cycle_intervals), default=0.0)
    open_position = resolve_open_position(still_open)

    timeline = build_drawdown_timeline(
        (entry.interval.end, entry.cycle.net)
        for entry in finished
        if math.isfinite(entry.cycle.net)
    )
    concurrency_intervals = tuple(sanitize_intervals(entry.interval for entry in finished))
    risk_intervals = tuple(build_risk_intervals(finished))
    coverage = compute_coverage(concurrency_intervals)

    span_start = normalized_stats.span_start
    span_end = normalized_stats.span_end
    if coverage.min_start is not None:
        span_start = coverage.min_start if span_start is None else min(span_start, coverage.min_start)
    if coverage.max_end is not None:
        span_end = coverage.max_end if span_end is None else max(span_end, coverage.max_end)

    span_ms = span_end - span_start if span_start is not None and span_end is not None else 0.0
    downtime_days = max(span_ms - coverage.total_active_ms, 0.0) / MS_IN_DAY if span_ms > 0 else 0.0

    active_days: Set[int] = set()
    for entry in cycle_intervals:
        mark_active_range(active_days, entry.interval.start, entry.interval.end)
    for cycle in normalized_cycles:
        active_days.update(day_index(time) for time in cycle.order_times)

    max_drawdown = timeline.max_drawdown
    max_mpu = max((interval.value for interval in risk_intervals), default=0.0)
    worst_risk = max(0.0, max_drawdown, max_mpu)
    risk_efficiency = normalized_stats.pnl / worst_risk if worst_risk > 0 else None

    logger.debug(
        f"Backtest {normalized_stats.id}: {len(trades)} finished trades, "
        f"{len(normalized_cycles) - len(cycle_intervals)} unresolved cycles, "
        f"max drawdown {max_drawdown:.2f}"
    )

    return BacktestMetrics(
        id=normalized_stats.id,
        name=normalized_stats.name,
        symbol=normalized_stats.symbol,
        pnl=normalized_stats.pnl,
        profits_count=normalized_stats.profits,
        losses_count=normalized_stats.losses,
        total_deals=total_deals,
        avg_trade_duration_days=avg_trade_duration_days,
        total_trade_duration_sec=total_trade_duration_sec,
        avg_net_per_day=normalized_stats.avg_net_per_day,
        max_drawdown=max_drawdown,
        max_mpu=max_mpu,
        max_mpp=max_mpp,
        worst_risk=worst_risk,
        risk_efficiency=risk_efficiency,
        downtime_days=downtime_days,
        active_mpu=open_position.mpu if open_position else 0.0,
        open_position=open_position,
        span_start=span_start,
        span_end=span_end,
        active_duration_ms=coverage.total_active_ms,
        equity_events=timeline.events,
        concurrency_intervals=concurrency_intervals,
        risk_intervals=risk_intervals,
        active_day_indices=tuple(sorted(active_days)),
        trades=trades,
        win_rate_percent=win_rate_percent,
        deposit_amount=normalized_stats.deposit_amount,
        deposit_currency=normalized_stats.deposit_currency,
        deposit_leverage=normalized_stats.deposit_leverage,
    )
