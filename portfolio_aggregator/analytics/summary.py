"""
Aggregation summarizer: many BacktestMetrics -> one AggregationSummary.

**Conceptual**: This is the portfolio view. It answers "if I had run all of
these backtests together, what would my P&L, drawdown, capital at risk and
simultaneous position count have looked like?" and, with a concurrency cap,
"what if I could only hold N positions at a time?"

**Two paths**:
  - Unlimited: totals come from each backtest's own counters, statistics from
    their precomputed equity events, intervals and spans.
  - Capped (`max_concurrent_bots` below the portfolio's natural peak): trades
    are first admitted greedily into N slots (`apply_concurrency_limit`), then
    every trade-derived statistic is recomputed from the admitted trades only.
    A cap at or above the natural peak admits everything and returns exactly
    the unlimited summary.

The summary is never stored: it is a fresh projection of its inputs and is
cheap enough to recompute at every cap 1..N (`sweep_concurrency_limits`).
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from loguru import logger

from portfolio_aggregator.analytics.concurrency import (
    apply_concurrency_limit,
    flat_risk_series,
    sweep_concurrency,
    sweep_risk,
)
from portfolio_aggregator.analytics.daily import compute_daily_concurrency
from portfolio_aggregator.analytics.drawdown import compute_max_drawdown
from portfolio_aggregator.analytics.portfolio import merge_portfolio_equity
from portfolio_aggregator.data.schemas import (
    AggregateRiskSeries,
    AggregationOptions,
    AggregationSummary,
    AggregationTrade,
    BacktestMetrics,
    ConcurrencyResult,
    LimitImpactPoint,
    OpenPositionRisk,
    RiskInterval,
    TimeInterval,
)
from portfolio_aggregator.utils.math import finite_or, safe_divide, safe_mean
from portfolio_aggregator.utils.time import MS_IN_DAY, SECONDS_IN_DAY, day_index, end_day_index, mark_active_range

UNLIMITED_LABEL = "∞"


# ---------------------------------------------------------------------------
# Building blocks shared by both paths
# ---------------------------------------------------------------------------


def _open_positions(metrics_list: Sequence[BacktestMetrics]) -> List[OpenPositionRisk]:
    return [metrics.open_position for metrics in metrics_list if metrics.open_position is not None]


def _risk_efficiency(total_pnl: float, worst_risk: float) -> Optional[float]:
    return total_pnl / worst_risk if worst_risk > 0 else None


def portfolio_concurrency(metrics_list: Sequence[BacktestMetrics]) -> ConcurrencyResult:
    """Concurrency sweep over every backtest's intervals within the union of their spans."""
    intervals = [interval for metrics in metrics_list for interval in metrics.concurrency_intervals]
    span_starts = [metrics.span_start for metrics in metrics_list if metrics.span_start is not None]
    span_ends = [metrics.span_end for metrics in metrics_list if metrics.span_end is not None]
    return sweep_concurrency(
        intervals,
        span_start=min(span_starts) if span_starts else None,
        span_end=max(span_ends) if span_ends else None,
    )


def count_no_trade_days(metrics_list: Sequence[BacktestMetrics]) -> Tuple[int, int]:
    """
    Count calendar days without any activity inside the portfolio's span.

    **Mathematical**: Let A be the union of all active-day indices. The day
    range [min_day, max_day] covers A plus every backtest's span start day
    and span end day (span end exclusive). Then
        total_days   = max_day - min_day + 1
        no_trade_days = total_days - |A ∩ [min_day, max_day]|

    Returns:
        (total_days, no_trade_days); (0, 0) when nothing is known.
    """
    active_days: Set[int] = set()
    bounds: List[int] = []

    for metrics in metrics_list:
        active_days.update(metrics.active_day_indices)
        bounds.extend(metrics.active_day_indices)
        if metrics.span_start is not None:
            bounds.append(day_index(metrics.span_start))
        if metrics.span_end is not None:
            start = metrics.span_start if metrics.span_start is not None else metrics.span_end
            bounds.append(end_day_index(start, metrics.span_end))

    if not bounds:
        return 0, 0

    min_day, max_day = min(bounds), max(bounds)
    total_days = max_day - min_day + 1
    active_count = sum(1 for day in active_days if min_day <= day <= max_day)
    return total_days, max(total_days - active_count, 0)


def _count_no_trade_days_from_trades(trades: Sequence[AggregationTrade]) -> Tuple[int, int]:
    """Same count as `count_no_trade_days`, bounded by the admitted trades only."""
    active_days: Set[int] = set()
    for trade in trades:
        mark_active_range(active_days, trade.start, trade.end)
    if not active_days:
        return 0, 0
    total_days = max(active_days) - min(active_days) + 1
    return total_days, max(total_days - len(active_days), 0)


def _aggregate_risk_from_metrics(metrics_list: Sequence[BacktestMetrics]) -> AggregateRiskSeries:
    series = sweep_risk(interval for metrics in metrics_list for interval in metrics.risk_intervals)
    if series.points:
        return series

    times: List[Optional[float]] = []
    for metrics in metrics_list:
        times.extend((metrics.span_start, metrics.span_end))
        for interval in metrics.concurrency_intervals:
            times.extend((interval.start, interval.end))
    return flat_risk_series(times, 0.0)


def _aggregate_risk_from_trades(trades: Sequence[AggregationTrade]) -> AggregateRiskSeries:
    series = sweep_risk(
        RiskInterval(start=trade.start, end=trade.end, value=trade.mae)
        for trade in trades
        if trade.mae > 0
    )
    if series.points:
        return series
    return flat_risk_series([time for trade in trades for time in (trade.start, trade.end)], 0.0)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def summarize_without_limit(metrics_list: Sequence[BacktestMetrics]) -> AggregationSummary:
    """
    Portfolio summary with every trade of every backtest included.

    **Functionally**:
    - Totals are plain sums of per-backtest counters; averages are zero-safe.
    - aggregate_drawdown: drawdown walk over all backtests' equity events with
      same-timestamp closes merged first.
    - aggregate_mpu: max(peak summed risk, largest open-position risk).
    - Concurrency over all intervals within the union of declared spans;
      daily concurrency, no-trade days and portfolio equity as documented in
      their modules.
    """
    total_selected = len(metrics_list)
    if total_selected == 0:
        return AggregationSummary()

    total_pnl = sum(finite_or(metrics.pnl) for metrics in metrics_list)
    total_profits = sum(metrics.profits_count for metrics in metrics_list)
    total_losses = sum(metrics.losses_count for metrics in metrics_list)
    total_deals = sum(metrics.total_deals for metrics in metrics_list)
    total_trade_duration_sec = sum(finite_or(metrics.total_trade_duration_sec) for metrics in metrics_list)

    open_positions = _open_positions(metrics_list)
    open_risks = [max(0.0, finite_or(position.mpu)) for position in open_positions]

    aggregate_drawdown = compute_max_drawdown(
        ((event.time, event.delta) for metrics in metrics_list for event in metrics.equity_events),
        collapse_ties=True,
    )
    risk_series = _aggregate_risk_from_metrics(metrics_list)
    aggregate_mpu = max(risk_series.max_value, max(open_risks, default=0.0))
    aggregate_worst_risk = max(0.0, aggregate_drawdown, aggregate_mpu)

    concurrency = portfolio_concurrency(metrics_list)
    total_days, no_trade_days = count_no_trade_days(metrics_list)

    all_intervals: List[TimeInterval] = [
        interval for metrics in metrics_list for interval in metrics.concurrency_intervals
    ]
    all_trades = [trade for metrics in metrics_list for trade in metrics.trades]

    return AggregationSummary(
        total_selected=total_selected,
        total_pnl=total_pnl,
        total_profits=total_profits,
        total_losses=total_losses,
        total_deals=total_deals,
        open_deals=len(open_positions),
        active_mpu=sum(open_risks),
        avg_pnl_per_deal=safe_divide(total_pnl, total_deals),
        avg_pnl_per_backtest=safe_divide(total_pnl, total_selected),
        avg_net_per_day=safe_mean(metrics.avg_net_per_day for metrics in metrics_list),
        avg_trade_duration_days=safe_divide(total_trade_duration_sec, total_deals) / SECONDS_IN_DAY,
        avg_max_drawdown=safe_mean(metrics.max_drawdown for metrics in metrics_list),
        aggregate_drawdown=aggregate_drawdown,
        aggregate_mpu=aggregate_mpu,
        aggregate_worst_risk=aggregate_worst_risk,
        aggregate_risk_efficiency=_risk_efficiency(total_pnl, aggregate_worst_risk),
        max_concurrent=concurrency.max,
        avg_concurrent=concurrency.average,
        concurrency=concurrency,
        total_days=total_days,
        no_trade_days=no_trade_days,
        daily_concurrency=compute_daily_concurrency(all_intervals),
        portfolio_equity=merge_portfolio_equity(
            all_trades, (metrics.span_start for metrics in metrics_list)
        ),
        aggregate_risk_series=risk_series,
    )


def summarize_with_concurrency_limit(
    metrics_list: Sequence[BacktestMetrics],
    limit: int,
) -> AggregationSummary:
    """
    Portfolio summary when at most `limit` trades may be open at once.

    **Functionally**:
    - Trades are admitted with `apply_concurrency_limit`; rejected trades
      vanish from every statistic below.
    - Counts: deals = admitted trades, profits/losses by the sign of net.
    - avg_max_drawdown: mean over backtests of the drawdown of their admitted
      trades (a backtest with none admitted contributes 0).
    - avg_net_per_day: total pnl over the admitted trades' span in days.
    - Open positions: only the `limit` largest open risks are kept.
    - Without any finished trade there is nothing to cap: the unlimited
      summary is returned.
    """
    all_trades = [trade for metrics in metrics_list for trade in metrics.trades]
    if not all_trades:
        return summarize_without_limit(metrics_list)

    admitted = apply_concurrency_limit(all_trades, limit)
    by_backtest: Dict[int, List[AggregationTrade]] = {metrics.id: [] for metrics in metrics_list}
    for trade in admitted:
        by_backtest.setdefault(trade.backtest_id, []).append(trade)

    total_selected = len(metrics_list)
    total_pnl = sum(trade.net for trade in admitted)
    total_profits = sum(1 for trade in admitted if trade.net > 0)
    total_losses = sum(1 for trade in admitted if trade.net < 0)
    total_deals = len(admitted)
    total_trade_duration_sec = sum(max(trade.end - trade.start, 0.0) / 1000.0 for trade in admitted)

    open_positions = _open_positions(metrics_list)
    positive_open_risks = sorted(
        (risk for risk in (max(0.0, finite_or(position.mpu)) for position in open_positions) if risk > 0),
        reverse=True,
    )
    kept_open_risks = positive_open_risks[:limit]

    per_backtest_drawdowns = [
        compute_max_drawdown((trade.end, trade.net) for trade in by_backtest.get(metrics.id, []))
        for metrics in metrics_list
    ]

    aggregate_drawdown = compute_max_drawdown((trade.end, trade.net) for trade in admitted)
    risk_series = _aggregate_risk_from_trades(admitted)
    aggregate_mpu = max(risk_series.max_value, kept_open_risks[0] if kept_open_risks else 0.0)
    aggregate_worst_risk = max(0.0, aggregate_drawdown, aggregate_mpu)

    concurrency = sweep_concurrency([TimeInterval(start=trade.start, end=trade.end) for trade in admitted])
    total_days, no_trade_days = _count_no_trade_days_from_trades(admitted)

    return AggregationSummary(
        total_selected=total_selected,
        total_pnl=total_pnl,
        total_profits=total_profits,
        total_losses=total_losses,
        total_deals=total_deals,
        open_deals=min(limit, len(open_positions)),
        active_mpu=sum(kept_open_risks),
        avg_pnl_per_deal=safe_divide(total_pnl, total_deals),
        avg_pnl_per_backtest=safe_divide(total_pnl, total_selected),
        avg_net_per_day=safe_divide(total_pnl, concurrency.total_span_ms / MS_IN_DAY),
        avg_trade_duration_days=safe_divide(total_trade_duration_sec, total_deals) / SECONDS_IN_DAY,
        avg_max_drawdown=safe_mean(per_backtest_drawdowns),
        aggregate_drawdown=aggregate_drawdown,
        aggregate_mpu=aggregate_mpu,
        aggregate_worst_risk=aggregate_worst_risk,
        aggregate_risk_efficiency=_risk_efficiency(total_pnl, aggregate_worst_risk),
        max_concurrent=concurrency.max,
        avg_concurrent=concurrency.average,
        concurrency=concurrency,
        total_days=total_days,
        no_trade_days=no_trade_days,
        daily_concurrency=compute_daily_concurrency(
            [TimeInterval(start=trade.start, end=trade.end) for trade in admitted]
        ),
        portfolio_equity=merge_portfolio_equity(
            admitted, (metrics.span_start for metrics in metrics_list)
        ),
        aggregate_risk_series=risk_series,
    )


def _normalize_limit(value: Optional[float]) -> Optional[int]:
    """Floor a finite cap and clamp it to >= 1; None/NaN/inf mean "no cap"."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(1, int(math.floor(number)))


def _included(metrics_list: Iterable[BacktestMetrics], options: AggregationOptions) -> List[BacktestMetrics]:
    excluded = set(options.excluded_ids)
    return [metrics for metrics in metrics_list if metrics.id not in excluded]


def summarize_aggregations(
    metrics_list: Iterable[BacktestMetrics],
    options: Optional[AggregationOptions] = None,
) -> AggregationSummary:
    """
    Summarize a portfolio of backtests.

    **Functionally**:
    - Backtests listed in `options.excluded_ids` are left out.
    - Without a finite `options.max_concurrent_bots`, every trade counts.
    - With one, the cap is floored and clamped to >= 1. If it is at least the
      portfolio's natural maximum concurrency the unlimited summary is
      returned unchanged; otherwise trades beyond the cap are rejected and
      the summary is recomputed from the admitted ones.

    **Edge cases**:
    - Empty input -> all-zero summary with empty series; never raises.

    Args:
        metrics_list: Per-backtest metrics from `compute_backtest_metrics`.
        options: Cap and exclusions; defaults to no cap, nothing excluded.

    Returns:
        AggregationSummary.
    """
    options = options or AggregationOptions()
    included = _included(metrics_list, options)
    limit = _normalize_limit(options.max_concurrent_bots)

    if limit is None:
        return summarize_without_limit(included)

    natural_max = portfolio_concurrency(included).max
    if limit >= natural_max:
        return summarize_without_limit(included)

    logger.debug(f"Capping {len(included)} backtests at {limit} concurrent trades (natural max {natural_max})")
    return summarize_with_concurrency_limit(included, limit)


def _impact_point(label: str, limit: Optional[int], summary: AggregationSummary) -> LimitImpactPoint:
    return LimitImpactPoint(
        label=label,
        limit=limit,
        total_pnl=summary.total_pnl,
        aggregate_drawdown=summary.aggregate_drawdown,
        aggregate_mpu=summary.aggregate_mpu,
        aggregate_worst_risk=summary.aggregate_worst_risk,
        aggregate_risk_efficiency=summary.aggregate_risk_efficiency,
    )


def sweep_concurrency_limits(
    metrics_list: Iterable[BacktestMetrics],
    options: Optional[AggregationOptions] = None,
) -> List[LimitImpactPoint]:
    """
    How the portfolio trends as the concurrency cap grows.

    Re-runs the summarizer at every cap 1..N (N = number of included
    backtests) and once without a cap (label "∞"). Any cap in `options` is
    ignored; exclusions are honoured.

    Returns:
        N + 1 points, or an empty list when no backtest is included.
    """
    options = options or AggregationOptions()
    included = _included(metrics_list, options)
    if not included:
        return []

    points = [
        _impact_point(
            str(limit),
            limit,
            summarize_aggregations(included, AggregationOptions(max_concurrent_bots=limit)),
        )
        for limit in range(1, len(included) + 1)
    ]
    points.append(_impact_point(UNLIMITED_LABEL, None, summarize_without_limit(included)))
    return points
