"""
Tests for portfolio_aggregator/analytics/summary.py

Two small backtests are built from raw platform records:

  A (id 1): +100 over [0h, 10h] (MAE 30), -40 over [20h, 22h] (MAE 10)
  B (id 2): +50 over [5h, 15h] (MAE 20)

both declared over two UTC days. Every expected value below follows from
that layout by hand.
"""

import numpy as np
import pytest

from portfolio_aggregator import (
    AggregationOptions,
    AggregationSummary,
    compute_backtest_metrics,
    summarize_aggregations,
    sweep_concurrency_limits,
)
from portfolio_aggregator.analytics.summary import count_no_trade_days
from portfolio_aggregator.utils.time import MS_IN_DAY

HOUR = 60 * 60 * 1000
DAY_100 = 100 * MS_IN_DAY


def raw_cycle(cycle_id, start_hour, end_hour, net, mae, status="FINISHED"):
    return {
        "id": cycle_id,
        "status": status,
        "date": DAY_100 + end_hour * HOUR,
        "duration": (end_hour - start_hour) * 3600,
        "netQuote": net,
        "maeAbsolute": -mae,
    }


def build_portfolio(with_open_positions=False):
    span = {"from": DAY_100, "to": DAY_100 + 2 * MS_IN_DAY}
    cycles_a = [raw_cycle(11, 0, 10, 100.0, 30.0), raw_cycle(12, 20, 22, -40.0, 10.0)]
    cycles_b = [raw_cycle(21, 5, 15, 50.0, 20.0)]
    if with_open_positions:
        cycles_a.append(raw_cycle(13, 29, 30, 0.0, 7.0, status="STARTED"))
        cycles_b.append(raw_cycle(22, 29, 30, 0.0, 12.0, status="STARTED"))

    stats_a = dict(span, id=1, netQuote=60.0, profits=1, losses=1, totalDeals=2,
                   avgDuration=21600, netQuotePerDay=30.0)
    stats_b = dict(span, id=2, netQuote=50.0, profits=1, losses=0, totalDeals=1,
                   avgDuration=36000, netQuotePerDay=25.0)
    return [compute_backtest_metrics(stats_a, cycles_a), compute_backtest_metrics(stats_b, cycles_b)]


@pytest.fixture
def portfolio():
    return build_portfolio()


def test_empty_selection_yields_zero_summary():
    """Test that no backtests produce the all-zero summary without raising."""
    assert summarize_aggregations([]) == AggregationSummary()
    assert summarize_aggregations([], AggregationOptions(max_concurrent_bots=1)) == AggregationSummary()


def test_unlimited_totals_and_averages(portfolio):
    """Test totals summed from per-backtest counters."""
    summary = summarize_aggregations(portfolio)

    assert summary.total_selected == 2
    assert summary.total_pnl == 110.0
    assert summary.total_profits == 2
    assert summary.total_losses == 1
    assert summary.total_deals == 3
    assert np.isclose(summary.avg_pnl_per_deal, 110.0 / 3)
    assert summary.avg_pnl_per_backtest == 55.0
    assert summary.avg_net_per_day == 27.5
    assert np.isclose(summary.avg_trade_duration_days, (21600 * 2 + 36000) / 3 / 86400)
    assert summary.avg_max_drawdown == 20.0


def test_unlimited_risk_and_drawdown(portfolio):
    """Test portfolio drawdown, summed risk peak and risk efficiency."""
    summary = summarize_aggregations(portfolio)

    # Closes at 10h (+100), 15h (+50), 22h (-40): peak 150, trough 110
    assert summary.aggregate_drawdown == 40.0
    # [0h, 10h] and [5h, 15h] overlap: 30 + 20
    assert summary.aggregate_mpu == 50.0
    assert summary.aggregate_risk_series.max_value == 50.0
    assert summary.aggregate_worst_risk == 50.0
    assert np.isclose(summary.aggregate_risk_efficiency, 110.0 / 50.0)


def test_unlimited_concurrency_and_days(portfolio):
    """Test concurrency over the declared span and day counts."""
    summary = summarize_aggregations(portfolio)

    assert summary.max_concurrent == 2
    assert summary.concurrency.total_span_ms == 2 * MS_IN_DAY
    # Union of activity: [0h, 15h] and [20h, 22h]
    assert summary.concurrency.zero_span_ms == 2 * MS_IN_DAY - 17 * HOUR
    assert 0.0 <= summary.avg_concurrent <= summary.max_concurrent
    assert summary.total_days == 2
    assert summary.no_trade_days == 1
    assert [record.max_count for record in summary.daily_concurrency.records] == [2]


def test_unlimited_portfolio_equity(portfolio):
    """Test the merged cumulative curve anchored at the span start."""
    summary = summarize_aggregations(portfolio)

    assert [(point.time, point.value) for point in summary.portfolio_equity.points] == [
        (DAY_100, 0.0),
        (DAY_100 + 10 * HOUR, 100.0),
        (DAY_100 + 15 * HOUR, 150.0),
        (DAY_100 + 22 * HOUR, 110.0),
    ]


def test_cap_of_one_rejects_overlapping_trade(portfolio):
    """Test that with one slot the overlapping trade of B is rejected."""
    summary = summarize_aggregations(portfolio, AggregationOptions(max_concurrent_bots=1))

    assert summary.total_selected == 2
    assert summary.total_pnl == 60.0
    assert summary.total_profits == 1
    assert summary.total_losses == 1
    assert summary.total_deals == 2
    assert summary.max_concurrent == 1
    assert summary.aggregate_drawdown == 40.0
    assert summary.aggregate_mpu == 30.0
    assert summary.aggregate_worst_risk == 40.0
    assert np.isclose(summary.aggregate_risk_efficiency, 1.5)
    assert np.isclose(summary.avg_trade_duration_days, 0.25)
    # Admitted trades span 22 hours
    assert np.isclose(summary.avg_net_per_day, 60.0 / (22.0 / 24.0))
    # B has no admitted trade, so its drawdown is 0
    assert summary.avg_max_drawdown == 20.0
    assert summary.total_days == 1
    assert summary.no_trade_days == 0
    assert summary.portfolio_equity.points[-1].value == 60.0


@pytest.mark.parametrize("cap", [2, 2.9, 10, float("inf"), float("nan"), None])
def test_cap_at_or_above_natural_max_matches_unlimited(portfolio, cap):
    """Test that a non-binding cap returns exactly the unlimited summary."""
    assert summarize_aggregations(portfolio, AggregationOptions(max_concurrent_bots=cap)) == \
        summarize_aggregations(portfolio)


@pytest.mark.parametrize("cap", [0, 0.4, -3])
def test_cap_below_one_is_clamped_to_one(portfolio, cap):
    """Test that caps below 1 behave like a single slot."""
    assert summarize_aggregations(portfolio, AggregationOptions(max_concurrent_bots=cap)) == \
        summarize_aggregations(portfolio, AggregationOptions(max_concurrent_bots=1))


def test_excluded_ids_are_left_out(portfolio):
    """Test that excluded backtests do not contribute."""
    summary = summarize_aggregations(portfolio, AggregationOptions(excluded_ids=(2,)))

    assert summary.total_selected == 1
    assert summary.total_pnl == 60.0
    assert summary.max_concurrent == 1


def test_open_positions_unlimited_and_capped():
    """Test open-position counts and risk with and without a cap."""
    metrics = build_portfolio(with_open_positions=True)

    unlimited = summarize_aggregations(metrics)
    capped = summarize_aggregations(metrics, AggregationOptions(max_concurrent_bots=1))

    assert unlimited.open_deals == 2
    assert unlimited.active_mpu == 19.0
    assert capped.open_deals == 1
    assert capped.active_mpu == 12.0


def test_summary_is_pure(portfolio):
    """Test that repeated calls give identical results."""
    options = AggregationOptions(max_concurrent_bots=1)

    assert summarize_aggregations(portfolio, options) == summarize_aggregations(portfolio, options)


def test_count_no_trade_days_empty():
    """Test that nothing known means no days."""
    assert count_no_trade_days([]) == (0, 0)


def test_sweep_concurrency_limits(portfolio):
    """Test the what-if curve over caps 1..N plus unlimited."""
    points = sweep_concurrency_limits(portfolio)

    assert [point.label for point in points] == ["1", "2", "∞"]
    assert [point.limit for point in points] == [1, 2, None]
    assert [point.total_pnl for point in points] == [60.0, 110.0, 110.0]
    assert points[0].aggregate_mpu == 30.0
    assert points[-1].aggregate_mpu == 50.0


def test_sweep_concurrency_limits_honours_exclusions(portfolio):
    """Test that exclusions shrink the sweep and an empty selection yields nothing."""
    assert [point.label for point in sweep_concurrency_limits(portfolio, AggregationOptions(excluded_ids=(1,)))] == [
        "1",
        "∞",
    ]
    assert sweep_concurrency_limits(portfolio, AggregationOptions(excluded_ids=(1, 2))) == []


def test_back_to_back_trades_respect_cap():
    """Test that a trade starting exactly when the admitted one ends is rejected under one slot."""
    cycles = [raw_cycle(1, 0, 100, 10.0, 0.0), raw_cycle(2, 50, 150, 10.0, 0.0), raw_cycle(3, 100, 200, 10.0, 0.0)]
    metrics = [compute_backtest_metrics({"id": 1}, cycles)]

    summary = summarize_aggregations(metrics, AggregationOptions(max_concurrent_bots=1))

    assert summary.max_concurrent <= 1
    assert summary.total_deals == 1
    assert summary.total_pnl == 10.0


def test_two_backtests_end_to_end_equity():
    """Test +100 closing at t=1000 and -40 closing at t=2000 from raw records."""
    metrics = [
        compute_backtest_metrics(
            {"id": 1, "netQuote": 100.0, "totalDeals": 1},
            [{"id": 1, "status": "FINISHED", "date": 1000, "duration": 0.5, "netQuote": 100.0}],
        ),
        compute_backtest_metrics(
            {"id": 2, "netQuote": -40.0, "totalDeals": 1},
            [{"id": 2, "status": "FINISHED", "date": 2000, "duration": 0.5, "netQuote": -40.0}],
        ),
    ]

    summary = summarize_aggregations(metrics)

    assert summary.total_pnl == 60.0
    assert [(point.time, point.value) for point in summary.portfolio_equity.points] == [
        (500.0, 0.0),
        (1000.0, 100.0),
        (2000.0, 60.0),
    ]
    assert summary.aggregate_drawdown == 40.0
