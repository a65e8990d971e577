"""
Tests for portfolio_aggregator/analytics/intervals.py

These tests verify trade interval resolution (duration, then orders, then
zero-length) and union coverage of interval sets.
"""

import math

from portfolio_aggregator.analytics.intervals import (
    collect_cycle_intervals,
    compute_coverage,
    is_valid_interval,
    resolve_cycle_interval,
    sanitize_intervals,
)
from portfolio_aggregator.data.schemas import CycleRecord, OrderRecord, TimeInterval


def make_cycle(close_time=10_000.0, duration_sec=math.nan, order_times=()):
    return CycleRecord(
        id=1,
        status="FINISHED",
        close_time=close_time,
        duration_sec=duration_sec,
        orders=tuple(OrderRecord(executed_at=time) for time in order_times),
    )


def test_resolve_uses_duration_first():
    """Test that a finite duration sets the start, even when orders exist."""
    interval = resolve_cycle_interval(make_cycle(duration_sec=4, order_times=(1_000.0,)))

    assert interval == TimeInterval(start=6_000.0, end=10_000.0)


def test_resolve_falls_back_to_earliest_order():
    """Test that the earliest order timestamp is the start without a duration."""
    interval = resolve_cycle_interval(make_cycle(order_times=(8_000.0, 3_000.0, 5_000.0)))

    assert interval == TimeInterval(start=3_000.0, end=10_000.0)


def test_resolve_without_duration_or_orders_is_zero_length():
    """Test that a cycle with no timing hints yields a zero-length interval."""
    interval = resolve_cycle_interval(make_cycle())

    assert interval is not None
    assert interval.start == interval.end == 10_000.0
    assert interval.duration_ms == 0.0


def test_resolve_clamps_start_after_end():
    """Test that a negative duration or a late order is clamped to the end."""
    assert resolve_cycle_interval(make_cycle(duration_sec=-5)).start == 10_000.0
    assert resolve_cycle_interval(make_cycle(order_times=(20_000.0,))).start == 10_000.0


def test_resolve_without_close_time_is_none():
    """Test that a cycle without a close time cannot be placed in time."""
    assert resolve_cycle_interval(make_cycle(close_time=None)) is None


def test_collect_cycle_intervals_drops_unresolvable():
    """Test that unresolvable cycles are dropped and the rest kept in order."""
    resolved = collect_cycle_intervals([make_cycle(close_time=None), make_cycle(duration_sec=1)])

    assert len(resolved) == 1
    assert resolved[0].interval == TimeInterval(start=9_000.0, end=10_000.0)


def test_is_valid_interval():
    """Test validity rules (finite bounds, end >= start)."""
    assert is_valid_interval(TimeInterval(0, 0))
    assert is_valid_interval(TimeInterval(0, 5))
    assert not is_valid_interval(TimeInterval(5, 0))
    assert not is_valid_interval(TimeInterval(math.nan, 5))


def test_sanitize_intervals_sorts_and_filters():
    """Test that sanitize drops invalid intervals and sorts by (start, end)."""
    cleaned = sanitize_intervals(
        [TimeInterval(5, 9), TimeInterval(1, 3), TimeInterval(4, 2), TimeInterval(1, 2)]
    )

    assert cleaned == [TimeInterval(1, 2), TimeInterval(1, 3), TimeInterval(5, 9)]


def test_compute_coverage_merges_overlaps():
    """Test that overlapping and touching intervals are counted once."""
    coverage = compute_coverage(
        [TimeInterval(0, 10), TimeInterval(5, 15), TimeInterval(15, 20), TimeInterval(30, 40)]
    )

    # Union: [0, 20] + [30, 40] = 30
    assert coverage.total_active_ms == 30.0
    assert coverage.span_ms == 40.0
    assert coverage.min_start == 0
    assert coverage.max_end == 40


def test_compute_coverage_empty():
    """Test that an empty set yields zero coverage."""
    coverage = compute_coverage([])

    assert coverage.total_active_ms == 0.0
    assert coverage.min_start is None
    assert coverage.max_end is None


def test_resolve_ignores_non_finite_order_timestamps():
    """Test that NaN order timestamps are skipped when picking the earliest order."""
    cycle = CycleRecord(
        id=1,
        status="FINISHED",
        close_time=1_000.0,
        orders=(OrderRecord(executed_at=math.nan), OrderRecord(executed_at=500.0)),
    )

    assert cycle.order_times == (500.0,)
    assert resolve_cycle_interval(cycle) == TimeInterval(start=500.0, end=1_000.0)
