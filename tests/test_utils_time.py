"""
Tests for portfolio_aggregator/utils/time.py

These tests verify UTC day bucketing on epoch-millisecond timestamps, including
midnight boundaries and pre-1970 timestamps.
"""

import pandas as pd

from portfolio_aggregator.utils.time import (
    MS_IN_DAY,
    day_index,
    day_start_ms,
    end_day_index,
    mark_active_range,
    to_utc_timestamp,
)


def test_day_index_epoch_and_boundaries():
    """Test that day buckets start exactly at UTC midnight."""
    assert day_index(0) == 0
    assert day_index(MS_IN_DAY - 1) == 0
    assert day_index(MS_IN_DAY) == 1
    assert day_index(10 * MS_IN_DAY + 123) == 10


def test_day_index_negative_timestamps_use_floor():
    """Test that timestamps before 1970 fall in negative buckets (floor, not truncation)."""
    assert day_index(-1) == -1
    assert day_index(-MS_IN_DAY) == -1
    assert day_index(-MS_IN_DAY - 1) == -2


def test_day_start_ms_round_trips_day_index():
    """Test that a day's start maps back to the same day."""
    for index in (-3, 0, 1, 19000):
        assert day_index(day_start_ms(index)) == index


def test_end_day_index_exclusive_midnight():
    """Test that an interval ending at midnight does not touch the next day."""
    assert end_day_index(0, MS_IN_DAY) == 0
    assert end_day_index(0, MS_IN_DAY + 1) == 1


def test_end_day_index_zero_length_interval():
    """Test that a zero-length interval touches the day it sits on."""
    assert end_day_index(MS_IN_DAY, MS_IN_DAY) == 1


def test_mark_active_range_multi_day():
    """Test that every touched day is marked."""
    days = set()
    mark_active_range(days, MS_IN_DAY // 2, 3 * MS_IN_DAY + 10)

    assert days == {0, 1, 2, 3}


def test_mark_active_range_ignores_invalid_bounds():
    """Test that reversed, None and non-finite bounds leave the set unchanged."""
    days = {7}
    mark_active_range(days, 5 * MS_IN_DAY, 2 * MS_IN_DAY)
    mark_active_range(days, None, MS_IN_DAY)
    mark_active_range(days, float("nan"), MS_IN_DAY)
    mark_active_range(days, 0, float("inf"))

    assert days == {7}


def test_to_utc_timestamp_is_timezone_aware():
    """Test conversion of epoch ms to a UTC pandas Timestamp."""
    stamp = to_utc_timestamp(MS_IN_DAY)

    assert stamp == pd.Timestamp("1970-01-02T00:00:00Z")
    assert str(stamp.tz) == "UTC"
