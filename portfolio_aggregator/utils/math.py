"""
Numeric helpers shared by the analytics modules.

Every statistic in the engine must degrade to a neutral value on empty or
malformed input instead of raising, so the helpers here are zero-safe:
they filter non-finite values and return 0.0 when nothing is left.
"""

import math
from typing import Any, Iterable, List

import numpy as np


def is_finite_number(value: Any) -> bool:
    """Return True for real, finite numbers (bools excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, np.integer, np.floating)):
        return math.isfinite(float(value))
    return False


def finite_or(value: Any, default: float = 0.0) -> float:
    """Return `value` as float when finite, else `default`."""
    return float(value) if is_finite_number(value) else default


def finite_values(values: Iterable[Any]) -> List[float]:
    """Drop every non-finite entry and return the rest as floats."""
    return [float(value) for value in values if is_finite_number(value)]


def safe_mean(values: Iterable[Any]) -> float:
    """Arithmetic mean of the finite values, 0.0 when there are none."""
    cleaned = finite_values(values)
    if not cleaned:
        return 0.0
    return float(np.mean(cleaned))


def safe_divide(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is not positive."""
    if denominator > 0:
        return numerator / denominator
    return 0.0


def compute_percentile(values: Iterable[Any], percentile: float) -> float:
    """
    Percentile of a sample by linear interpolation between order statistics.

    **Conceptual**: Answers "what value is not exceeded on p of the days?" For
    position sizing, the p90 of daily maximum concurrency is a cap that would
    have been enough on nine days out of ten.

    **Mathematical**: For n sorted values v_0 <= ... <= v_{n-1} and p in [0, 1]:
        index = (n - 1) * p
        lower = floor(index), upper = ceil(index)
        result = v_lower + (v_upper - v_lower) * (index - lower)
    This is numpy's default "linear" method.

    **Edge cases**:
    - Empty sample (after dropping non-finite values) returns 0.0.
    - p is clamped into [0, 1], so p <= 0 gives the min and p >= 1 the max.

    Args:
        values: Sample values (any iterable of numbers).
        percentile: Fraction in [0, 1] (e.g., 0.95 for p95).

    Returns:
        Interpolated percentile value.
    """
    cleaned = finite_values(values)
    if not cleaned:
        return 0.0
    clamped = min(max(float(percentile), 0.0), 1.0)
    return float(np.percentile(np.asarray(cleaned, dtype=float), clamped * 100.0))


def ceil_limit(value: float) -> int:
    """Round a percentile up to a whole position count."""
    if not is_finite_number(value):
        return 0
    return int(math.ceil(value))
