"""Numeric primitives used by baseline and deviation scoring.

All functions are pure and total: empty input or a zero denominator yields
0.0 instead of raising.
"""

from __future__ import annotations

import statistics
from collections.abc import Sequence


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for empty input."""
    if not values:
        return 0.0
    return float(statistics.fmean(values))


def median(values: Sequence[float]) -> float:
    """Median, averaging the two central elements for even-length input."""
    if not values:
        return 0.0
    return float(statistics.median(values))


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation, 0.0 for fewer than 2 values."""
    if len(values) < 2:
        return 0.0
    return float(statistics.pstdev(values))


def z_score(value: float, mean_value: float, std_dev: float) -> float:
    """Standard score of ``value``; 0.0 when ``std_dev`` is zero."""
    if std_dev == 0:
        return 0.0
    return (value - mean_value) / std_dev


def percent_change(value: float, reference: float) -> float:
    """Relative change from ``reference`` in percent; 0.0 for a zero reference."""
    if reference == 0:
        return 0.0
    return (value - reference) / reference * 100
