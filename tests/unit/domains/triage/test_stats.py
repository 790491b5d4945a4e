"""Tests for the numeric primitives."""

from __future__ import annotations

import pytest

from cardiowatch.domains.triage.domain_logic import stats


class TestMean:
    def test_empty_is_zero(self):
        assert stats.mean([]) == 0.0

    def test_mean(self):
        assert stats.mean([60, 62, 64]) == pytest.approx(62.0)


class TestMedian:
    def test_empty_is_zero(self):
        assert stats.median([]) == 0.0

    def test_odd_length(self):
        assert stats.median([3, 1, 2]) == 2.0

    def test_even_length_averages_middle(self):
        assert stats.median([1, 2, 3, 4]) == 2.5


class TestStandardDeviation:
    def test_single_value_is_zero(self):
        assert stats.standard_deviation([42]) == 0.0

    def test_empty_is_zero(self):
        assert stats.standard_deviation([]) == 0.0

    def test_population_formula(self):
        # Population (not sample) std dev of 2, 4, 4, 4, 5, 5, 7, 9 is exactly 2
        assert stats.standard_deviation([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


class TestZScore:
    def test_zero_std_is_zero(self):
        assert stats.z_score(80, 60, 0) == 0.0

    def test_z_score(self):
        assert stats.z_score(66, 60, 2) == pytest.approx(3.0)


class TestPercentChange:
    def test_zero_reference_is_zero(self):
        assert stats.percent_change(10, 0) == 0.0

    def test_increase(self):
        assert stats.percent_change(72, 60) == pytest.approx(20.0)

    def test_decrease(self):
        assert stats.percent_change(28, 40) == pytest.approx(-30.0)
