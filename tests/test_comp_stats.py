"""Tests for the comp statistics processor."""

import math
import random

import pytest

from flipcore.pricing.comp_stats import (
    FilteredPrices,
    coefficient_of_variation,
    filter_outliers_iqr,
    iqr_bounds,
    median,
    process_comps,
    reject_median_outliers,
    spread_ratio,
    trim_percentile,
)


def test_card_example_drops_outlier():
    """The 200 sale is removed and the median lands between the middle comps."""
    result = process_comps([40, 42, 45, 48, 200])

    assert result.original_comps == (40, 42, 45, 48, 200)
    assert list(result.final_comps) == [40, 42, 45, 48]
    assert result.trimmed_median == pytest.approx(43.5)
    assert result.coefficient_of_variation == pytest.approx(0.0693, abs=1e-3)
    assert result.spread_ratio == pytest.approx(1.2)
    assert result.low_comp == 40
    assert result.high_comp == 48


def test_empty_input():
    result = process_comps([])

    assert not result.has_data
    assert result.comp_count == 0
    assert result.trimmed_median == 0.0
    assert result.coefficient_of_variation == 1.0
    assert math.isinf(result.spread_ratio)


def test_non_positive_prices_ignored():
    result = process_comps([0, -5, 30])

    assert result.original_comps == (30.0,)
    assert result.coefficient_of_variation == 1.0
    assert math.isinf(result.spread_ratio)


def test_trim_percentile_small_lists_untouched():
    assert trim_percentile([5, 1, 3]) == [1, 3, 5]
    assert trim_percentile([1, 2, 3, 4, 5]) == [1, 2, 3, 4, 5]


def test_trim_percentile_removes_at_least_one_per_end():
    assert trim_percentile([1, 2, 3, 4, 5, 6]) == [2, 3, 4, 5]


def test_trim_percentile_fifteen_percent():
    prices = list(range(1, 21))
    trimmed = trim_percentile(prices)

    assert trimmed == list(range(4, 18))


def test_trim_percentile_never_below_three():
    """Trimming any list of more than 5 values leaves at least 3."""
    rng = random.Random(7)
    for _ in range(200):
        n = rng.randint(6, 60)
        prices = [rng.uniform(1, 500) for _ in range(n)]
        assert len(trim_percentile(prices)) >= 3


def test_iqr_bounds_index_quartiles():
    lower, upper = iqr_bounds([40, 42, 45, 48])
    assert lower == pytest.approx(33)
    assert upper == pytest.approx(57)


def test_iqr_skipped_below_four_values():
    assert filter_outliers_iqr([10, 11, 1000]) == [10, 11, 1000]


def test_reject_median_outliers():
    assert reject_median_outliers([10, 40, 50, 60, 200], 50) == [40, 50, 60]


def test_statistics_helpers():
    assert median([1, 3]) == 2.0
    assert median([]) == 0.0
    assert coefficient_of_variation([10]) == 1.0
    assert coefficient_of_variation([10, 10]) == 0.0
    assert spread_ratio([10, 25]) == pytest.approx(2.5)
    assert math.isinf(spread_ratio([0, 10]))


def test_idempotent_on_final_comps():
    """Re-running on the final comps changes nothing."""
    rng = random.Random(42)
    for _ in range(100):
        prices = [round(rng.uniform(5, 300), 2) for _ in range(rng.randint(1, 30))]
        first = process_comps(prices)
        second = process_comps(first.final_comps)

        assert isinstance(first.final_comps, FilteredPrices)
        assert list(second.final_comps) == list(first.final_comps)
        assert second.trimmed_median == first.trimmed_median
        assert second.coefficient_of_variation == pytest.approx(first.coefficient_of_variation)


def test_deterministic():
    prices = [12.5, 14, 13, 90, 15, 11, 13.5, 14.25]
    assert process_comps(prices) == process_comps(list(prices))
