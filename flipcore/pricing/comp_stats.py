"""Statistical processing of comparable sale prices.

Runs a fixed filtering chain over observed comp prices:
- Percentile trimming (15% from each end, only for more than 5 comps)
- Interquartile-range outlier filtering (only for 4 or more comps)
- Median-relative outlier rejection (0.4x to 2.5x the intermediate median)

and summarizes the survivors (median, coefficient of variation, spread).
The processor is pure: the same input always yields the same result.
"""

import logging
import math
import statistics
from dataclasses import dataclass
from typing import Iterable, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)

TRIM_FRACTION = 0.15
TRIM_MIN_COUNT = 6                  # Trim only when more than 5 comps
TRIM_MIN_REMAINING = 3
IQR_MIN_COUNT = 4
IQR_MULTIPLIER = 1.5
MEDIAN_LOW_FACTOR = 0.4
MEDIAN_HIGH_FACTOR = 2.5


class FilteredPrices(tuple):
    """Prices that already went through the full filter chain.

    Feeding a FilteredPrices back into process_comps skips the filter
    stages, so reprocessing a result's final comps leaves them unchanged.
    """
    pass


@dataclass(frozen=True)
class CompProcessingResult:
    """Output of the comp filtering chain."""

    original_comps: tuple               # Positive input prices, input order
    trimmed_comps: tuple                # After percentile trimming
    iqr_filtered_comps: tuple           # After IQR filtering
    final_comps: FilteredPrices         # After median outlier rejection
    trimmed_median: float               # Median of final comps
    coefficient_of_variation: float     # Population std / mean
    spread_ratio: float                 # max / min
    low_comp: float
    high_comp: float

    @property
    def comp_count(self) -> int:
        return len(self.final_comps)

    @property
    def removed_count(self) -> int:
        return len(self.original_comps) - len(self.final_comps)

    @property
    def has_data(self) -> bool:
        return len(self.final_comps) > 0


def median(values: Sequence[float]) -> float:
    """Median with the even-length midpoint average; 0.0 for no values."""
    if not values:
        return 0.0
    return float(statistics.median(values))


def trim_percentile(prices: Sequence[float], fraction: float = TRIM_FRACTION) -> List[float]:
    """
    Drop the lowest and highest `fraction` of prices.

    At least one value is removed from each end. If percentile trimming
    would leave fewer than 3 values, exactly one value is removed from
    each end instead. Lists of 5 or fewer are returned sorted, untrimmed.
    """
    ordered = sorted(prices)
    n = len(ordered)
    if n < TRIM_MIN_COUNT:
        return ordered

    trim = max(1, int(math.floor(n * fraction)))
    trimmed = ordered[trim:n - trim]
    if len(trimmed) < TRIM_MIN_REMAINING:
        trimmed = ordered[1:-1]
    return trimmed


def iqr_bounds(prices: Sequence[float]) -> tuple[float, float]:
    """Return (Q1 - 1.5*IQR, Q3 + 1.5*IQR) using index quartiles."""
    ordered = sorted(prices)
    n = len(ordered)
    q1 = ordered[int(math.floor(n * 0.25))]
    q3 = ordered[int(math.floor(n * 0.75))]
    iqr = q3 - q1
    return q1 - IQR_MULTIPLIER * iqr, q3 + IQR_MULTIPLIER * iqr


def filter_outliers_iqr(prices: Sequence[float]) -> List[float]:
    """Drop values outside the IQR fences (skipped below 4 values)."""
    ordered = sorted(prices)
    if len(ordered) < IQR_MIN_COUNT:
        return ordered
    lower, upper = iqr_bounds(ordered)
    return [p for p in ordered if lower <= p <= upper]


def reject_median_outliers(prices: Sequence[float], reference_median: float) -> List[float]:
    """Keep values within [0.4x, 2.5x] of the reference median."""
    if reference_median <= 0:
        return list(prices)
    low = reference_median * MEDIAN_LOW_FACTOR
    high = reference_median * MEDIAN_HIGH_FACTOR
    return [p for p in prices if low <= p <= high]


def coefficient_of_variation(prices: Sequence[float]) -> float:
    """Population standard deviation over mean; 1.0 when undefined."""
    if len(prices) < 2:
        return 1.0
    arr = np.asarray(prices, dtype=float)
    mean = float(arr.mean())
    if mean == 0:
        return 1.0
    return float(arr.std(ddof=0)) / mean


def spread_ratio(prices: Sequence[float]) -> float:
    """max / min; infinite when fewer than 2 values or min <= 0."""
    if len(prices) < 2:
        return math.inf
    low = min(prices)
    if low <= 0:
        return math.inf
    return max(prices) / low


def _summarize(original, trimmed, iqr_filtered, final) -> CompProcessingResult:
    final = FilteredPrices(final)
    return CompProcessingResult(
        original_comps=tuple(original),
        trimmed_comps=tuple(trimmed),
        iqr_filtered_comps=tuple(iqr_filtered),
        final_comps=final,
        trimmed_median=median(final),
        coefficient_of_variation=coefficient_of_variation(final),
        spread_ratio=spread_ratio(final),
        low_comp=min(final) if final else 0.0,
        high_comp=max(final) if final else 0.0,
    )


def process_comps(prices: Iterable[float]) -> CompProcessingResult:
    """
    Run the full comp filtering chain.

    Args:
        prices: Observed sale prices (non-positive values are ignored)

    Returns:
        CompProcessingResult with every intermediate list and summary stats
    """
    if isinstance(prices, FilteredPrices):
        final = list(prices)
        return _summarize(final, final, final, final)

    original = [float(p) for p in prices if p is not None and p > 0]
    if not original:
        return _summarize([], [], [], [])

    trimmed = trim_percentile(original)
    iqr_filtered = filter_outliers_iqr(trimmed)
    intermediate_median = median(iqr_filtered)
    final = reject_median_outliers(iqr_filtered, intermediate_median)

    result = _summarize(original, trimmed, iqr_filtered, final)
    logger.debug(
        f"Processed {len(original)} comps -> {result.comp_count} "
        f"(median ${result.trimmed_median:.2f}, CV {result.coefficient_of_variation:.2f}, "
        f"spread {result.spread_ratio:.2f})"
    )
    return result
