"""Running statistics for page load timings.

Each named series keeps its raw samples and a set of cached aggregates.
Aggregates are folded lazily: reads only process the samples added since the
previous read, then run one full pass for the standard deviation and the
sigma-trimmed averages.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

AGGREGATE_FIELDS = (
    "total",
    "min",
    "max",
    "average",
    "standard_deviation",
    "average_within_1_sigma",
    "average_within_2_sigma",
)


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


class _Series:
    """Samples and cached aggregates for one named stat."""

    def __init__(self) -> None:
        self.values: list[float] = []
        self.cursor = 0
        self.total: float | None = None
        self.min: float | None = None
        self.max: float | None = None
        self.average: float | None = None
        self.standard_deviation: float | None = None
        self.average_within_1_sigma: float | None = None
        self.average_within_2_sigma: float | None = None
        self.rounded: dict | None = None

    def update(self) -> None:
        """Fold unread samples into the aggregates."""
        size = len(self.values)
        if self.cursor >= size:
            return

        while self.cursor < size:
            value = self.values[self.cursor]
            self.cursor += 1
            # First value seeds the bounds so negative samples are handled
            self.total = value if self.total is None else self.total + value
            self.min = value if self.min is None else min(self.min, value)
            self.max = value if self.max is None else max(self.max, value)

        self.average = self.total / size
        self.standard_deviation = _population_deviation(self.values, self.average)
        self.average_within_1_sigma = self._average_within(1)
        self.average_within_2_sigma = self._average_within(2)
        self.rounded = None

    def _average_within(self, sigmas: int) -> float:
        spread = self.standard_deviation * sigmas
        low = self.average - spread
        high = self.average + spread
        return _mean([value for value in self.values if low <= value <= high])


def _population_deviation(values: list[float], average: float) -> float:
    total_variance = sum((average - value) ** 2 for value in values)
    return math.sqrt(total_variance / len(values))


def _mean(values: list[float]) -> float:
    """Arithmetic mean; NaN for an empty list."""
    if not values:
        return math.nan
    return sum(values) / len(values)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class StatisticsTracker:
    """Accumulates samples per series and reports rounded aggregates.

    Usage:
        stats = StatisticsTracker().set_precision(4)
        stats.add("WindowLoad", [0.81, 0.79])
        stats.average("WindowLoad")  # 0.8
    """

    def __init__(self, precision: int | None = None) -> None:
        self._series: dict[str, _Series] = {}
        self._precision_scalar: float | None = None
        if precision is not None:
            self.set_precision(precision)

    def set_precision(self, digits: int | None) -> StatisticsTracker:
        """Set the number of decimals aggregates are reported with (None = raw)."""
        self._precision_scalar = None if digits is None else 10 ** digits
        for series in self._series.values():
            series.rounded = None
        return self

    def add(self, name: str, values: float | Iterable[float]) -> StatisticsTracker:
        """Append one value or an iterable of values to a series, creating it if needed."""
        series = self._series.get(name)
        if series is None:
            series = self._series[name] = _Series()
        if isinstance(values, (int, float)):
            series.values.append(values)
        else:
            series.values.extend(values)
        return self

    def count(self, name: str) -> int:
        series = self._series.get(name)
        return len(series.values) if series is not None else 0

    def total(self, name: str) -> float | None:
        return self._get(name, "total")

    def min(self, name: str) -> float | None:
        return self._get(name, "min")

    def max(self, name: str) -> float | None:
        return self._get(name, "max")

    def average(self, name: str) -> float | None:
        return self._get(name, "average")

    def standard_deviation(self, name: str) -> float | None:
        return self._get(name, "standard_deviation")

    def average_within_1_sigma(self, name: str) -> float | None:
        """Mean of the samples within one standard deviation of the average."""
        return self._get(name, "average_within_1_sigma")

    def average_within_2_sigma(self, name: str) -> float | None:
        """Mean of the samples within two standard deviations of the average."""
        return self._get(name, "average_within_2_sigma")

    def _get(self, name: str, field: str) -> float | None:
        series = self._series.get(name)
        if series is None:
            return None
        series.update()
        if series.rounded is None:
            series.rounded = {key: self._round(getattr(series, key)) for key in AGGREGATE_FIELDS}
        return series.rounded[field]

    def _round(self, value: float | None) -> float | None:
        if self._precision_scalar is None or value is None or math.isnan(value):
            return value
        return round(value * self._precision_scalar) / self._precision_scalar
