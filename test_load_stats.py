"""Unit tests for load_stats.py.

Run all tests:
    python -m unittest test_load_stats -v
"""

from __future__ import annotations

import math
import unittest

import load_stats
from load_stats import StatisticsTracker


# ===================================================================
# 1. TestIncrementalFold
# ===================================================================


class TestIncrementalFold(unittest.TestCase):
    """Reads between adds must agree with a single batch fold."""

    def test_interleaved_reads_match_batch(self):
        values = [3.5, -1.25, 8.0, 0.5, 2.0, 8.0]
        incremental = StatisticsTracker()
        incremental.add("load", values[:2])
        incremental.average("load")
        incremental.add("load", values[2])
        incremental.max("load")
        incremental.add("load", values[3:])

        batch = StatisticsTracker().add("load", values)

        for method in ("total", "min", "max", "average"):
            self.assertAlmostEqual(getattr(incremental, method)("load"), getattr(batch, method)("load"))

    def test_aggregates_after_each_add(self):
        stats = StatisticsTracker()
        stats.add("load", [2, 4])
        self.assertEqual(stats.total("load"), 6)
        self.assertEqual(stats.average("load"), 3)
        stats.add("load", [9])
        self.assertEqual(stats.total("load"), 15)
        self.assertEqual(stats.max("load"), 9)
        self.assertEqual(stats.average("load"), 5)

    def test_scalar_and_iterable_values(self):
        stats = StatisticsTracker().add("load", 1.0).add("load", (2.0, 3.0))
        self.assertEqual(stats.count("load"), 3)
        self.assertEqual(stats.total("load"), 6.0)

    def test_series_are_independent(self):
        stats = StatisticsTracker()
        stats.add("DOMContentLoaded", [0.1, 0.3])
        stats.add("WindowLoad", [1.0])
        self.assertEqual(stats.count("DOMContentLoaded"), 2)
        self.assertEqual(stats.count("WindowLoad"), 1)
        self.assertEqual(stats.max("DOMContentLoaded"), 0.3)
        self.assertEqual(stats.max("WindowLoad"), 1.0)


# ===================================================================
# 2. TestMinMaxSeeding
# ===================================================================


class TestMinMaxSeeding(unittest.TestCase):
    """The first value seeds min and max."""

    def test_single_negative_value(self):
        stats = StatisticsTracker().add("offset", [-3.5])
        self.assertEqual(stats.min("offset"), -3.5)
        self.assertEqual(stats.max("offset"), -3.5)

    def test_all_negative_values(self):
        stats = StatisticsTracker().add("offset", [-2, -7, -4])
        self.assertEqual(stats.min("offset"), -7)
        self.assertEqual(stats.max("offset"), -2)

    def test_unknown_series_is_none(self):
        stats = StatisticsTracker()
        self.assertIsNone(stats.total("missing"))
        self.assertIsNone(stats.average_within_2_sigma("missing"))
        self.assertEqual(stats.count("missing"), 0)

    def test_empty_series_is_none(self):
        stats = StatisticsTracker().add("load", [])
        self.assertIsNone(stats.min("load"))
        self.assertIsNone(stats.average("load"))


# ===================================================================
# 3. TestPrecision
# ===================================================================


class TestPrecision(unittest.TestCase):
    """Rounding is applied on read and follows precision changes."""

    def test_precision_rounds_reads(self):
        stats = StatisticsTracker().add("load", [1, 2, 2])
        stats.set_precision(2)
        self.assertEqual(stats.average("load"), round(5 / 3 * 100) / 100)

    def test_changing_precision_rerounds(self):
        stats = StatisticsTracker(precision=3).add("load", [1, 2, 2])
        self.assertEqual(stats.average("load"), 1.667)
        stats.set_precision(0)
        self.assertEqual(stats.average("load"), 2.0)
        stats.set_precision(None)
        self.assertAlmostEqual(stats.average("load"), 5 / 3)

    def test_precision_does_not_touch_raw_values(self):
        stats = StatisticsTracker(precision=0).add("load", [0.4, 0.4, 0.4])
        self.assertEqual(stats.total("load"), 1.0)
        stats.set_precision(1)
        self.assertEqual(stats.total("load"), 1.2)

    def test_set_precision_is_chainable(self):
        stats = StatisticsTracker()
        self.assertIs(stats.set_precision(4), stats)


# ===================================================================
# 4. TestStandardDeviation
# ===================================================================


class TestStandardDeviation(unittest.TestCase):
    """Population standard deviation and sigma-trimmed averages."""

    def setUp(self):
        self.stats = StatisticsTracker().add("load", [2, 4, 4, 4, 5, 5, 7, 9])

    def test_population_standard_deviation(self):
        self.assertEqual(self.stats.average("load"), 5)
        self.assertEqual(self.stats.standard_deviation("load"), 2)

    def test_average_within_one_sigma(self):
        # [3, 7] keeps 4, 4, 4, 5, 5, 7
        self.assertAlmostEqual(self.stats.average_within_1_sigma("load"), 29 / 6)

    def test_average_within_two_sigma_bounds_are_inclusive(self):
        # [1, 9] keeps every value, including the 9 on the boundary
        self.assertEqual(self.stats.average_within_2_sigma("load"), 5)

    def test_outlier_excluded_from_one_sigma(self):
        stats = StatisticsTracker().add("load", [1, 1, 1, 1, 50])
        self.assertEqual(stats.average_within_1_sigma("load"), 1)
        self.assertGreater(stats.average("load"), 1)

    def test_second_pass_covers_all_values_after_more_adds(self):
        self.stats.average_within_1_sigma("load")
        self.stats.add("load", [5, 5])
        self.assertAlmostEqual(self.stats.average("load"), 50 / 10)
        self.assertAlmostEqual(self.stats.standard_deviation("load"), math.sqrt(32 / 10))

    def test_single_value_series(self):
        stats = StatisticsTracker(precision=4).add("load", [0.75])
        self.assertEqual(stats.standard_deviation("load"), 0)
        self.assertEqual(stats.average_within_1_sigma("load"), 0.75)
        self.assertEqual(stats.average_within_2_sigma("load"), 0.75)

    def test_empty_band_is_nan(self):
        self.assertTrue(math.isnan(load_stats._mean([])))

    def test_nan_survives_rounding(self):
        stats = StatisticsTracker(precision=2)
        self.assertTrue(math.isnan(stats._round(math.nan)))
        self.assertIsNone(stats._round(None))


if __name__ == "__main__":
    unittest.main()
