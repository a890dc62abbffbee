"""
Tests for the percentile estimation strategies.
"""

import random

import pytest

from loadbench.core.estimators import (
    AutoEstimator,
    ExactEstimator,
    HistogramEstimator,
    PercentileStrategy,
    ReservoirEstimator,
    create_estimator,
    interpolated_percentile,
)

QUANTILES = (0.5, 0.9, 0.95, 0.99)


def _reference(values, q):
    return interpolated_percentile(sorted(values), q)


def test_interpolated_percentile() -> None:
    assert interpolated_percentile([], 0.5) is None
    assert interpolated_percentile([7.0], 0.99) == 7.0
    assert interpolated_percentile([1.0, 2.0, 3.0, 4.0], 0.5) == pytest.approx(2.5)
    assert interpolated_percentile(list(range(1, 101)), 0.95) == pytest.approx(95.05)


class TestExactEstimator:
    """Exact strategy matches a full-sort reference."""

    def test_matches_reference_regardless_of_order(self) -> None:
        rng = random.Random(7)
        values = [rng.uniform(1, 1000) for _ in range(500)]
        est = ExactEstimator()
        for v in values:
            est.add(v)
        for q in QUANTILES:
            assert est.quantile(q) == _reference(values, q)
        assert est.exact is True
        assert est.count == 500

    def test_empty(self) -> None:
        assert ExactEstimator().quantile(0.5) is None


class TestHistogramEstimator:
    """Histogram strategy stays within its documented relative accuracy."""

    def test_relative_error_bound_on_large_stream(self) -> None:
        rng = random.Random(11)
        values = [rng.lognormvariate(5, 1) for _ in range(50_000)]
        est = HistogramEstimator(relative_accuracy=0.01)
        for v in values:
            est.add(v)

        ordered = sorted(values)
        for q in QUANTILES:
            # Compare against the nearest-rank value the histogram targets.
            true = ordered[int(q * (len(ordered) - 1))]
            assert est.quantile(q) == pytest.approx(true, rel=0.011)

    def test_within_one_percent_of_range(self) -> None:
        rng = random.Random(3)
        values = [rng.uniform(0, 5000) for _ in range(20_000)]
        est = HistogramEstimator()
        for v in values:
            est.add(v)
        spread = max(values) - min(values)
        for q in QUANTILES:
            assert abs(est.quantile(q) - _reference(values, q)) <= 0.01 * spread

    def test_insertion_order_does_not_matter(self) -> None:
        rng = random.Random(5)
        values = [rng.expovariate(0.01) for _ in range(5000)]
        a, b = HistogramEstimator(), HistogramEstimator()
        for v in values:
            a.add(v)
        for v in reversed(values):
            b.add(v)
        for q in QUANTILES:
            assert a.quantile(q) == b.quantile(q)

    def test_handles_zero_and_negative_values(self) -> None:
        est = HistogramEstimator()
        for v in [-10.0, -1.0, 0.0, 0.0, 1.0, 10.0]:
            est.add(v)
        assert est.quantile(0.0) == pytest.approx(-10.0, rel=0.01)
        assert est.quantile(0.5) == 0.0
        assert est.quantile(1.0) == pytest.approx(10.0, rel=0.01)

    def test_estimates_clamped_to_observed_range(self) -> None:
        est = HistogramEstimator(relative_accuracy=0.1)
        for _ in range(10):
            est.add(100.0)
        assert est.quantile(0.5) == 100.0
        assert est.quantile(0.99) == 100.0

    def test_bucket_collapse_degrades_low_quantiles_only(self) -> None:
        est = HistogramEstimator(relative_accuracy=0.01, max_buckets=50)
        values = [1.01**i for i in range(2000)]
        for v in values:
            est.add(v)
        assert est.degraded is True
        assert est.bucket_count <= 50
        assert est.quantile(0.99) == pytest.approx(_reference(values, 0.99), rel=0.02)

    def test_invalid_parameters(self) -> None:
        with pytest.raises(ValueError):
            HistogramEstimator(relative_accuracy=0)
        with pytest.raises(ValueError):
            HistogramEstimator(max_buckets=1)


class TestReservoirEstimator:
    """Reservoir strategy: exact until full, bounded memory afterwards."""

    def test_exact_until_full(self) -> None:
        est = ReservoirEstimator(size=100, rng=random.Random(1))
        values = list(range(100))
        for v in values:
            est.add(float(v))
        assert est.exact is True
        assert est.degraded is False
        assert est.quantile(0.5) == _reference(values, 0.5)

    def test_bounded_after_full(self) -> None:
        est = ReservoirEstimator(size=1000, rng=random.Random(2))
        for v in range(100_000):
            est.add(float(v))
        assert est.exact is False
        assert est.degraded is True
        assert len(est._reservoir) == 1000
        # A uniform sample of a uniform stream keeps the median near the middle.
        assert est.quantile(0.5) == pytest.approx(50_000, rel=0.1)


class TestAutoEstimator:
    """Auto strategy switches from exact to histogram past its limit."""

    def test_exact_below_limit(self) -> None:
        est = AutoEstimator(exact_limit=100)
        values = [float(v) for v in range(100)]
        for v in values:
            est.add(v)
        assert est.exact is True
        assert est.quantile(0.95) == _reference(values, 0.95)

    def test_switches_to_histogram(self) -> None:
        est = AutoEstimator(exact_limit=100, relative_accuracy=0.005)
        values = [float(v) for v in range(1, 1001)]
        for v in values:
            est.add(v)
        assert est.exact is False
        assert est.count == 1000
        assert est.quantile(0.95) == pytest.approx(_reference(values, 0.95), rel=0.01)


@pytest.mark.parametrize(
    "strategy, cls",
    [
        ("exact", ExactEstimator),
        ("histogram", HistogramEstimator),
        (PercentileStrategy.RESERVOIR, ReservoirEstimator),
        ("auto", AutoEstimator),
    ],
)
def test_create_estimator(strategy, cls) -> None:
    assert isinstance(create_estimator(strategy), cls)


def test_create_estimator_unknown_strategy() -> None:
    with pytest.raises(ValueError):
        create_estimator("t-digest")
