from __future__ import annotations

import math

import pytest

from algo.factors.moving_average import MeanCalculationMethod, MovingAverageTracker
from algo.factors.registry import build_tracker, supported_methods, validate_method
from shared.errors import ValidationError


def test_mean_of_last_period_values():
    tracker = MovingAverageTracker(3)
    values = [10.0, 20.0, 30.0, 40.0, 50.0]
    means = [tracker.update(v) for v in values]
    assert means[0] == 10.0
    assert means[1] == 15.0
    assert means[-1] == pytest.approx((30 + 40 + 50) / 3)
    assert tracker.values == (30.0, 40.0, 50.0)
    assert len(tracker) == 3


def test_constant_closes_give_exact_mean():
    tracker = MovingAverageTracker(20)
    for _ in range(20):
        tracker.update(100.0)
    assert tracker.calculate() == 100.0


def test_running_sum_matches_window_after_many_updates():
    tracker = MovingAverageTracker(7)
    for i in range(1000):
        tracker.update(0.1 * i + 1e-3 * (i % 13))
        assert tracker.running_sum == pytest.approx(math.fsum(tracker.values), rel=1e-12)
    assert len(tracker) == 7


def test_empty_tracker_and_reset():
    tracker = MovingAverageTracker(4)
    assert tracker.calculate() == 0.0
    tracker.update(5.0)
    tracker.reset()
    assert tracker.calculate() == 0.0
    assert len(tracker) == 0


@pytest.mark.parametrize("period", [0, -3])
def test_non_positive_period_rejected(period):
    with pytest.raises(ValueError):
        MovingAverageTracker(period)


def test_registry_builds_simple_ma():
    tracker = build_tracker("simple_ma", 5)
    assert isinstance(tracker, MovingAverageTracker)
    assert tracker.method is MeanCalculationMethod.SIMPLE_MA
    assert supported_methods() == ["simple_ma"]


@pytest.mark.parametrize("method", ["ema", "vwap"])
def test_registry_rejects_unimplemented_methods(method):
    with pytest.raises(ValidationError) as exc:
        validate_method(method)
    assert f"unsupported calculation method: {method}" in str(exc.value)


def test_registry_rejects_unknown_method():
    with pytest.raises(ValidationError) as exc:
        build_tracker("median", 5)
    assert "unknown calculation method" in str(exc.value)
