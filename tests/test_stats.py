from __future__ import annotations

import itertools
import random

import pytest

from ttc_fusion.core.stats import BoundedMinTracker, median, quartiles, robust_min
from ttc_fusion.types import EmptySampleError, InsufficientDataError


def test_median_odd_and_even() -> None:
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 2.5
    assert median([7.0]) == 7.0


def test_median_all_equal() -> None:
    assert median([1.5] * 6) == 1.5


def test_median_is_order_invariant() -> None:
    samples = [0.3, 5.0, -1.0, 2.2, 9.1]
    expected = median(samples)
    for perm in itertools.permutations(samples):
        assert median(list(perm)) == expected


def test_median_does_not_mutate_input() -> None:
    samples = [5.0, 1.0, 4.0, 2.0, 3.0]
    median(samples)
    assert samples == [5.0, 1.0, 4.0, 2.0, 3.0]


def test_median_subrange_indexes_sorted_copy() -> None:
    samples = [5.0, 1.0, 4.0, 2.0, 3.0]
    assert median(samples, 0, 1) == 1.5
    assert median(samples, 2, 4) == 4.0


def test_median_empty_range_fails_explicitly() -> None:
    with pytest.raises(EmptySampleError):
        median([])
    with pytest.raises(EmptySampleError):
        median([1.0, 2.0], 1, 0)
    with pytest.raises(InsufficientDataError):
        median([1.0, 2.0], 0, 5)


def test_quartiles() -> None:
    assert quartiles([float(v) for v in range(1, 9)]) == (2.5, 4.5, 6.5)
    assert quartiles([float(v) for v in range(1, 8)]) == (2.0, 4.0, 6.0)
    assert quartiles([3.0]) == (3.0, 3.0, 3.0)


def test_bounded_min_tracker_keeps_k_smallest() -> None:
    rng = random.Random(7)
    values = [rng.uniform(0.0, 50.0) for _ in range(40)]

    tracker = BoundedMinTracker(k=5)
    tracker.extend(values)

    assert len(tracker) == 5
    assert tracker.values() == sorted(values)[:5]
    assert tracker.reduce(robust=False) == min(values)
    assert tracker.reduce(robust=True) == sorted(values)[2]


def test_bounded_min_tracker_with_fewer_values_than_k() -> None:
    tracker = BoundedMinTracker(k=5)
    tracker.extend([4.0, 2.0])
    assert tracker.values() == [2.0, 4.0]
    assert tracker.median == 3.0


def test_bounded_min_tracker_rejects_bad_k_and_empty() -> None:
    with pytest.raises(ValueError):
        BoundedMinTracker(k=0)
    with pytest.raises(EmptySampleError):
        BoundedMinTracker().minimum


def test_robust_min() -> None:
    values = [20.0, 1.0, 20.1, 20.2, 20.3, 30.0]
    assert robust_min(values) == 1.0
    assert robust_min(values, robust=True) == 20.1


def test_bounded_min_tracker_ignores_non_finite() -> None:
    tracker = BoundedMinTracker(k=3)
    tracker.extend([float("nan"), 4.0, float("inf"), 2.0])
    assert tracker.values() == [2.0, 4.0]
    assert tracker.minimum == 2.0

    with pytest.raises(EmptySampleError):
        robust_min([float("nan")])
