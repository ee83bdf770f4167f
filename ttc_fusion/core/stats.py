# ttc_fusion/core/stats.py
# Median / quartiles and a bounded robust-minimum
from __future__ import annotations

import heapq
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from ttc_fusion.types import EmptySampleError


def median(samples: Sequence[float], start: int = 0, end: Optional[int] = None) -> float:
    """
    Median of the inclusive range [start, end] of a sorted copy of `samples`.
    The caller's sequence is not modified. Even-length ranges return the mean
    of the two central elements.
    """
    n = len(samples)
    if end is None:
        end = n - 1
    if n == 0 or start < 0 or end >= n or end < start:
        raise EmptySampleError(f"empty sample set: range [{start}, {end}] over {n} samples")

    vals = sorted(samples)
    size = end - start + 1
    mid = start + (end - start) // 2
    if size % 2 == 1:
        return float(vals[mid])
    return (float(vals[mid]) + float(vals[mid + 1])) / 2.0


def quartiles(samples: Sequence[float]) -> Tuple[float, float, float]:
    """
    (q1, median, q3). q1/q3 are medians of the lower/upper halves of the sorted
    samples; for odd counts the central element belongs to neither half.
    """
    n = len(samples)
    med = median(samples)
    if n == 1:
        return med, med, med
    q1 = median(samples, 0, n // 2 - 1)
    q3 = median(samples, (n + 1) // 2, n - 1)
    return q1, med, q3


class BoundedMinTracker:
    """
    Keeps the k smallest values seen in a stream.
    Fixed-capacity max-heap: push, and evict the current maximum once size > k.
    Non-finite values are ignored.
    """
    def __init__(self, k: int = 5):
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        self.k = k
        self._heap: List[float] = []  # negated values (heapq is a min-heap)
        self._min: Optional[float] = None

    def push(self, value: float) -> None:
        v = float(value)
        if not math.isfinite(v):
            return
        heapq.heappush(self._heap, -v)
        if len(self._heap) > self.k:
            heapq.heappop(self._heap)
        if self._min is None or v < self._min:
            self._min = v

    def extend(self, values: Iterable[float]) -> None:
        for v in values:
            self.push(v)

    def __len__(self) -> int:
        return len(self._heap)

    def values(self) -> List[float]:
        return sorted(-v for v in self._heap)

    @property
    def minimum(self) -> float:
        if self._min is None:
            raise EmptySampleError("empty sample set: no values pushed")
        return self._min

    @property
    def median(self) -> float:
        return median(self.values())

    def reduce(self, robust: bool) -> float:
        return self.median if robust else self.minimum


def robust_min(values: Iterable[float], k: int = 5, robust: bool = False) -> float:
    tracker = BoundedMinTracker(k)
    tracker.extend(values)
    return tracker.reduce(robust)
