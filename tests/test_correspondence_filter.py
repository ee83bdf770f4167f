from __future__ import annotations

import pytest

from ttc_fusion.core.camera.correspondence_filter import (
    CorrespondenceFilterParams,
    acceptance_bounds,
    filter_region_correspondences,
)
from ttc_fusion.types import (
    Correspondence,
    InsufficientDataError,
    Keypoint,
    PreconditionError,
    Rect,
    TrackedRegion,
)

REGION = TrackedRegion(box_id=3, roi=Rect(100.0, 100.0, 200.0, 100.0))


def _shifted(starts, shifts):
    """Horizontal displacements keep the distances exact."""
    prev = [Keypoint(x, y) for x, y in starts]
    curr = [Keypoint(x + dx, y) for (x, y), dx in zip(starts, shifts)]
    matches = [Correspondence(i, i, distance=float(i)) for i in range(len(starts))]
    return prev, curr, matches


def test_inliers_accepted_and_far_outlier_rejected() -> None:
    starts = [(150.0 + 10 * i, 150.0) for i in range(9)]
    shifts = [5.0, 4.0, 6.0, 5.0, 5.5, 4.5, 5.0, 5.0, 40.0]
    prev, curr, matches = _shifted(starts, shifts)

    kept = filter_region_correspondences(REGION, prev, curr, matches)

    assert [m.prev_idx for m in kept] == list(range(8))


def test_candidates_must_lie_in_grown_box() -> None:
    # grown by 10 %: x in [90, 310), y in [95, 205)
    starts = [(50.0, 150.0), (95.0, 150.0), (200.0, 150.0), (200.0, 180.0)]
    prev, curr, matches = _shifted(starts, [5.0, 5.0, 5.0, 5.0])

    kept = filter_region_correspondences(REGION, prev, curr, matches)
    assert [m.prev_idx for m in kept] == [1, 2, 3]

    strict = CorrespondenceFilterParams(shrink_factor=0.0)
    kept = filter_region_correspondences(REGION, prev, curr, matches, strict)
    assert [m.prev_idx for m in kept] == [2, 3]


def test_iqr_is_tighter_than_median_band() -> None:
    starts = [(150.0 + 10 * i, 150.0) for i in range(9)]
    shifts = [4.0, 4.5, 5.0, 5.0, 5.0, 5.5, 6.0, 6.0, 12.0]
    prev, curr, matches = _shifted(starts, shifts)

    band = filter_region_correspondences(REGION, prev, curr, matches)
    iqr = filter_region_correspondences(
        REGION, prev, curr, matches, CorrespondenceFilterParams(strategy="iqr")
    )

    assert len(band) == 9
    assert [m.prev_idx for m in iqr] == list(range(8))


def test_accepted_displacements_lie_within_bounds() -> None:
    shifts = [1.0, 2.0, 3.0, 3.0, 4.0, 20.0, 0.5]
    starts = [(120.0 + 20 * i, 120.0) for i in range(len(shifts))]
    prev, curr, matches = _shifted(starts, shifts)

    for strategy in ("median_band", "iqr"):
        params = CorrespondenceFilterParams(strategy=strategy)
        lo, hi = acceptance_bounds(shifts, params)
        kept = filter_region_correspondences(REGION, prev, curr, matches, params)
        assert kept
        for m in kept:
            assert lo <= shifts[m.prev_idx] <= hi


def test_median_band_bounds() -> None:
    lo, hi = acceptance_bounds([2.0, 4.0, 6.0], CorrespondenceFilterParams())
    assert lo == pytest.approx(-6.0)
    assert hi == pytest.approx(14.0)


def test_no_matches_or_no_candidates_is_insufficient() -> None:
    prev, curr, matches = _shifted([(10.0, 10.0)], [1.0])
    with pytest.raises(InsufficientDataError):
        filter_region_correspondences(REGION, prev, curr, [])
    with pytest.raises(InsufficientDataError):
        filter_region_correspondences(REGION, prev, curr, matches)


def test_out_of_range_index_rejected() -> None:
    prev, curr, _ = _shifted([(150.0, 150.0)], [1.0])
    with pytest.raises(PreconditionError):
        filter_region_correspondences(REGION, prev, curr, [Correspondence(0, 4)])


def test_params_validation() -> None:
    with pytest.raises(ValueError):
        CorrespondenceFilterParams(strategy="mean")
    with pytest.raises(ValueError):
        CorrespondenceFilterParams(range_factor=-1.0)
