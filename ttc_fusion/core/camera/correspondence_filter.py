'''
Restrict correspondences to one region and reject displacement outliers.

Candidates: matches whose previous AND current keypoint lie inside the
region's rectangle after applying `shrink_factor` (negative grows the box,
keypoints drift more between frames than LiDAR returns do).

Acceptance, per `strategy`:
  "median_band": |d - median| <= range_factor * median
  "iqr":         q1 - iqr_factor * IQR <= d <= q3 + iqr_factor * IQR

The two gates can disagree substantially: with range_factor=2.5 the median
band accepts everything in [0, 3.5 * median], far wider than the IQR fence.
"median_band" is the default; pick "iqr" for a tighter filter.
'''
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Sequence

import numpy as np

from ttc_fusion.core.stats import median, quartiles
from ttc_fusion.types import (
    Correspondence,
    InsufficientDataError,
    Keypoint,
    TrackedRegion,
    check_correspondence_indices,
    keypoints_to_array,
)

logger = logging.getLogger("ttc_fusion.camera")

FilterStrategy = Literal["median_band", "iqr"]


@dataclass
class CorrespondenceFilterParams:
    shrink_factor: float = -0.10
    strategy: FilterStrategy = "median_band"
    range_factor: float = 2.5
    iqr_factor: float = 1.2

    def __post_init__(self):
        if not (-1.0 < self.shrink_factor < 1.0):
            raise ValueError(f"shrink_factor must be in (-1, 1), got {self.shrink_factor}")
        if self.strategy not in ("median_band", "iqr"):
            raise ValueError(f"unknown strategy '{self.strategy}'")
        if self.range_factor < 0 or self.iqr_factor < 0:
            raise ValueError("range_factor and iqr_factor must be >= 0")


def acceptance_bounds(displacements: Sequence[float], params: CorrespondenceFilterParams) -> tuple[float, float]:
    q1, med, q3 = quartiles(displacements)
    iqr = q3 - q1
    logger.debug("displacement q1=%.2f median=%.2f q3=%.2f iqr=%.2f", q1, med, q3, iqr)

    if params.strategy == "iqr":
        return q1 - params.iqr_factor * iqr, q3 + params.iqr_factor * iqr
    return med - params.range_factor * med, med + params.range_factor * med


def filter_region_correspondences(
    region: TrackedRegion,
    prev_kpts: Sequence[Keypoint],
    curr_kpts: Sequence[Keypoint],
    matches: Sequence[Correspondence],
    params: CorrespondenceFilterParams = CorrespondenceFilterParams(),
) -> List[Correspondence]:
    check_correspondence_indices(matches, len(prev_kpts), len(curr_kpts), "filter_region_correspondences")
    if not matches:
        raise InsufficientDataError(f"region {region.box_id}: insufficient correspondences (no matches)")

    box = region.roi.shrink(params.shrink_factor)
    prev_xy = keypoints_to_array(prev_kpts)
    curr_xy = keypoints_to_array(curr_kpts)

    qi = np.array([m.prev_idx for m in matches], dtype=np.int64)
    ti = np.array([m.curr_idx for m in matches], dtype=np.int64)
    p0 = prev_xy[qi]
    p1 = curr_xy[ti]

    in_box = box.contains_many(p0) & box.contains_many(p1)
    if not np.any(in_box):
        raise InsufficientDataError(f"region {region.box_id}: insufficient correspondences (none inside)")

    disp = np.linalg.norm(p1 - p0, axis=1)
    cand_idx = np.flatnonzero(in_box)
    lo, hi = acceptance_bounds(disp[cand_idx].tolist(), params)

    accepted = [matches[i] for i in cand_idx if lo <= disp[i] <= hi]
    logger.debug("region %d: %d candidates, %d accepted [%.2f, %.2f]",
                 region.box_id, cand_idx.size, len(accepted), lo, hi)
    return accepted
