'''
Camera TTC from the scale change of matched keypoint pairs.
For every unordered pair of correspondences (i < j):
    ratio = |curr_i - curr_j| / |prev_i - prev_j|
kept when the previous distance is above epsilon and the current distance is
inside [min_dist_px, max_dist_px]. With r = median(ratios):
    TTC = -dT / (1 - r)
'''
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ttc_fusion.core.stats import median
from ttc_fusion.types import (
    Correspondence,
    Keypoint,
    PreconditionError,
    TTCEstimate,
    check_correspondence_indices,
    keypoints_to_array,
)

logger = logging.getLogger("ttc_fusion.camera")


@dataclass
class CameraTTCParams:
    min_dist_px: float = 100.0
    max_dist_px: float = 160.0
    eps: float = float(np.finfo(np.float64).eps)
    max_correspondences: Optional[int] = 2000   # O(n^2) pairs; None disables the cap

    def __post_init__(self):
        if self.min_dist_px < 0 or self.max_dist_px < self.min_dist_px:
            raise ValueError(f"invalid distance band [{self.min_dist_px}, {self.max_dist_px}]")
        if self.eps < 0:
            raise ValueError(f"eps must be >= 0, got {self.eps}")
        if self.max_correspondences is not None and self.max_correspondences < 2:
            raise ValueError(f"max_correspondences must be >= 2, got {self.max_correspondences}")


def keypoint_distance_ratios(
    prev_kpts: Sequence[Keypoint],
    curr_kpts: Sequence[Keypoint],
    matches: Sequence[Correspondence],
    params: CameraTTCParams = CameraTTCParams(),
) -> np.ndarray:
    check_correspondence_indices(matches, len(prev_kpts), len(curr_kpts), "keypoint_distance_ratios")
    if len(matches) < 2:
        return np.zeros((0,), dtype=np.float64)

    if params.max_correspondences is not None and len(matches) > params.max_correspondences:
        logger.warning("capping %d correspondences to the best %d", len(matches), params.max_correspondences)
        matches = sorted(matches, key=lambda m: m.distance)[: params.max_correspondences]

    p0 = keypoints_to_array(prev_kpts)[[m.prev_idx for m in matches]]
    p1 = keypoints_to_array(curr_kpts)[[m.curr_idx for m in matches]]

    i, j = np.triu_indices(len(matches), k=1)
    d_prev = np.linalg.norm(p0[i] - p0[j], axis=1)
    d_curr = np.linalg.norm(p1[i] - p1[j], axis=1)

    keep = (d_prev > params.eps) & (d_curr >= params.min_dist_px) & (d_curr <= params.max_dist_px)
    return d_curr[keep] / d_prev[keep]


def estimate_ttc_camera(
    prev_kpts: Sequence[Keypoint],
    curr_kpts: Sequence[Keypoint],
    matches: Sequence[Correspondence],
    frame_rate: float,
    params: CameraTTCParams = CameraTTCParams(),
) -> TTCEstimate:
    if not (frame_rate > 0 and math.isfinite(frame_rate)):
        raise PreconditionError(f"frame_rate must be > 0, got {frame_rate}")

    ratios = keypoint_distance_ratios(prev_kpts, curr_kpts, matches, params)
    if ratios.size == 0:
        return TTCEstimate.unavailable()

    med = median(ratios.tolist())
    dT = 1.0 / frame_rate
    logger.debug("camera ratios=%d mean=%.4f median=%.4f", ratios.size, float(ratios.mean()), med)

    if med == 1.0:
        return TTCEstimate(ttc_s=math.inf, status="not_closing", reference=med)

    ttc = -dT / (1.0 - med)
    if not math.isfinite(ttc):
        return TTCEstimate.unavailable()
    return TTCEstimate(ttc_s=ttc, status="ok" if ttc > 0 else "receding", reference=med)
