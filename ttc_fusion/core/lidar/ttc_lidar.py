'''
LiDAR TTC under a constant-velocity model:
    TTC = d1 * dT / (d0 - d1)
d0/d1: closest forward distance in the previous/current frame, either the raw
minimum or the median of the k closest returns (robust mode).
'''
from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from ttc_fusion.core.stats import robust_min
from ttc_fusion.types import EmptySampleError, PreconditionError, TTCEstimate

logger = logging.getLogger("ttc_fusion.lidar")


@dataclass
class LidarTTCParams:
    k: int = 5               # closest returns retained
    robust: bool = False     # median of the k closest instead of the minimum

    def __post_init__(self):
        if self.k < 1:
            raise ValueError(f"k must be >= 1, got {self.k}")


def closest_forward_distance(points: np.ndarray, params: LidarTTCParams = LidarTTCParams()) -> float:
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] < 1:
        raise PreconditionError(f"points must be (N,3+) array, got {pts.shape}")
    # non-finite ranges are skipped; none left raises EmptySampleError
    return robust_min(pts[:, 0], params.k, params.robust)


def estimate_ttc_lidar(
    prev_points: np.ndarray,
    curr_points: np.ndarray,
    frame_rate: float,
    params: LidarTTCParams = LidarTTCParams(),
) -> TTCEstimate:
    if not (frame_rate > 0 and math.isfinite(frame_rate)):
        raise PreconditionError(f"frame_rate must be > 0, got {frame_rate}")

    if len(prev_points) == 0 or len(curr_points) == 0:
        return TTCEstimate.unavailable()

    try:
        d0 = closest_forward_distance(prev_points, params)
        d1 = closest_forward_distance(curr_points, params)
    except EmptySampleError:
        return TTCEstimate.unavailable()

    dT = 1.0 / frame_rate
    closure = d0 - d1

    if closure == 0.0:
        return TTCEstimate(ttc_s=math.inf, status="not_closing", reference=closure)

    ttc = d1 * dT / closure
    if not math.isfinite(ttc):
        return TTCEstimate.unavailable()

    logger.debug("lidar d0=%.3f d1=%.3f ttc=%.3f s", d0, d1, ttc)
    # ttc == 0: the closest return is already at the sensor
    return TTCEstimate(ttc_s=ttc, status="ok" if ttc >= 0 else "receding", reference=closure)
