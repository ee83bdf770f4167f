'''
Point-to-region assignment.
Each LiDAR point is projected into the image and assigned to a region only if
it falls inside exactly one shrunk region. Points inside zero or several
shrunk regions are dropped; points behind the camera are never assigned.
'''
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Sequence

import numpy as np

from ttc_fusion.core.calib.kitti_calib import ProjectionCalib
from ttc_fusion.types import PreconditionError, TrackedRegion

logger = logging.getLogger("ttc_fusion.lidar")


@dataclass
class ProjectionParams:
    shrink_factor: float = 0.10     # fraction of width/height removed around the edges
    min_depth: float = 1e-6         # projective depth below this is "not assignable"

    def __post_init__(self):
        if not (-1.0 < self.shrink_factor < 1.0):
            raise ValueError(f"shrink_factor must be in (-1, 1), got {self.shrink_factor}")
        if self.min_depth < 0:
            raise ValueError(f"min_depth must be >= 0, got {self.min_depth}")


def assign_points_to_regions(
    regions: Sequence[TrackedRegion],
    points: np.ndarray,
    calib: ProjectionCalib,
    params: ProjectionParams = ProjectionParams(),
) -> Dict[int, np.ndarray]:
    """
    points: (N,3+) LiDAR points
    returns: box_id -> (M, points.shape[1]) points assigned to that region.
    Every region id is present in the result, possibly with zero points.
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise PreconditionError(f"points must be (N,3+) array, got {pts.shape}")

    ids = [r.box_id for r in regions]
    if len(set(ids)) != len(ids):
        raise PreconditionError(f"region ids must be unique per frame, got {ids}")

    out: Dict[int, np.ndarray] = {r.box_id: pts[:0] for r in regions}
    if not regions or pts.shape[0] == 0:
        return out

    uv, projectable = calib.project(pts, min_depth=params.min_depth)

    inside = np.zeros((len(regions), pts.shape[0]), dtype=bool)
    for i, r in enumerate(regions):
        box = r.roi.shrink(params.shrink_factor)
        # NaN coordinates compare False, so non-projectable points never hit
        inside[i] = box.contains_many(uv) & projectable

    n_enclosing = inside.sum(axis=0)
    unique = n_enclosing == 1

    for i, r in enumerate(regions):
        out[r.box_id] = pts[inside[i] & unique]

    logger.debug(
        "assigned %d/%d points (ambiguous=%d, behind=%d)",
        int(unique.sum()), pts.shape[0], int((n_enclosing > 1).sum()), int((~projectable).sum()),
    )
    return out
