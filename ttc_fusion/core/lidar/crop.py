# ttc_fusion/core/lidar/crop.py
# Keep only LiDAR returns in the ego lane ahead of the vehicle
from __future__ import annotations

from dataclasses import dataclass
import numpy as np

from ttc_fusion.types import PreconditionError


@dataclass
class CropParams:
    min_x: float = 2.0     # m, forward
    max_x: float = 20.0
    max_y: float = 2.0     # m, |lateral|
    min_z: float = -1.5    # m, sensor is ~1.73 m above the road
    max_z: float = -0.9
    min_r: float = 0.1     # reflectivity

    def __post_init__(self):
        if self.min_x >= self.max_x:
            raise ValueError(f"min_x ({self.min_x}) must be < max_x ({self.max_x})")
        if self.max_y <= 0:
            raise ValueError(f"max_y must be > 0, got {self.max_y}")
        if self.min_z >= self.max_z:
            raise ValueError(f"min_z ({self.min_z}) must be < max_z ({self.max_z})")


def crop_lidar_points(points: np.ndarray, params: CropParams = CropParams()) -> np.ndarray:
    pts = np.asarray(points)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise PreconditionError(f"points must be (N,3+) array, got {pts.shape}")

    x, y, z = pts[:, 0], pts[:, 1], pts[:, 2]
    keep = (
        (x >= params.min_x) & (x <= params.max_x)
        & (np.abs(y) <= params.max_y)
        & (z >= params.min_z) & (z <= params.max_z)
    )
    if pts.shape[1] >= 4:
        keep &= pts[:, 3] >= params.min_r
    return pts[keep]
