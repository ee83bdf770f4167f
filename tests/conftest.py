"""Shared fixtures: a simple pinhole rig looking along the LiDAR x axis."""
from __future__ import annotations

import numpy as np
import pytest

from ttc_fusion.core.calib.kitti_calib import ProjectionCalib

FOCAL = 100.0
CX = 200.0
CY = 100.0


def make_calib() -> ProjectionCalib:
    P = np.array([[FOCAL, 0.0, CX, 0.0],
                  [0.0, FOCAL, CY, 0.0],
                  [0.0, 0.0, 1.0, 0.0]])
    # LiDAR (x fwd, y left, z up) -> camera (x right, y down, z fwd)
    RT = np.array([[0.0, -1.0, 0.0, 0.0],
                   [0.0, 0.0, -1.0, 0.0],
                   [1.0, 0.0, 0.0, 0.0]])
    return ProjectionCalib.from_matrices(P, np.eye(3), RT)


def point_at(u: float, v: float, x: float, r: float = 0.5) -> list[float]:
    """LiDAR point at forward distance x that projects to pixel (u, v)."""
    y = -(u - CX) * x / FOCAL
    z = -(v - CY) * x / FOCAL
    return [x, y, z, r]


@pytest.fixture
def calib() -> ProjectionCalib:
    return make_calib()
