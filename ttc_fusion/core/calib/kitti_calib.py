'''
Projection calibration for LiDAR -> image.
Composed projection: P_rect (3x4) @ R_rect (4x4) @ RT (4x4), applied to
homogeneous LiDAR points [x, y, z, 1].
Loaders for the KITTI raw (calib_cam_to_cam.txt / calib_velo_to_cam.txt) and
object benchmark (single file with P2 / R0_rect / Tr_velo_to_cam) formats.
'''
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import numpy as np

from ttc_fusion.types import PreconditionError


def _pad_rotation(R: np.ndarray, name: str) -> np.ndarray:
    if R.shape == (4, 4):
        return R
    if R.shape != (3, 3):
        raise PreconditionError(f"{name} must be 3x3 or 4x4, got {R.shape}")
    out = np.eye(4, dtype=np.float64)
    out[:3, :3] = R
    return out


def _pad_rigid(T: np.ndarray, name: str) -> np.ndarray:
    if T.shape == (4, 4):
        return T
    if T.shape != (3, 4):
        raise PreconditionError(f"{name} must be 3x4 or 4x4, got {T.shape}")
    return np.vstack([T, np.array([0.0, 0.0, 0.0, 1.0])])


@dataclass(frozen=True)
class ProjectionCalib:
    P_rect: np.ndarray   # (3,4) intrinsics of the rectified camera
    R_rect: np.ndarray   # (4,4) rectifying rotation (padded)
    RT: np.ndarray       # (4,4) LiDAR -> camera extrinsics (padded)

    @staticmethod
    def from_matrices(P_rect, R_rect, RT) -> "ProjectionCalib":
        P = np.asarray(P_rect, dtype=np.float64)
        if P.shape != (3, 4):
            raise PreconditionError(f"P_rect must be 3x4, got {P.shape}")
        R = _pad_rotation(np.asarray(R_rect, dtype=np.float64), "R_rect")
        T = _pad_rigid(np.asarray(RT, dtype=np.float64), "RT")
        for name, M in (("P_rect", P), ("R_rect", R), ("RT", T)):
            if not np.all(np.isfinite(M)):
                raise PreconditionError(f"{name} contains non-finite values")
        return ProjectionCalib(P_rect=P, R_rect=R, RT=T)

    @property
    def projection_matrix(self) -> np.ndarray:
        """(3,4) composed LiDAR -> pixel projection."""
        return self.P_rect @ self.R_rect @ self.RT

    def project(self, points: np.ndarray, min_depth: float = 1e-6) -> tuple[np.ndarray, np.ndarray]:
        """
        points: (N,3+) LiDAR points (x fwd, y left, z up, ...)
        returns:
          uv: (N,2) pixel coordinates (NaN where not projectable)
          ok: (N,) bool, projective depth > min_depth
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] < 3:
            raise PreconditionError(f"points must be (N,3+) array, got {pts.shape}")
        n = pts.shape[0]
        X = np.ones((4, n), dtype=np.float64)
        X[:3, :] = pts[:, :3].T

        Y = self.projection_matrix @ X   # (3,N)
        w = Y[2]
        ok = np.isfinite(w) & (w > min_depth)

        uv = np.full((n, 2), np.nan, dtype=np.float64)
        uv[ok, 0] = Y[0, ok] / w[ok]
        uv[ok, 1] = Y[1, ok] / w[ok]
        return uv, ok


def _read_kv_file(path: str | Path) -> Dict[str, np.ndarray]:
    out: Dict[str, np.ndarray] = {}
    with Path(path).open("r") as f:
        for line in f:
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            try:
                out[key.strip()] = np.array([float(x) for x in value.split()], dtype=np.float64)
            except ValueError:
                # non-numeric entries such as calib_time
                continue
    return out


def _require(data: Dict[str, np.ndarray], key: str, size: int, path: str | Path) -> np.ndarray:
    if key not in data:
        raise PreconditionError(f"{path}: missing '{key}'")
    if data[key].size != size:
        raise PreconditionError(f"{path}: '{key}' has {data[key].size} values, expected {size}")
    return data[key]


def load_kitti_calib(cam_to_cam: str | Path, velo_to_cam: str | Path, camera: str = "02") -> ProjectionCalib:
    cc = _read_kv_file(cam_to_cam)
    vc = _read_kv_file(velo_to_cam)

    P = _require(cc, f"P_rect_{camera}", 12, cam_to_cam).reshape(3, 4)
    R_rect = _require(cc, "R_rect_00", 9, cam_to_cam).reshape(3, 3)
    R = _require(vc, "R", 9, velo_to_cam).reshape(3, 3)
    t = _require(vc, "T", 3, velo_to_cam).reshape(3, 1)

    return ProjectionCalib.from_matrices(P, R_rect, np.hstack([R, t]))


def load_object_calib(path: str | Path) -> ProjectionCalib:
    data = _read_kv_file(path)
    P = _require(data, "P2", 12, path).reshape(3, 4)
    R0 = _require(data, "R0_rect", 9, path).reshape(3, 3)
    Tr = _require(data, "Tr_velo_to_cam", 12, path).reshape(3, 4)
    return ProjectionCalib.from_matrices(P, R0, Tr)
