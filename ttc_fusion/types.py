from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Protocol, Sequence, Tuple
import math
import numpy as np


# -----------------------------
# Errors
# -----------------------------

class PreconditionError(ValueError):
    """Invalid index, mismatched shapes or a malformed projection matrix."""


class InsufficientDataError(ValueError):
    """Not enough samples / candidates to produce an estimate."""


class EmptySampleError(InsufficientDataError):
    pass


# -----------------------------
# Image-space primitives
# -----------------------------

@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    size: float = 0.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0

    @property
    def pt(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @staticmethod
    def from_cv(kp) -> "Keypoint":
        return Keypoint(
            x=float(kp.pt[0]), y=float(kp.pt[1]),
            size=float(kp.size), angle=float(kp.angle),
            response=float(kp.response), octave=int(kp.octave),
        )


@dataclass(frozen=True)
class Correspondence:
    prev_idx: int      # index into the previous frame's keypoints
    curr_idx: int      # index into the current frame's keypoints
    distance: float = 0.0  # descriptor distance, lower is better

    @staticmethod
    def from_dmatch(m) -> "Correspondence":
        return Correspondence(prev_idx=int(m.queryIdx), curr_idx=int(m.trainIdx), distance=float(m.distance))


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def contains(self, u: float, v: float) -> bool:
        # half-open, same convention as cv::Rect::contains
        return self.x <= u < self.x + self.width and self.y <= v < self.y + self.height

    def contains_many(self, uv: np.ndarray) -> np.ndarray:
        """uv: (N,2) -> (N,) bool"""
        u = uv[:, 0]
        v = uv[:, 1]
        return (u >= self.x) & (u < self.x + self.width) & (v >= self.y) & (v < self.y + self.height)

    def shrink(self, factor: float) -> "Rect":
        """
        Scale width/height by (1 - factor) around the box centre.
        factor > 0 shrinks, factor < 0 grows, factor == 0 is the identity.
        """
        if not math.isfinite(factor) or factor >= 1.0:
            raise PreconditionError(f"shrink factor must be finite and < 1, got {factor}")
        return Rect(
            x=self.x + factor * self.width / 2.0,
            y=self.y + factor * self.height / 2.0,
            width=self.width * (1.0 - factor),
            height=self.height * (1.0 - factor),
        )


# -----------------------------
# Regions and frames
# -----------------------------

def _empty_points() -> np.ndarray:
    return np.zeros((0, 4), dtype=np.float64)


@dataclass(frozen=True, eq=False)
class TrackedRegion:
    box_id: int
    roi: Rect
    class_id: Optional[int] = None
    confidence: float = 0.0
    label: Optional[str] = None
    lidar_points: np.ndarray = field(default_factory=_empty_points)  # (N,4) x,y,z,r
    matches: Tuple[Correspondence, ...] = ()


@dataclass
class Frame:
    index: int
    image: Optional[np.ndarray] = None          # HxW or HxWx3
    keypoints: List[Keypoint] = field(default_factory=list)
    descriptors: Optional[np.ndarray] = None
    regions: List[TrackedRegion] = field(default_factory=list)
    lidar_points: np.ndarray = field(default_factory=_empty_points)
    matches: List[Correspondence] = field(default_factory=list)  # previous -> this frame
    box_matches: Dict[int, int] = field(default_factory=dict)    # previous box_id -> this box_id

    def region(self, box_id: int) -> Optional[TrackedRegion]:
        for r in self.regions:
            if r.box_id == box_id:
                return r
        return None


BoxAssociationMap = Dict[int, int]


# -----------------------------
# Estimates
# -----------------------------

TTCStatus = Literal["ok", "receding", "not_closing", "unavailable"]


@dataclass(frozen=True)
class TTCEstimate:
    ttc_s: float
    status: TTCStatus
    reference: Optional[float] = None  # median ratio (camera) or closure in m (lidar)

    @property
    def is_available(self) -> bool:
        return self.status in ("ok", "receding")

    @staticmethod
    def unavailable() -> "TTCEstimate":
        return TTCEstimate(ttc_s=math.nan, status="unavailable")


@dataclass(frozen=True)
class RegionTTC:
    prev_box_id: int
    curr_box_id: int
    lidar: TTCEstimate
    camera: TTCEstimate
    n_lidar_prev: int = 0
    n_lidar_curr: int = 0
    n_matches: int = 0


# -----------------------------
# Raw events from dataset/provider
# -----------------------------

@dataclass(frozen=True)
class RawFrameEvent:
    index: int
    image: np.ndarray                 # HxW (uint8) or HxWx3
    lidar_points: np.ndarray          # (N,4) float32
    regions: Optional[List[TrackedRegion]] = None  # pre-computed detections, if any


# -----------------------------
# Capability interfaces (detector / descriptor / matcher / object detector)
# -----------------------------

class IFrameProvider(Protocol):
    """Yields RawFrameEvent in increasing frame order."""
    def has_next(self) -> bool: ...
    def next_event(self) -> RawFrameEvent: ...


class IFeatureExtractor(Protocol):
    """Keypoints + descriptor table for one image."""
    def extract(self, image: np.ndarray) -> Tuple[List[Keypoint], Optional[np.ndarray]]: ...


class IDescriptorMatcher(Protocol):
    def match(self, desc_prev: np.ndarray, desc_curr: np.ndarray) -> List[Correspondence]: ...


class IObjectDetector(Protocol):
    def detect(self, image: np.ndarray, frame_index: int) -> List[TrackedRegion]: ...


# -----------------------------
# Utility: index validation
# -----------------------------

def check_correspondence_indices(
    matches: Sequence[Correspondence], n_prev: int, n_curr: int, name: str
) -> None:
    for m in matches:
        if not (0 <= m.prev_idx < n_prev) or not (0 <= m.curr_idx < n_curr):
            raise PreconditionError(
                f"{name}: correspondence ({m.prev_idx}, {m.curr_idx}) out of range "
                f"for {n_prev} previous / {n_curr} current keypoints"
            )


def keypoints_to_array(kpts: Sequence[Keypoint]) -> np.ndarray:
    if not kpts:
        return np.zeros((0, 2), dtype=np.float64)
    return np.array([[k.x, k.y] for k in kpts], dtype=np.float64)
