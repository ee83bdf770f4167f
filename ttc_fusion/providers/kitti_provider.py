from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import cv2

from ttc_fusion.types import (
    IFrameProvider,
    IObjectDetector,
    RawFrameEvent,
    Rect,
    TrackedRegion,
)

logger = logging.getLogger("ttc_fusion.providers")


class LabelFileDetector(IObjectDetector):
    """
    Object detections read from one text file per frame, named by frame
    index (e.g. 0000000012.txt).
    Two line formats are accepted:
      KITTI label:  type trunc occ alpha x1 y1 x2 y2 ...
      plain:        class_id x y width height [confidence]
    """
    def __init__(self, label_dir: str | Path, min_confidence: float = 0.0, ignore: Tuple[str, ...] = ("DontCare",)):
        self.label_dir = Path(label_dir)
        self.min_confidence = min_confidence
        self.ignore = ignore
        self._files = {int(p.stem): p for p in self.label_dir.glob("*.txt") if p.stem.isdigit()}

    def detect(self, image: np.ndarray, frame_index: int) -> List[TrackedRegion]:
        path = self._files.get(frame_index)
        if path is None:
            return []
        return self.load(path)

    def load(self, path: Path) -> List[TrackedRegion]:
        regions: List[TrackedRegion] = []
        with path.open("r") as f:
            for line in f:
                tok = line.split()
                if not tok:
                    continue
                region = self._parse(tok, box_id=len(regions))
                if region is not None:
                    regions.append(region)
        return regions

    def _parse(self, tok: List[str], box_id: int) -> Optional[TrackedRegion]:
        try:
            float(tok[0])
            is_kitti = False
        except ValueError:
            is_kitti = True

        if is_kitti:
            if tok[0] in self.ignore or len(tok) < 8:
                return None
            x1, y1, x2, y2 = map(float, tok[4:8])
            return TrackedRegion(box_id=box_id, roi=Rect(x1, y1, x2 - x1, y2 - y1), label=tok[0], confidence=1.0)

        if len(tok) < 5:
            raise ValueError(f"{self.label_dir}: malformed detection line {' '.join(tok)!r}")
        cls = int(float(tok[0]))
        x, y, w, h = map(float, tok[1:5])
        conf = float(tok[5]) if len(tok) > 5 else 1.0
        if conf < self.min_confidence:
            return None
        return TrackedRegion(box_id=box_id, roi=Rect(x, y, w, h), class_id=cls, confidence=conf)


class KittiProvider(IFrameProvider):
    """
    KITTI raw sequence:
      <seq>/image_02/data/*.png
      <seq>/velodyne_points/data/*.bin   (float32 x, y, z, reflectivity)
    Frames are paired by file stem.
    """
    def __init__(
        self,
        seq_root: str | Path,
        camera: str = "image_02",
        detector: Optional[IObjectDetector] = None,
        first: int = 0,
        last: Optional[int] = None,
        step: int = 1,
    ):
        self.seq_root = Path(seq_root)
        img_dir = self.seq_root / camera / "data"
        velo_dir = self.seq_root / "velodyne_points" / "data"

        self._frames = self._pair_frames(img_dir, velo_dir)[first:last:step]
        self.detector = detector
        self._i = 0
        logger.info("KittiProvider: %d frames from %s", len(self._frames), self.seq_root)

    def has_next(self) -> bool:
        return self._i < len(self._frames)

    def next_event(self) -> RawFrameEvent:
        if not self.has_next():
            raise StopIteration

        index, img_path, velo_path = self._frames[self._i]
        self._i += 1
        image = self._read_image(img_path)
        points = self.load_velodyne(velo_path)
        regions = self.detector.detect(image, index) if self.detector is not None else None
        return RawFrameEvent(index=index, image=image, lidar_points=points, regions=regions)

    def __len__(self) -> int:
        return len(self._frames)

    # ---------- helpers ----------

    def _pair_frames(self, img_dir: Path, velo_dir: Path) -> List[Tuple[int, Path, Path]]:
        images = {p.stem: p for p in img_dir.glob("*.png")}
        scans = {p.stem: p for p in velo_dir.glob("*.bin")}
        if not images:
            raise FileNotFoundError(f"No images found in {img_dir}")
        stems = sorted(set(images) & set(scans))
        dropped = len(images) + len(scans) - 2 * len(stems)
        if dropped:
            logger.warning("KittiProvider: %d unpaired image/scan files ignored", dropped)
        return [(int(s), images[s], scans[s]) for s in stems]

    @staticmethod
    def load_velodyne(path: str | Path) -> np.ndarray:
        pts = np.fromfile(str(path), dtype=np.float32)
        if pts.size % 4 != 0:
            raise ValueError(f"{path}: size {pts.size} is not a multiple of 4")
        return pts.reshape(-1, 4)

    def _read_image(self, path: Path) -> np.ndarray:
        img = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if img is None:
            raise FileNotFoundError(f"Failed to read image: {path}")
        return img
