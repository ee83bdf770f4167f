# ttc_fusion/frontend/ttc_frontend.py
# Event-driven orchestrator: one RawFrameEvent in, per-region TTCs out
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import List, Optional

import numpy as np

from ttc_fusion.types import (
    Correspondence,
    Frame,
    IDescriptorMatcher,
    IFeatureExtractor,
    IFrameProvider,
    IObjectDetector,
    InsufficientDataError,
    PreconditionError,
    RawFrameEvent,
    RegionTTC,
    TTCEstimate,
)
from ttc_fusion.core.frame_buffer import FrameBuffer
from ttc_fusion.core.calib.kitti_calib import ProjectionCalib

# LiDAR
from ttc_fusion.core.lidar.crop import CropParams, crop_lidar_points
from ttc_fusion.core.lidar.projection import ProjectionParams, assign_points_to_regions
from ttc_fusion.core.lidar.ttc_lidar import LidarTTCParams, estimate_ttc_lidar

# Camera
from ttc_fusion.core.camera.features import DetectorParams, FeatureExtractor
from ttc_fusion.core.camera.matching import DescriptorMatcher, MatcherParams
from ttc_fusion.core.camera.correspondence_filter import (
    CorrespondenceFilterParams,
    filter_region_correspondences,
)
from ttc_fusion.core.camera.ttc_camera import CameraTTCParams, estimate_ttc_camera

# Tracking
from ttc_fusion.core.tracking.box_association import associate_bounding_boxes

logger = logging.getLogger("ttc_fusion.frontend")


@dataclass
class FrontendParams:
    frame_rate: float = 10.0          # Hz, KITTI raw camera rate
    crop_lidar: bool = True
    crop: CropParams = field(default_factory=CropParams)
    projection: ProjectionParams = field(default_factory=ProjectionParams)
    corr_filter: CorrespondenceFilterParams = field(default_factory=CorrespondenceFilterParams)
    camera_ttc: CameraTTCParams = field(default_factory=CameraTTCParams)
    lidar_ttc: LidarTTCParams = field(default_factory=LidarTTCParams)

    def __post_init__(self):
        if not (self.frame_rate > 0 and math.isfinite(self.frame_rate)):
            raise ValueError(f"frame_rate must be finite and > 0, got {self.frame_rate}")


@dataclass
class FrameResult:
    frame: Frame
    region_ttcs: List[RegionTTC] = field(default_factory=list)
    is_first: bool = False


class TTCFrontend:
    def __init__(
        self,
        calib: ProjectionCalib,
        provider: Optional[IFrameProvider] = None,
        extractor: Optional[IFeatureExtractor] = None,
        matcher: Optional[IDescriptorMatcher] = None,
        object_detector: Optional[IObjectDetector] = None,
        params: FrontendParams = FrontendParams(),
    ):
        self.calib = calib
        self.provider = provider
        if extractor is None:
            extractor = FeatureExtractor(DetectorParams())
        if matcher is None:
            matcher = DescriptorMatcher(MatcherParams(descriptor=extractor.p.descriptor))
        self.extractor = extractor
        self.matcher = matcher
        self.object_detector = object_detector
        self.p = params
        self.buffer = FrameBuffer(maxlen=2)

    def step(self) -> Optional[FrameResult]:
        if self.provider is None or not self.provider.has_next():
            return None
        return self.process(self.provider.next_event())

    def process(self, ev: RawFrameEvent) -> FrameResult:
        frame = self._build_frame(ev)
        self.buffer.push(frame)

        prev = self.buffer.previous()
        if prev is None:
            return FrameResult(frame=frame, is_first=True)

        # 1) descriptor matching previous -> current
        frame.matches = self.matcher.match(prev.descriptors, frame.descriptors)

        # 2) box association via correspondence votes
        try:
            frame.box_matches = associate_bounding_boxes(frame.matches, prev, frame)
        except PreconditionError as e:
            logger.warning("frame %d: box association skipped: %s", frame.index, e)
            frame.box_matches = {}

        # 3) per matched region pair: LiDAR + camera TTC
        results: List[RegionTTC] = []
        for pid, cid in frame.box_matches.items():
            results.append(self._region_ttc(prev, frame, pid, cid))

        logger.info("frame %d: %d keypoints, %d matches, %d box pairs",
                    frame.index, len(frame.keypoints), len(frame.matches), len(results))
        return FrameResult(frame=frame, region_ttcs=results)

    # ---------- helpers ----------

    def _build_frame(self, ev: RawFrameEvent) -> Frame:
        points = np.asarray(ev.lidar_points, dtype=np.float64)
        if self.p.crop_lidar and points.size:
            points = crop_lidar_points(points, self.p.crop)

        if ev.regions is not None:
            regions = list(ev.regions)
        elif self.object_detector is not None:
            regions = self.object_detector.detect(ev.image, ev.index)
        else:
            regions = []

        kpts, desc = self.extractor.extract(ev.image)

        try:
            clusters = assign_points_to_regions(regions, points, self.calib, self.p.projection)
            regions = [replace(r, lidar_points=clusters[r.box_id]) for r in regions]
        except PreconditionError as e:
            logger.warning("frame %d: lidar clustering skipped: %s", ev.index, e)

        return Frame(
            index=ev.index, image=ev.image, keypoints=kpts, descriptors=desc,
            regions=regions, lidar_points=points,
        )

    def _region_ttc(self, prev: Frame, curr: Frame, pid: int, cid: int) -> RegionTTC:
        prev_r = prev.region(pid)
        curr_r = curr.region(cid)

        try:
            lidar = estimate_ttc_lidar(prev_r.lidar_points, curr_r.lidar_points, self.p.frame_rate, self.p.lidar_ttc)
        except PreconditionError as e:
            logger.warning("frame %d box %d: lidar TTC skipped: %s", curr.index, cid, e)
            lidar = TTCEstimate.unavailable()

        kept: List[Correspondence] = []
        try:
            kept = filter_region_correspondences(curr_r, prev.keypoints, curr.keypoints, curr.matches, self.p.corr_filter)
            camera = estimate_ttc_camera(prev.keypoints, curr.keypoints, kept, self.p.frame_rate, self.p.camera_ttc)
        except InsufficientDataError as e:
            logger.debug("frame %d box %d: camera TTC unavailable: %s", curr.index, cid, e)
            camera = TTCEstimate.unavailable()
        except PreconditionError as e:
            logger.warning("frame %d box %d: camera TTC skipped: %s", curr.index, cid, e)
            camera = TTCEstimate.unavailable()

        curr.regions = [replace(r, matches=tuple(kept)) if r.box_id == cid else r for r in curr.regions]

        return RegionTTC(
            prev_box_id=pid, curr_box_id=cid, lidar=lidar, camera=camera,
            n_lidar_prev=len(prev_r.lidar_points), n_lidar_curr=len(curr_r.lidar_points),
            n_matches=len(kept),
        )
