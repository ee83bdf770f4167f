# Implementation: OpenCV keypoint detectors + descriptor extractors
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ttc_fusion.types import Keypoint

logger = logging.getLogger("ttc_fusion.features")

DETECTOR_TYPES = ("SHITOMASI", "HARRIS", "FAST", "BRISK", "ORB", "AKAZE", "SIFT")
DESCRIPTOR_TYPES = ("BRISK", "ORB", "FREAK", "AKAZE", "SIFT")
BINARY_DESCRIPTORS = ("BRISK", "ORB", "FREAK", "AKAZE")


@dataclass
class DetectorParams:
    detector: str = "SHITOMASI"
    descriptor: str = "BRISK"
    max_keypoints: Optional[int] = None   # keep strongest N by response
    # Shi-Tomasi
    st_block_size: int = 4
    st_quality: float = 0.01
    st_k: float = 0.04
    # Harris
    harris_block_size: int = 2
    harris_aperture: int = 3
    harris_k: float = 0.04
    harris_min_response: int = 100
    # FAST / BRISK
    fast_threshold: int = 30
    brisk_threshold: int = 30
    brisk_octaves: int = 3

    def __post_init__(self):
        self.detector = self.detector.upper()
        self.descriptor = self.descriptor.upper()
        if self.detector not in DETECTOR_TYPES:
            raise ValueError(f"unknown detector '{self.detector}', expected one of {DETECTOR_TYPES}")
        if self.descriptor not in DESCRIPTOR_TYPES:
            raise ValueError(f"unknown descriptor '{self.descriptor}', expected one of {DESCRIPTOR_TYPES}")
        # AKAZE descriptors need AKAZE keypoints; ORB cannot describe SIFT octaves
        if self.descriptor == "AKAZE" and self.detector != "AKAZE":
            raise ValueError("AKAZE descriptor requires the AKAZE detector")
        if self.detector == "SIFT" and self.descriptor == "ORB":
            raise ValueError("ORB descriptor is not compatible with SIFT keypoints")
        if self.max_keypoints is not None and self.max_keypoints < 1:
            raise ValueError(f"max_keypoints must be >= 1, got {self.max_keypoints}")


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def _orb():
    return cv2.ORB_create(
        nfeatures=500, scaleFactor=1.2, nlevels=8, edgeThreshold=31, firstLevel=0,
        WTA_K=2, scoreType=cv2.ORB_HARRIS_SCORE, patchSize=31, fastThreshold=20,
    )


def _akaze():
    return cv2.AKAZE_create(
        descriptor_type=cv2.AKAZE_DESCRIPTOR_MLDB, descriptor_size=0, descriptor_channels=3,
        threshold=0.001, nOctaves=4, nOctaveLayers=4, diffusivity=cv2.KAZE_DIFF_PM_G2,
    )


def _sift():
    return cv2.SIFT_create(nfeatures=0, nOctaveLayers=3, contrastThreshold=0.04, edgeThreshold=10, sigma=1.6)


def _brisk(threshold: int, octaves: int):
    # moved out of the main module in newer OpenCV releases
    for module in (cv2, getattr(cv2, "xfeatures2d", None)):
        if module is not None and hasattr(module, "BRISK_create"):
            return module.BRISK_create(threshold, octaves, 1.0)
    raise ValueError("BRISK is not available in this OpenCV build")


class FeatureExtractor:
    def __init__(self, params: DetectorParams = DetectorParams()):
        self.p = params
        self._detector = self._make_detector()
        self._extractor = self._make_extractor()

    def _make_detector(self):
        d = self.p.detector
        if d == "FAST":
            return cv2.FastFeatureDetector_create(
                threshold=self.p.fast_threshold, nonmaxSuppression=True,
                type=cv2.FAST_FEATURE_DETECTOR_TYPE_9_16,
            )
        if d == "BRISK":
            return _brisk(self.p.brisk_threshold, self.p.brisk_octaves)
        if d == "ORB":
            return _orb()
        if d == "AKAZE":
            return _akaze()
        if d == "SIFT":
            return _sift()
        return None  # SHITOMASI / HARRIS are implemented below

    def _make_extractor(self):
        d = self.p.descriptor
        if d == "BRISK":
            return _brisk(self.p.brisk_threshold, self.p.brisk_octaves)
        if d == "ORB":
            return _orb()
        if d == "AKAZE":
            return _akaze()
        if d == "SIFT":
            return _sift()
        if getattr(cv2, "xfeatures2d", None) is None:
            raise ValueError("FREAK descriptor requires an OpenCV build with the contrib modules")
        return cv2.xfeatures2d.FREAK_create(
            orientationNormalized=True, scaleNormalized=True, patternScale=22.0, nOctaves=4
        )

    # ---------- detection ----------

    def detect(self, image: np.ndarray) -> list:
        gray = _to_gray(image)
        t0 = time.perf_counter()
        if self.p.detector == "SHITOMASI":
            kps = self._detect_shitomasi(gray)
        elif self.p.detector == "HARRIS":
            kps = self._detect_harris(gray)
        else:
            kps = list(self._detector.detect(gray, None))

        if self.p.max_keypoints is not None and len(kps) > self.p.max_keypoints:
            kps = sorted(kps, key=lambda k: k.response, reverse=True)[: self.p.max_keypoints]

        logger.debug("%s detection with n=%d keypoints in %.1f ms",
                     self.p.detector, len(kps), 1000.0 * (time.perf_counter() - t0))
        return kps

    def _detect_shitomasi(self, gray: np.ndarray) -> list:
        block = self.p.st_block_size
        min_dist = float(block)  # zero overlap between blocks
        max_corners = int(gray.shape[0] * gray.shape[1] / max(1.0, min_dist))
        corners = cv2.goodFeaturesToTrack(
            gray, maxCorners=max_corners, qualityLevel=self.p.st_quality, minDistance=min_dist,
            blockSize=block, useHarrisDetector=False, k=self.p.st_k,
        )
        if corners is None:
            return []
        return [cv2.KeyPoint(float(c[0][0]), float(c[0][1]), float(block)) for c in corners]

    def _detect_harris(self, gray: np.ndarray) -> list:
        resp = cv2.cornerHarris(gray, self.p.harris_block_size, self.p.harris_aperture, self.p.harris_k)
        resp = cv2.normalize(resp, None, 0, 255, cv2.NORM_MINMAX, cv2.CV_32FC1)

        # non-maximum suppression over the keypoint footprint
        size = 2 * self.p.harris_aperture
        local_max = cv2.dilate(resp, np.ones((size + 1, size + 1), np.uint8))
        ys, xs = np.nonzero((resp > self.p.harris_min_response) & (resp >= local_max))
        return [
            cv2.KeyPoint(float(x), float(y), float(size), -1, float(resp[y, x]))
            for y, x in zip(ys, xs)
        ]

    # ---------- description ----------

    def describe(self, image: np.ndarray, keypoints: list) -> Tuple[list, np.ndarray]:
        gray = _to_gray(image)
        t0 = time.perf_counter()
        kps, desc = self._extractor.compute(gray, keypoints)
        logger.debug("%s descriptor extraction in %.1f ms",
                     self.p.descriptor, 1000.0 * (time.perf_counter() - t0))
        return list(kps), desc

    def extract(self, image: np.ndarray) -> Tuple[List[Keypoint], Optional[np.ndarray]]:
        kps, desc = self.describe(image, self.detect(image))
        return [Keypoint.from_cv(k) for k in kps], desc
