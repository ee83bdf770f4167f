'''
Descriptor matching (previous frame -> current frame).
Brute force or FLANN, nearest neighbour or k=2 nearest neighbours with a
distance-ratio test. queryIdx indexes the previous frame, trainIdx the current.
'''

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from ttc_fusion.core.camera.features import BINARY_DESCRIPTORS, DESCRIPTOR_TYPES
from ttc_fusion.types import Correspondence

logger = logging.getLogger("ttc_fusion.features")


@dataclass
class MatcherParams:
    matcher: str = "MAT_BF"        # MAT_BF | MAT_FLANN
    selector: str = "SEL_KNN"      # SEL_NN | SEL_KNN
    descriptor: str = "BRISK"      # decides the norm for MAT_BF
    ratio: float = 0.8             # keep best if best < ratio * second best
    cross_check: bool = False

    def __post_init__(self):
        if self.matcher not in ("MAT_BF", "MAT_FLANN"):
            raise ValueError(f"unknown matcher '{self.matcher}'")
        if self.selector not in ("SEL_NN", "SEL_KNN"):
            raise ValueError(f"unknown selector '{self.selector}'")
        self.descriptor = self.descriptor.upper()
        if self.descriptor not in DESCRIPTOR_TYPES:
            raise ValueError(f"unknown descriptor '{self.descriptor}'")
        if not (0.0 < self.ratio <= 1.0):
            raise ValueError(f"ratio must be in (0, 1], got {self.ratio}")
        if self.cross_check and self.selector == "SEL_KNN":
            raise ValueError("cross_check is only supported with SEL_NN")


class DescriptorMatcher:
    def __init__(self, params: MatcherParams = MatcherParams()):
        self.p = params
        if self.p.matcher == "MAT_BF":
            norm = cv2.NORM_HAMMING if self.p.descriptor in BINARY_DESCRIPTORS else cv2.NORM_L2
            self._matcher = cv2.BFMatcher(norm, crossCheck=self.p.cross_check)
        else:
            self._matcher = cv2.FlannBasedMatcher()

    def match(self, desc_prev: np.ndarray, desc_curr: np.ndarray) -> List[Correspondence]:
        if desc_prev is None or desc_curr is None or len(desc_prev) == 0 or len(desc_curr) == 0:
            return []

        if self.p.matcher == "MAT_FLANN":
            # FLANN's kd-tree index works on float descriptors only
            desc_prev = desc_prev.astype(np.float32)
            desc_curr = desc_curr.astype(np.float32)

        if self.p.selector == "SEL_NN":
            raw = self._matcher.match(desc_prev, desc_curr)
            out = [Correspondence.from_dmatch(m) for m in raw]
        else:
            if len(desc_curr) < 2:
                return []
            knn = self._matcher.knnMatch(desc_prev, desc_curr, k=2)
            out = [
                Correspondence.from_dmatch(pair[0])
                for pair in knn
                if len(pair) == 2 and pair[0].distance < self.p.ratio * pair[1].distance
            ]
            logger.debug("knn ratio test kept %d/%d matches", len(out), len(knn))
        return out
