"""
Image container with intrinsics and a per-detector feature cache.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from twoview_sfm.features.cache import FeatureCache, FeatureSet
from twoview_sfm.features.keypoints import FeatureExtractor, OpenCVFeatureExtractor
from twoview_sfm.io.calib_io import guess_intrinsics


class Image:
    """
    A single view: pixel data, optional source filename and its intrinsics.

    Features are computed lazily through ``extractor`` and cached per
    detector type, so several image pairs sharing this view (possibly from
    different threads) detect and describe it only once.
    """

    def __init__(
        self,
        mat: np.ndarray,
        K: Optional[np.ndarray] = None,
        filename: Optional[str] = None,
        extractor: Optional[FeatureExtractor] = None,
    ) -> None:
        self.mat = mat
        self.filename = filename
        self.extractor: FeatureExtractor = extractor or OpenCVFeatureExtractor()
        if K is None:
            height, width = mat.shape[:2]
            K = guess_intrinsics(width, height)
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Intrinsics must be 3x3, got shape {K.shape}")
        self._K = K
        self._features = FeatureCache(self._compute_features)

    @property
    def intrinsics(self) -> np.ndarray:
        """Intrinsic camera matrix (3x3)."""
        return self._K

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height) in pixels."""
        height, width = self.mat.shape[:2]
        return width, height

    def features(self, detector_type: str) -> FeatureSet:
        return self._features.get_or_compute(detector_type)

    def _compute_features(self, detector_type: str) -> FeatureSet:
        detected = self.extractor.detect(self.mat, detector_type)
        # Only the keypoints that were described are kept, so descriptor rows
        # and keypoint indices agree for matching.
        keypoints, descriptors = self.extractor.describe(self.mat, detected, detector_type)
        return FeatureSet(keypoints=tuple(keypoints), descriptors=descriptors)

    def __repr__(self) -> str:
        width, height = self.size
        name = self.filename or "<array>"
        return f"Image({name}, {width}x{height})"


__all__ = ["Image"]
