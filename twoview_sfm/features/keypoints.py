"""
Keypoint detection and descriptor extraction.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Sequence, Tuple

import cv2
import numpy as np

from twoview_sfm.errors import FeatureExtractionError
from twoview_sfm.sfm.data_structures import Keypoint

logger = logging.getLogger(__name__)

# Detectors that can also compute descriptors for their own keypoints.
_DETECTOR_FACTORIES = {
    "SIFT": lambda: cv2.SIFT_create(),
    "ORB": lambda: cv2.ORB_create(nfeatures=5000),
    "AKAZE": lambda: cv2.AKAZE_create(),
    "BRISK": lambda: cv2.BRISK_create(),
    "FAST": lambda: cv2.FastFeatureDetector_create(),
    "GFTT": lambda: cv2.GFTTDetector_create(),
}

# Detector types without a descriptor of their own fall back to ORB descriptors.
_DESCRIPTOR_FALLBACK = {
    "FAST": "ORB",
    "GFTT": "ORB",
}


class FeatureExtractor(Protocol):
    """Anything that can detect keypoints and describe them for an image array."""

    def detect(self, image: np.ndarray, detector_type: str) -> Sequence[Keypoint]:
        ...

    def describe(
        self,
        image: np.ndarray,
        keypoints: Sequence[Keypoint],
        detector_type: str,
    ) -> Tuple[Sequence[Keypoint], np.ndarray]:
        ...


def _to_gray(image: np.ndarray) -> np.ndarray:
    # Convert to grayscale if needed
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def to_cv_keypoints(keypoints: Sequence[Keypoint]) -> List[cv2.KeyPoint]:
    return [
        cv2.KeyPoint(kp.x, kp.y, kp.size, kp.angle, kp.response, kp.octave, kp.class_id)
        for kp in keypoints
    ]


def _create(detector_type: str):
    try:
        return _DETECTOR_FACTORIES[detector_type.upper()]()
    except KeyError:
        raise ValueError(
            f"Unknown detector type {detector_type!r}; "
            f"expected one of {sorted(_DETECTOR_FACTORIES)}"
        ) from None


class OpenCVFeatureExtractor:
    """Feature extractor backed by the OpenCV detectors in ``_DETECTOR_FACTORIES``."""

    def detect(self, image: np.ndarray, detector_type: str) -> List[Keypoint]:
        """
        Detect keypoints in an image.

        Args:
            image: Input image (H, W, 3) or (H, W), dtype=uint8.
            detector_type: One of SIFT, ORB, AKAZE, BRISK, FAST, GFTT.

        Returns:
            List of Keypoint objects.
        """
        detector = _create(detector_type)
        try:
            cv_keypoints = detector.detect(_to_gray(image), None)
        except cv2.error as e:
            raise FeatureExtractionError(f"{detector_type} detection failed: {e}") from e
        logger.debug("%s detected %d keypoints", detector_type, len(cv_keypoints))
        return [Keypoint.from_cv(kp) for kp in cv_keypoints]

    def describe(
        self,
        image: np.ndarray,
        keypoints: Sequence[Keypoint],
        detector_type: str,
    ) -> Tuple[List[Keypoint], np.ndarray]:
        """
        Compute descriptors for previously detected keypoints.

        The descriptor backend may drop keypoints it cannot describe (ORB and
        BRISK discard those too close to the border) and may update the ones
        it keeps, so the described keypoints are returned alongside the
        descriptors.

        Returns:
            Tuple of (keypoints, descriptors) where descriptors is (N, D) with
            rows aligned to the returned keypoints, dtype=float32 (SIFT,
            AKAZE-float) or uint8 (binary descriptors).

        Raises:
            FeatureExtractionError: If OpenCV rejects the keypoints.
        """
        extractor_type = _DESCRIPTOR_FALLBACK.get(detector_type.upper(), detector_type)
        extractor = _create(extractor_type)

        if not keypoints:
            return [], np.zeros((0, extractor.descriptorSize()), dtype=np.float32)

        try:
            computed, descriptors = extractor.compute(_to_gray(image), to_cv_keypoints(keypoints))
        except cv2.error as e:
            raise FeatureExtractionError(f"{extractor_type} description failed: {e}") from e

        if descriptors is None:
            descriptors = np.array([]).reshape(0, extractor.descriptorSize())
        if len(computed) != len(keypoints):
            logger.debug(
                "%s described %d of %d keypoints", extractor_type, len(computed), len(keypoints)
            )
        return [Keypoint.from_cv(kp) for kp in computed], descriptors


def detect_keypoints(
    image: np.ndarray,
    detector_type: str = "SIFT",
) -> tuple[List[Keypoint], np.ndarray]:
    """
    Detect keypoints and compute descriptors in an image in one pass.

    Args:
        image: Input image (H, W, 3) or (H, W), dtype=uint8.
        detector_type: Detector that also computes descriptors (SIFT, ORB, AKAZE, BRISK).

    Returns:
        Tuple of (keypoints, descriptors) where:
        - keypoints: List of Keypoint objects.
        - descriptors: Array of descriptors (N, D), row-aligned with keypoints.
    """
    detector = _create(detector_type)
    cv_keypoints, descriptors = detector.detectAndCompute(_to_gray(image), None)

    if descriptors is None:
        descriptors = np.array([]).reshape(0, detector.descriptorSize())

    return [Keypoint.from_cv(kp) for kp in cv_keypoints], descriptors


__all__ = ["FeatureExtractor", "OpenCVFeatureExtractor", "detect_keypoints", "to_cv_keypoints"]
