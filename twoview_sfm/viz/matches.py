"""
Drawing of keypoint correspondences between two images.
"""

from __future__ import annotations

from typing import Sequence

import cv2
import numpy as np

from twoview_sfm.features.keypoints import to_cv_keypoints
from twoview_sfm.sfm.data_structures import Correspondence, MatchedPair


def _to_cv_matches(correspondences: Sequence[Correspondence]) -> list[cv2.DMatch]:
    return [cv2.DMatch(c.query_idx, c.train_idx, c.distance) for c in correspondences]


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    # Convert RGB to BGR for OpenCV drawing
    return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)


def draw_matches(
    img1: np.ndarray,
    img2: np.ndarray,
    pair: MatchedPair,
) -> np.ndarray:
    """
    Draw the correspondences of ``pair`` side by side.

    Args:
        img1, img2: RGB (H, W, 3) or greyscale images.
        pair: Keypoints and correspondences (typically inliers).

    Returns:
        BGR image ready for ``cv2.imwrite``.
    """
    vis = cv2.drawMatches(
        _to_bgr(img1),
        to_cv_keypoints(pair.keypoints1),
        _to_bgr(img2),
        to_cv_keypoints(pair.keypoints2),
        _to_cv_matches(pair.correspondences),
        None,
        flags=cv2.DrawMatchesFlags_NOT_DRAW_SINGLE_POINTS,
    )
    return vis


__all__ = ["draw_matches"]
