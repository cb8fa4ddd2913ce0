"""
Per-view depth maps: keypoints of a point cloud coloured by their depth.
"""

from __future__ import annotations

import cv2
import numpy as np

from twoview_sfm.sfm.data_structures import PointCloud

# OpenCV 8-bit hue of the farthest point; the nearest point gets hue 0 (red).
_FAR_HUE = 120


def normalized_depths(cloud: PointCloud) -> np.ndarray:
    """Depths (z) rescaled to [0, 1] over the cloud; all zeros for a flat cloud."""
    if len(cloud) == 0:
        return np.zeros(0)
    z = cloud.xyz[:, 2]
    span = z.max() - z.min()
    if span <= 0.0:
        return np.zeros(len(z))
    return np.clip((z - z.min()) / span, 0.0, 1.0)


def draw_depth_map(image: np.ndarray, cloud: PointCloud, radius: int = 1) -> np.ndarray:
    """
    Draw every cloud point at its image keypoint, coloured from red (near) to blue (far).

    Args:
        image: RGB (H, W, 3) or greyscale view the cloud's keypoints belong to.
        cloud: Point cloud in that view's camera frame.
        radius: Dot radius in pixels.

    Returns:
        BGR image ready for ``cv2.imwrite``.
    """
    if image.ndim == 2:
        bgr = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
    hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)

    for point, d in zip(cloud, normalized_depths(cloud)):
        center = (int(round(point.keypoint.x)), int(round(point.keypoint.y)))
        cv2.circle(hsv, center, radius, (int(round(_FAR_HUE * d)), 255, 255), cv2.FILLED)

    return cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)


__all__ = ["normalized_depths", "draw_depth_map"]
