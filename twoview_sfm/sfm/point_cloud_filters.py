"""
Point cloud clean-up filters.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import open3d as o3d

from twoview_sfm.config import OUTLIER_NEIGHBOURS, OUTLIER_STD_RATIO
from twoview_sfm.sfm.data_structures import PointCloud

logger = logging.getLogger(__name__)


def to_open3d(xyz: np.ndarray, colors: Optional[np.ndarray] = None) -> o3d.geometry.PointCloud:
    """Wrap (N, 3) points and optional uint8 or [0, 1] colours in an Open3D cloud."""
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(xyz, dtype=np.float64).reshape(-1, 3))
    if colors is not None:
        colors = np.asarray(colors, dtype=np.float64)
        pcd.colors = o3d.utility.Vector3dVector(colors / 255.0 if colors.max(initial=0.0) > 1 else colors)
    return pcd


def remove_statistical_outliers(
    cloud: PointCloud,
    k: int = OUTLIER_NEIGHBOURS,
    std_ratio: float = OUTLIER_STD_RATIO,
) -> PointCloud:
    """
    Drop points whose mean distance to their ``k`` nearest neighbours is unusual.

    A point is kept if its mean neighbour distance is within the global mean
    plus ``std_ratio`` standard deviations (Open3D's statistical outlier
    removal). Clouds with at most ``k`` points are returned unchanged.

    Args:
        cloud: Input point cloud (not modified).
        k: Number of neighbours per point.
        std_ratio: Allowed deviation in standard deviations.

    Returns:
        New PointCloud with the surviving points in their original order.
    """
    n = len(cloud)
    if n <= k:
        return PointCloud(cloud)

    _, kept = to_open3d(cloud.xyz).remove_statistical_outlier(nb_neighbors=k, std_ratio=std_ratio)
    kept = sorted(kept)

    logger.info("Statistical outlier removal: kept %d of %d points", len(kept), n)
    return PointCloud(cloud[i] for i in kept)


def filter_by_reprojection_error(cloud: PointCloud, max_error: float) -> PointCloud:
    """Keep points whose reprojection error is at most ``max_error`` pixels."""
    return PointCloud(p for p in cloud if p.reprojection_error <= max_error)


def cloud_extent(cloud: PointCloud) -> np.ndarray:
    """Axis-aligned bounding box size (3,) of the cloud."""
    if len(cloud) == 0:
        return np.zeros(3)
    xyz = cloud.xyz
    return xyz.max(axis=0) - xyz.min(axis=0)


__all__ = [
    "to_open3d",
    "remove_statistical_outliers",
    "filter_by_reprojection_error",
    "cloud_extent",
]
