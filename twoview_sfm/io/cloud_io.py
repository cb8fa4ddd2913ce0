"""
Point cloud I/O: colour sampling, .npz archives and PLY files.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import open3d as o3d

from twoview_sfm.sfm.data_structures import CameraPose, PointCloud, keypoints_to_array
from twoview_sfm.sfm.point_cloud_filters import to_open3d


def sample_colors(cloud: PointCloud, image: np.ndarray) -> np.ndarray:
    """
    Sample an RGB colour per point at its originating keypoint.

    Args:
        cloud: Point cloud whose keypoints lie in ``image``.
        image: (H, W, 3) or (H, W) uint8 image.

    Returns:
        (N, 3) uint8 colours; grey for keypoints outside the image.
    """
    colors = np.full((len(cloud), 3), 128, dtype=np.uint8)
    h, w = image.shape[:2]
    for i, point in enumerate(cloud):
        u, v = int(point.keypoint.x), int(point.keypoint.y)
        if 0 <= v < h and 0 <= u < w:
            colors[i] = image[v, u]
    return colors


def save_point_cloud_npz(
    output_path: str,
    cloud: PointCloud,
    pose: Optional[CameraPose] = None,
    K: Optional[np.ndarray] = None,
    colors: Optional[np.ndarray] = None,
) -> None:
    """
    Serialize a point cloud and optionally the pose and intrinsics it came from.

    Args:
        output_path: Path where the data will be saved (.npz file).
        cloud: Point cloud to save.
        pose: Second camera pose (3x4 matrix stored as ``pose``).
        K: Intrinsic matrix of the reference image.
        colors: Optional (N, 3) uint8 colours.
    """
    keypoint_uv = keypoints_to_array([point.keypoint for point in cloud])
    keypoint_indices = np.array([point.keypoint_idx for point in cloud], dtype=int)

    arrays = dict(
        points_xyz=cloud.xyz,
        reprojection_errors=cloud.reprojection_errors,
        keypoint_uv=keypoint_uv,
        keypoint_indices=keypoint_indices,
    )
    if colors is not None:
        arrays["points_colors"] = colors
    if pose is not None:
        arrays["pose"] = pose.matrix
    if K is not None:
        arrays["K"] = K

    np.savez(output_path, **arrays)


def write_point_cloud_ply(
    output_path: str,
    cloud: PointCloud,
    colors: Optional[np.ndarray] = None,
) -> None:
    """
    Write the point cloud as an ASCII PLY file through Open3D.

    Args:
        output_path: Destination .ply path.
        cloud: Point cloud to write.
        colors: Optional (N, 3) uint8 colours, one row per point.

    Raises:
        OSError: If Open3D could not write the file.
    """
    xyz = cloud.xyz
    if colors is not None and len(colors) != len(xyz):
        raise ValueError(f"{len(colors)} colours for {len(xyz)} points")

    if not o3d.io.write_point_cloud(str(output_path), to_open3d(xyz, colors), write_ascii=True):
        raise OSError(f"Could not write point cloud to {output_path}")


__all__ = [
    "sample_colors",
    "save_point_cloud_npz",
    "write_point_cloud_ply",
]
