"""
3D point triangulation from two camera views.

Points are triangulated with the iterative linear least-squares method of
Hartley and Sturm: the two-view linear system is solved, each camera's
equations are re-weighted by the projective depth of the current estimate
and the system is solved again until the weights settle.
"""

from __future__ import annotations

import logging
import math
import os
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from twoview_sfm.config import TRIANGULATION_EPSILON, TRIANGULATION_MAX_ITERATIONS, TwoViewConfig
from twoview_sfm.errors import TriangulationDivergence
from twoview_sfm.sfm.data_structures import CameraPose, CloudPoint, Correspondence, MatchedPair, PointCloud

logger = logging.getLogger(__name__)

# Smallest magnitude a perspective weight may take before it is divided by.
_MIN_WEIGHT = 1e-12

# Below this many correspondences per worker, threads cost more than they save.
_MIN_CHUNK = 64


def linear_triangulate(
    x1: np.ndarray,
    P1: np.ndarray,
    x2: np.ndarray,
    P2: np.ndarray,
    weight1: float = 1.0,
    weight2: float = 1.0,
) -> np.ndarray:
    """
    Solve the weighted two-view linear system for one point.

    Args:
        x1: Normalized homogeneous point (3,) in the first camera.
        P1: First camera matrix (3x4), normalized coordinates.
        x2: Normalized homogeneous point (3,) in the second camera.
        P2: Second camera matrix (3x4), normalized coordinates.
        weight1, weight2: Perspective weights dividing each camera's rows.

    Returns:
        Homogeneous 3D point (4,) with last coordinate 1.
    """
    u1, v1 = x1[0] / x1[2], x1[1] / x1[2]
    u2, v2 = x2[0] / x2[2], x2[1] / x2[2]

    rows = np.array(
        [
            (u1 * P1[2] - P1[0]) / weight1,
            (v1 * P1[2] - P1[1]) / weight1,
            (u2 * P2[2] - P2[0]) / weight2,
            (v2 * P2[2] - P2[1]) / weight2,
        ]
    )
    A = rows[:, :3]
    B = -rows[:, 3]

    X, *_ = np.linalg.lstsq(A, B, rcond=None)
    return np.append(X, 1.0)


def _safe_weight(weight: float) -> float:
    if abs(weight) < _MIN_WEIGHT:
        return math.copysign(_MIN_WEIGHT, weight)
    return weight


def refine(
    x1: np.ndarray,
    P1: np.ndarray,
    x2: np.ndarray,
    P2: np.ndarray,
    X: np.ndarray,
) -> Tuple[np.ndarray, Tuple[float, float]]:
    """
    One re-weighting step.

    The new weights are the projective depths ``P[2] @ X`` of the current
    estimate in both cameras; the point is then re-solved with them.

    Returns:
        Tuple of (new_X, (weight1, weight2)).
    """
    weights = (_safe_weight(float(P1[2] @ X)), _safe_weight(float(P2[2] @ X)))
    return linear_triangulate(x1, P1, x2, P2, *weights), weights


def triangulate_one_point(
    x1: np.ndarray,
    P1: np.ndarray,
    x2: np.ndarray,
    P2: np.ndarray,
    epsilon: float = TRIANGULATION_EPSILON,
    max_iterations: int = TRIANGULATION_MAX_ITERATIONS,
) -> Tuple[np.ndarray, bool]:
    """
    Iteratively triangulate one correspondence.

    Starts from the unweighted solution and applies ``refine`` until both
    weights change by at most ``epsilon`` or ``max_iterations`` is reached.

    Returns:
        Tuple of (X, converged) where X is the homogeneous point (4,).
    """
    weights = (1.0, 1.0)
    X = linear_triangulate(x1, P1, x2, P2)

    for _ in range(max_iterations):
        X_new, new_weights = refine(x1, P1, x2, P2, X)
        if abs(new_weights[0] - weights[0]) <= epsilon and abs(new_weights[1] - weights[1]) <= epsilon:
            return X, True
        X, weights = X_new, new_weights

    return X, max_iterations == 0


def _triangulate_chunk(
    correspondences: Sequence[Correspondence],
    pair: MatchedPair,
    P1: np.ndarray,
    P2: np.ndarray,
    K1_inv: np.ndarray,
    K2_inv: np.ndarray,
    KP1: np.ndarray,
    epsilon: float,
    max_iterations: int,
) -> Tuple[List[CloudPoint], int]:
    # Private buffer per worker; merged by the caller.
    points: List[CloudPoint] = []
    diverged = 0

    for c in correspondences:
        keypoint1 = pair.keypoints1[c.query_idx]
        keypoint2 = pair.keypoints2[c.train_idx]

        # Un-project both keypoints into normalized camera rays.
        x1 = K1_inv @ np.array([keypoint1.x, keypoint1.y, 1.0])
        x2 = K2_inv @ np.array([keypoint2.x, keypoint2.y, 1.0])

        X, converged = triangulate_one_point(x1, P1, x2, P2, epsilon, max_iterations)
        if not converged:
            diverged += 1

        # Reproject X into the reference image.
        X_reproj = KP1 @ X
        reproj = X_reproj[:2] / X_reproj[2]
        error = float(np.linalg.norm(reproj - keypoint1.pt))

        points.append(
            CloudPoint(
                xyz=X[:3].copy(),
                keypoint=keypoint1,
                keypoint_idx=c.query_idx,
                reprojection_error=error,
            )
        )

    return points, diverged


def _chunks(items: Sequence, workers: int) -> List[Sequence]:
    size = max(_MIN_CHUNK, math.ceil(len(items) / (workers * 4)))
    return [items[i : i + size] for i in range(0, len(items), size)]


def triangulate(
    pose_a: CameraPose,
    pose_b: CameraPose,
    pair: MatchedPair,
    config: Optional[TwoViewConfig] = None,
) -> Tuple[PointCloud, float]:
    """
    Triangulate every correspondence of ``pair`` from two camera poses.

    Args:
        pose_a: Reference camera (normally the identity pose) seeing image 1.
        pose_b: Camera seeing image 2.
        pair: Keypoints, correspondences and intrinsics of both images.
        config: Pipeline settings (defaults if None).

    Returns:
        Tuple of (point_cloud, mean_error) where:
        - point_cloud: One CloudPoint per correspondence, in correspondence order.
        - mean_error: Mean pixel distance between the reprojection into image 1
          and the image-1 keypoint (0.0 for an empty pair).
    """
    config = config or TwoViewConfig()
    P1 = np.asarray(pose_a.matrix, dtype=np.float64)
    P2 = np.asarray(pose_b.matrix, dtype=np.float64)
    K1_inv = np.linalg.inv(pair.K1)
    K2_inv = np.linalg.inv(pair.K2)
    KP1 = pair.K1 @ P1

    args = (
        pair,
        P1,
        P2,
        K1_inv,
        K2_inv,
        KP1,
        config.triangulation_epsilon,
        config.triangulation_max_iterations,
    )

    correspondences = pair.correspondences
    workers = config.max_workers or min(32, (os.cpu_count() or 1) + 4)
    chunks = _chunks(correspondences, workers) if correspondences else []

    if workers == 1 or len(chunks) <= 1:
        results = [_triangulate_chunk(chunk, *args) for chunk in chunks]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda chunk: _triangulate_chunk(chunk, *args), chunks))

    point_cloud = PointCloud()
    diverged = 0
    for points, chunk_diverged in results:
        point_cloud.extend(points)
        diverged += chunk_diverged

    if diverged:
        message = (
            f"{diverged} of {len(correspondences)} points did not converge within "
            f"{config.triangulation_max_iterations} iterations"
        )
        logger.debug(message)
        warnings.warn(message, TriangulationDivergence, stacklevel=2)

    mean_error = point_cloud.mean_reprojection_error()
    logger.debug(
        "Triangulated %d points, mean reprojection error %.6f px",
        len(point_cloud),
        mean_error,
    )
    return point_cloud, mean_error


__all__ = ["linear_triangulate", "refine", "triangulate_one_point", "triangulate"]
