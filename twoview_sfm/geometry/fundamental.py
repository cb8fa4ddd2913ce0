"""
Fundamental matrix estimation: Hartley-normalized 8-point solve and OpenCV RANSAC.
"""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np

from twoview_sfm.config import RANSAC_CONFIDENCE, SNAVELY_FACTOR

logger = logging.getLogger(__name__)


def normalize_points(pts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Hartley normalization of 2D points.

    Translates the centroid to the origin and scales so that the mean distance
    from the origin is sqrt(2).

    Args:
        pts: Array of points (N, 2).

    Returns:
        Tuple of (normalized_pts, T) with normalized_pts (N, 2) and T the
        3x3 similarity mapping homogeneous ``pts`` onto them.
    """
    pts = np.asarray(pts, dtype=np.float64)
    centroid = pts.mean(axis=0)
    spread = np.linalg.norm(pts - centroid, axis=1).mean()
    s = np.sqrt(2.0) / spread if spread > 0 else 1.0

    T = np.diag([s, s, 1.0])
    T[:2, 2] = -s * centroid
    return (pts - centroid) * s, T


def enforce_rank_two(F: np.ndarray) -> np.ndarray:
    """Closest rank-2 matrix to ``F`` in Frobenius norm."""
    U, S, Vt = np.linalg.svd(F)
    return (U * np.array([S[0], S[1], 0.0])) @ Vt


def estimate_fundamental_matrix(pts1: np.ndarray, pts2: np.ndarray) -> np.ndarray:
    """
    Least-squares fundamental matrix from all given correspondences.

    Args:
        pts1: Points in first image (N, 2), N >= 8.
        pts2: Points in second image (N, 2).

    Returns:
        Rank-2 F (3x3) with x2^T F x1 = 0, unit Frobenius norm.

    Raises:
        ValueError: If fewer than 8 point correspondences are provided.
    """
    if len(pts1) < 8:
        raise ValueError(f"Need at least 8 point correspondences, got {len(pts1)}")

    n1, T1 = normalize_points(pts1)
    n2, T2 = normalize_points(pts2)

    h1 = np.column_stack([n1, np.ones(len(n1))])
    h2 = np.column_stack([n2, np.ones(len(n2))])
    # Row i is the outer product x2_i x1_i^T flattened, so A @ vec(F) = x2^T F x1.
    A = (h2[:, :, None] * h1[:, None, :]).reshape(len(h1), 9)

    F_norm = enforce_rank_two(np.linalg.svd(A)[2][-1].reshape(3, 3))
    F = T2.T @ F_norm @ T1
    return F / np.linalg.norm(F)


def snavely_threshold(pts: np.ndarray, factor: float = SNAVELY_FACTOR) -> float:
    """
    Epipolar distance threshold scaled to the image resolution.

    Returns ``factor`` times the largest absolute coordinate in ``pts``.
    """
    if len(pts) == 0:
        return 0.0
    return factor * float(np.abs(pts).max())


def epipolar_distances(F: np.ndarray, pts1: np.ndarray, pts2: np.ndarray) -> np.ndarray:
    """
    Point-to-epipolar-line distance of each correspondence, in pixels.

    Returns the larger of the two distances (x2 to F x1 in image 2, x1 to
    F^T x2 in image 1), which is the error OpenCV's RANSAC thresholds.
    """
    h1 = np.column_stack([pts1, np.ones(len(pts1))])
    h2 = np.column_stack([pts2, np.ones(len(pts2))])
    # Row-wise products keep each distance independent of the batch it is in.
    lines2 = np.sum(F[None, :, :] * h1[:, None, :], axis=2)
    lines1 = np.sum(F.T[None, :, :] * h2[:, None, :], axis=2)
    residual = np.abs(np.sum(h2 * lines2, axis=1))
    d2 = residual / np.maximum(np.hypot(lines2[:, 0], lines2[:, 1]), 1e-12)
    d1 = residual / np.maximum(np.hypot(lines1[:, 0], lines1[:, 1]), 1e-12)
    return np.maximum(d1, d2)


def fundamental_matrix_ransac(
    pts1: np.ndarray,
    pts2: np.ndarray,
    reproj_threshold: float = 1.0,
    confidence: float = RANSAC_CONFIDENCE,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Robust F with ``cv2.findFundamentalMat`` (FM_RANSAC).

    Args:
        pts1, pts2: Corresponding points (N, 2).
        reproj_threshold: Maximum point-to-epipolar-line distance in pixels.
        confidence: Desired probability of an outlier-free sample.

    Returns:
        Tuple of (F, inlier_mask). With fewer than 8 points, or when OpenCV
        finds no model, F is the identity and the boolean mask is all False.
    """
    n = len(pts1)
    F = None
    mask = None
    if n >= 8:
        F, mask = cv2.findFundamentalMat(
            np.asarray(pts1, dtype=np.float64),
            np.asarray(pts2, dtype=np.float64),
            cv2.FM_RANSAC,
            reproj_threshold,
            confidence,
        )

    if F is None or F.shape != (3, 3):
        logger.debug("No fundamental matrix found for %d correspondences", n)
        return np.eye(3), np.zeros(n, dtype=bool)

    # OpenCV marks inliers with non-zero uint8 entries.
    return F, mask.ravel() != 0


__all__ = [
    "normalize_points",
    "enforce_rank_two",
    "estimate_fundamental_matrix",
    "snavely_threshold",
    "epipolar_distances",
    "fundamental_matrix_ransac",
]
