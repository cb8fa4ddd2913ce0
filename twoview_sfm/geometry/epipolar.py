"""
Robust epipolar geometry between two views: F with outlier pruning, then E.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from twoview_sfm.config import TwoViewConfig
from twoview_sfm.errors import InsufficientGeometry
from twoview_sfm.geometry.essential import compute_essential_matrix
from twoview_sfm.geometry.fundamental import (
    enforce_rank_two,
    epipolar_distances,
    estimate_fundamental_matrix,
    fundamental_matrix_ransac,
    snavely_threshold,
)
from twoview_sfm.sfm.data_structures import MatchedPair

logger = logging.getLogger(__name__)

# Reclassification rounds before falling back to shrinking the consensus set.
_MAX_CONSENSUS_ITERATIONS = 10


@dataclass(frozen=True)
class EpipolarGeometry:
    """Result of the epipolar estimation step."""

    F: np.ndarray
    E: np.ndarray
    # Same keypoints and intrinsics as the input, inlier correspondences only.
    pair: MatchedPair
    # Epipolar distance bound (px) the inliers satisfy under the refit F.
    threshold: float
    num_input: int

    @property
    def num_inliers(self) -> int:
        return len(self.pair)


def _fit_consensus(
    pts1: np.ndarray,
    pts2: np.ndarray,
    mask: np.ndarray,
    factor: float,
    required: int,
) -> Tuple[np.ndarray, float]:
    if mask.sum() < required:
        raise InsufficientGeometry(int(mask.sum()), required)
    F = estimate_fundamental_matrix(pts1[mask], pts2[mask])
    return F, snavely_threshold(pts1[mask], factor)


def _consensus_set(
    pts1: np.ndarray,
    pts2: np.ndarray,
    mask: np.ndarray,
    factor: float,
    required: int,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Grow or shrink a RANSAC inlier mask until it reproduces itself.

    The returned mask selects exactly the points that its own eight-point F
    keeps within its own Snavely threshold, or, if reclassification keeps
    oscillating, a subset every point of which that F keeps in bound.
    """
    for iteration in range(_MAX_CONSENSUS_ITERATIONS):
        F, threshold = _fit_consensus(pts1, pts2, mask, factor, required)
        reclassified = epipolar_distances(F, pts1, pts2) <= threshold
        if np.array_equal(reclassified, mask):
            logger.debug("Consensus set stable after %d reclassifications", iteration)
            return mask, F, threshold
        mask = reclassified

    logger.debug("Consensus set did not settle, shrinking it")
    while True:
        F, threshold = _fit_consensus(pts1, pts2, mask, factor, required)
        keep = epipolar_distances(F, pts1[mask], pts2[mask]) <= threshold
        if keep.all():
            return mask, F, threshold
        mask = mask.copy()
        mask[np.flatnonzero(mask)[~keep]] = False


def estimate_epipolar_geometry(
    pair: MatchedPair,
    config: Optional[TwoViewConfig] = None,
) -> EpipolarGeometry:
    """
    Estimate F with RANSAC, keep only its inliers and lift F to E.

    The RANSAC inlier threshold is ``config.snavely_factor`` times the largest
    image-1 coordinate among the correspondences. The RANSAC inliers are then
    refit and reclassified until the set is a fixed point: the eight-point F
    of the returned inliers keeps all of them within the threshold computed
    from them. When that already holds for the whole input, RANSAC is skipped
    and every correspondence is kept, so running this again on its own output
    returns the same inliers.

    Args:
        pair: Matched keypoints of both images and their intrinsics.
        config: Pipeline settings (defaults if None).

    Returns:
        EpipolarGeometry whose ``pair`` holds only the inlier correspondences.

    Raises:
        InsufficientGeometry: If fewer than ``config.min_correspondences``
            correspondences are available before or after pruning.
    """
    config = config or TwoViewConfig()
    required = config.min_correspondences

    if len(pair) < required:
        raise InsufficientGeometry(len(pair), required)

    pts1 = pair.points1()
    pts2 = pair.points2()

    threshold = snavely_threshold(pts1, config.snavely_factor)
    F_all = estimate_fundamental_matrix(pts1, pts2)
    if np.all(epipolar_distances(F_all, pts1, pts2) <= threshold):
        logger.info(
            "All %d correspondences lie within %.3f px of their epipolar lines", len(pair), threshold
        )
        F_robust = F_refit = F_all
        inlier_mask = np.ones(len(pair), dtype=bool)
    else:
        F_robust, inlier_mask = fundamental_matrix_ransac(
            pts1, pts2, reproj_threshold=threshold, confidence=config.ransac_confidence
        )
        logger.info(
            "F RANSAC (threshold %.3f px): %d of %d correspondences are inliers",
            threshold,
            int(inlier_mask.sum()),
            len(pair),
        )
        inlier_mask, F_refit, threshold = _consensus_set(
            pts1, pts2, inlier_mask, config.snavely_factor, required
        )

    inliers = [c for c, keep in zip(pair.correspondences, inlier_mask) if keep]
    logger.info("%d of %d correspondences kept as inliers", len(inliers), len(pair))
    inlier_pair = pair.with_correspondences(inliers)

    F = F_refit if config.refit_fundamental else enforce_rank_two(F_robust)

    K2 = pair.K2 if config.symmetric_essential else None
    E = compute_essential_matrix(pair.K1, F, K2)

    return EpipolarGeometry(F=F, E=E, pair=inlier_pair, threshold=threshold, num_input=len(pair))


__all__ = ["EpipolarGeometry", "estimate_epipolar_geometry"]
