"""
Relative pose selection among the four essential-matrix candidates.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from typing import Optional, Sequence, Tuple

import numpy as np

from twoview_sfm.config import TwoViewConfig
from twoview_sfm.errors import NoValidPose
from twoview_sfm.geometry.essential import check_essential_matrix, decompose_essential_matrix
from twoview_sfm.geometry.triangulation import triangulate
from twoview_sfm.sfm.data_structures import CameraPose, MatchedPair

logger = logging.getLogger(__name__)


def candidate_score(pose: CameraPose) -> Tuple[float, float, int]:
    """
    Sort key of a triangulated candidate; larger is better.

    In-front fraction first, then lower mean reprojection error, then lower
    candidate index so that equal scores resolve deterministically.
    """
    if not pose.is_triangulated:
        raise ValueError(f"Candidate {pose.index} has not been triangulated")
    error = float(pose.reprojection_error)
    if not np.isfinite(error):
        error = np.inf
    return (pose.fraction_in_front(), -error, -pose.index)


def better_pose(a: CameraPose, b: CameraPose) -> CameraPose:
    """Associative and commutative choice between two triangulated candidates."""
    return a if candidate_score(a) >= candidate_score(b) else b


def evaluate_candidate(
    pose: CameraPose,
    pair: MatchedPair,
    config: TwoViewConfig,
    reference: Optional[CameraPose] = None,
) -> CameraPose:
    """Triangulate ``pair`` against ``pose`` and store the cloud and error on it."""
    reference = reference or CameraPose.identity()
    pose.point_cloud, pose.reprojection_error = triangulate(reference, pose, pair, config)
    logger.debug(
        "Candidate %d: %d points, %.1f%% in front, mean error %.6f px",
        pose.index,
        len(pose.point_cloud),
        100.0 * pose.fraction_in_front(),
        pose.reprojection_error,
    )
    return pose


def select_best_pose(
    candidates: Sequence[CameraPose],
    pair: MatchedPair,
    config: Optional[TwoViewConfig] = None,
    parallel: bool = True,
) -> CameraPose:
    """
    Pick the physically valid pose among ``candidates``.

    Candidates whose rotation is not coherent are skipped without being
    triangulated. Every other candidate is triangulated in full and the
    winner is the maximum of ``candidate_score``.

    Raises:
        NoValidPose: If no candidate is coherent or the winner has no points.
    """
    config = config or TwoViewConfig()

    coherent = []
    for c in candidates:
        if c.rotation_is_coherent(config.rotation_tolerance):
            coherent.append(c)
        else:
            logger.debug(
                "Candidate %d skipped: det(R) = %.6f", c.index, float(np.linalg.det(c.rotation))
            )
    if not coherent:
        raise NoValidPose("No pose candidate has a coherent rotation")

    if parallel and len(coherent) > 1 and config.max_workers != 1:
        with ThreadPoolExecutor(max_workers=len(coherent)) as executor:
            evaluated = list(executor.map(lambda c: evaluate_candidate(c, pair, config), coherent))
    else:
        evaluated = [evaluate_candidate(c, pair, config) for c in coherent]

    best = reduce(better_pose, evaluated)

    if len(best.point_cloud) == 0:
        raise NoValidPose(f"Best pose candidate {best.index} triangulated no points")

    logger.info(
        "Selected pose candidate %d of %d coherent: %.1f%% points in front, mean error %.6f px",
        best.index,
        len(coherent),
        100.0 * best.fraction_in_front(),
        best.reprojection_error,
    )
    return best


def find_best_camera_pose(
    E: np.ndarray,
    pair: MatchedPair,
    config: Optional[TwoViewConfig] = None,
) -> CameraPose:
    """
    Decompose E and return the winning candidate with its point cloud.

    An ill-conditioned E only triggers a warning; the selection still runs.
    """
    config = config or TwoViewConfig()
    check_essential_matrix(E, config.singular_value_ratio_min)
    candidates = decompose_essential_matrix(E)
    return select_best_pose(candidates, pair, config)


__all__ = [
    "candidate_score",
    "better_pose",
    "evaluate_candidate",
    "select_best_pose",
    "find_best_camera_pose",
]
