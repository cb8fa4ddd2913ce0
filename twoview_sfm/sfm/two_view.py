"""
Two-view reconstruction: matching, epipolar geometry, pose selection and triangulation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from twoview_sfm.config import TwoViewConfig
from twoview_sfm.features.matching import match_descriptors
from twoview_sfm.geometry.epipolar import EpipolarGeometry, estimate_epipolar_geometry
from twoview_sfm.geometry.pose import find_best_camera_pose
from twoview_sfm.sfm.data_structures import CameraPose, MatchedPair
from twoview_sfm.sfm.image import Image

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class TwoViewResult:
    """Selected pose of image 2 relative to image 1 and the geometry it came from."""

    pose: CameraPose
    geometry: EpipolarGeometry
    # All ratio-test matches, before epipolar pruning.
    matches: MatchedPair

    @property
    def inliers(self) -> MatchedPair:
        return self.geometry.pair


def match_images(
    image1: Image,
    image2: Image,
    config: Optional[TwoViewConfig] = None,
) -> MatchedPair:
    """
    Match the cached features of two images.

    Raises:
        InsufficientMatches: If no correspondence survives the ratio test.
    """
    config = config or TwoViewConfig()
    features1 = image1.features(config.detector_type)
    features2 = image2.features(config.detector_type)
    logger.info(
        "%s: %d keypoints, %s: %d keypoints",
        image1,
        len(features1.keypoints),
        image2,
        len(features2.keypoints),
    )

    correspondences = match_descriptors(
        features1.descriptors,
        features2.descriptors,
        mode=config.match_mode,
        norm_type=config.norm_type,
        ratio=config.ratio,
        radius=config.radius,
        use_flann=config.use_flann,
    )
    return MatchedPair(
        keypoints1=features1.keypoints,
        keypoints2=features2.keypoints,
        correspondences=correspondences,
        K1=image1.intrinsics,
        K2=image2.intrinsics,
    )


def reconstruct_two_view(
    image1: Image,
    image2: Image,
    config: Optional[TwoViewConfig] = None,
) -> TwoViewResult:
    """
    Run the full two-view pipeline for one image pair.

    Raises:
        InsufficientMatches: No correspondences after matching.
        InsufficientGeometry: Fewer than the minimum correspondences for F.
        NoValidPose: No pose candidate gave a usable reconstruction.
    """
    config = config or TwoViewConfig()

    matches = match_images(image1, image2, config)
    geometry = estimate_epipolar_geometry(matches, config)
    pose = find_best_camera_pose(geometry.E, geometry.pair, config)

    logger.info(
        "Two-view reconstruction %s / %s: %d matches, %d inliers, %d points",
        image1,
        image2,
        len(matches),
        geometry.num_inliers,
        len(pose.point_cloud),
    )
    return TwoViewResult(pose=pose, geometry=geometry, matches=matches)


def estimate_pose(
    image1: Image,
    image2: Image,
    config: Optional[TwoViewConfig] = None,
) -> CameraPose:
    """
    Estimate the pose of image 2 relative to image 1.

    The returned pose carries its triangulated point cloud and mean
    reprojection error; image 1 is the identity pose.
    """
    return reconstruct_two_view(image1, image2, config).pose


__all__ = ["TwoViewResult", "match_images", "reconstruct_two_view", "estimate_pose"]
