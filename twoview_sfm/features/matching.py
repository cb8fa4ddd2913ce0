"""
Descriptor matching with ratio-test and radius filtering.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from twoview_sfm.config import MATCH_RATIO, RADIUS_MATCH_DISTANCE, MatchMode
from twoview_sfm.errors import InsufficientMatches
from twoview_sfm.sfm.data_structures import Correspondence

logger = logging.getLogger(__name__)


def default_norm_type(descriptors: np.ndarray) -> int:
    """NORM_HAMMING for binary (uint8) descriptors, NORM_L2 otherwise."""
    return cv2.NORM_HAMMING if descriptors.dtype == np.uint8 else cv2.NORM_L2


def descriptor_scale(descriptors1: np.ndarray, descriptors2: np.ndarray, norm_type: int) -> float:
    """
    Largest distance unit the descriptors live in, used to scale match radii.

    Binary descriptors measure distance in bits, so the scale is the bit
    length of a row. Float descriptors use the largest row norm of either set
    (about 512 for OpenCV's SIFT).
    """
    if norm_type in (cv2.NORM_HAMMING, cv2.NORM_HAMMING2):
        return 8.0 * descriptors1.shape[1]
    order = 1 if norm_type == cv2.NORM_L1 else 2
    stacked = np.vstack([descriptors1, descriptors2]).astype(np.float64)
    return float(np.linalg.norm(stacked, ord=order, axis=1).max())


def match_keypoints(
    descriptors1: np.ndarray,
    descriptors2: np.ndarray,
    mode: MatchMode = MatchMode.NEAREST_TWO,
    norm_type: Optional[int] = None,
    radius: float = RADIUS_MATCH_DISTANCE,
    use_flann: bool = False,
) -> List[List[cv2.DMatch]]:
    """
    Find nearest-neighbour candidates in image 2 for every descriptor of image 1.

    Args:
        descriptors1: Descriptors from first image (N1, D).
        descriptors2: Descriptors from second image (N2, D).
        mode: NEAREST_TWO returns the two nearest neighbours per query,
              RADIUS returns every neighbour within ``radius``.
        norm_type: OpenCV norm; derived from the descriptor dtype if None.
        radius: Search radius for RADIUS mode, as a fraction of
                ``descriptor_scale``.
        use_flann: Use an approximate FLANN kd-tree instead of brute force
                   (float descriptors and NEAREST_TWO only).

    Returns:
        One list of cv2.DMatch per query descriptor, sorted by distance.
    """
    if len(descriptors1) == 0 or len(descriptors2) == 0:
        return []

    if norm_type is None:
        norm_type = default_norm_type(descriptors1)

    if norm_type in (cv2.NORM_HAMMING, cv2.NORM_HAMMING2):
        descriptors1 = np.ascontiguousarray(descriptors1, dtype=np.uint8)
        descriptors2 = np.ascontiguousarray(descriptors2, dtype=np.uint8)
    else:
        descriptors1 = np.ascontiguousarray(descriptors1, dtype=np.float32)
        descriptors2 = np.ascontiguousarray(descriptors2, dtype=np.float32)

    if use_flann and mode is MatchMode.NEAREST_TWO and norm_type == cv2.NORM_L2:
        # FLANN matcher for SIFT-like (float descriptors)
        FLANN_INDEX_KDTREE = 1
        index_params = dict(algorithm=FLANN_INDEX_KDTREE, trees=5)
        search_params = dict(checks=50)
        matcher = cv2.FlannBasedMatcher(index_params, search_params)
    else:
        matcher = cv2.BFMatcher(norm_type, crossCheck=False)

    if mode is MatchMode.RADIUS:
        max_distance = radius * descriptor_scale(descriptors1, descriptors2, norm_type)
        logger.debug("Radius matching within %.3f", max_distance)
        candidates = matcher.radiusMatch(descriptors1, descriptors2, max_distance)
    else:
        # k-NN matching with k=2 for ratio test
        candidates = matcher.knnMatch(descriptors1, descriptors2, k=2)

    return [sorted(c, key=lambda m: m.distance) for c in candidates]


def filter_matches_ratio_test(
    candidates: Sequence[Sequence[cv2.DMatch]],
    ratio: float = MATCH_RATIO,
    query_index_map: Optional[Sequence[int]] = None,
) -> List[Correspondence]:
    """
    Filter match candidates using Lowe's ratio test.

    A query with a single candidate is accepted as is. With two or more
    candidates the best one is accepted only if its distance is strictly
    below ``ratio`` times the second best. Queries without candidates are
    dropped.

    Args:
        candidates: Per-query candidate lists, sorted by distance.
        ratio: Ratio threshold for Lowe's test (default: 0.8).
        query_index_map: Optional table mapping each query row back to its
            keypoint index, for descriptors computed over a keypoint subset.

    Returns:
        Accepted correspondences in query order.
    """
    good: List[Correspondence] = []

    for match_list in candidates:
        if len(match_list) == 0:
            continue

        m = match_list[0]
        if len(match_list) >= 2:
            n = match_list[1]
            # Lowe's ratio test: keep if distance ratio is below threshold
            if not m.distance < ratio * n.distance:
                continue

        query_idx = m.queryIdx
        if query_index_map is not None:
            query_idx = int(query_index_map[query_idx])

        good.append(Correspondence(query_idx=query_idx, train_idx=m.trainIdx, distance=float(m.distance)))

    return good


def match_descriptors(
    descriptors1: np.ndarray,
    descriptors2: np.ndarray,
    mode: MatchMode = MatchMode.NEAREST_TWO,
    norm_type: Optional[int] = None,
    ratio: float = MATCH_RATIO,
    radius: float = RADIUS_MATCH_DISTANCE,
    query_index_map: Optional[Sequence[int]] = None,
    use_flann: bool = False,
) -> Tuple[Correspondence, ...]:
    """
    Match two descriptor sets into a non-empty correspondence sequence.

    Raises:
        InsufficientMatches: If no correspondence survives the filtering.
    """
    if query_index_map is not None and len(query_index_map) != len(descriptors1):
        raise ValueError(
            f"query_index_map has {len(query_index_map)} entries for {len(descriptors1)} descriptors"
        )

    candidates = match_keypoints(
        descriptors1,
        descriptors2,
        mode=mode,
        norm_type=norm_type,
        radius=radius,
        use_flann=use_flann,
    )
    correspondences = filter_matches_ratio_test(candidates, ratio=ratio, query_index_map=query_index_map)

    logger.info(
        "Matching (%s): %d queries, %d candidates, %d after ratio test",
        mode.value,
        len(descriptors1),
        len(candidates),
        len(correspondences),
    )

    if not correspondences:
        raise InsufficientMatches(
            f"No correspondences between {len(descriptors1)} and {len(descriptors2)} descriptors"
        )
    return tuple(correspondences)


__all__ = [
    "default_norm_type",
    "descriptor_scale",
    "match_keypoints",
    "filter_matches_ratio_test",
    "match_descriptors",
]
