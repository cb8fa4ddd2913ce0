"""
Two-view reconstruction over several image pairs.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from twoview_sfm.config import TwoViewConfig
from twoview_sfm.errors import ReconstructionError
from twoview_sfm.sfm.data_structures import PointCloud
from twoview_sfm.sfm.image import Image
from twoview_sfm.sfm.two_view import TwoViewResult, reconstruct_two_view

logger = logging.getLogger(__name__)

ImagePair = Tuple[Image, Image]


@dataclass
class MultiPairResult:
    """
    Per-pair results of a multi-pair run.

    Each pair's points are expressed in the camera frame of that pair's first
    image with a unit-length baseline. ``point_cloud`` concatenates them in
    pair order.
    """

    results: Dict[int, TwoViewResult] = field(default_factory=dict)
    failures: Dict[int, ReconstructionError] = field(default_factory=dict)
    point_cloud: PointCloud = field(default_factory=PointCloud)

    @property
    def num_succeeded(self) -> int:
        return len(self.results)


def make_pairs(images: Sequence[Image], pairing: str = "consecutive") -> List[ImagePair]:
    """
    Build image pairs from an ordered image list.

    Args:
        images: Images in capture order.
        pairing: "consecutive" pairs (i, i+1); "reference" pairs (0, i) so
            every cloud shares the first image's camera frame.
    """
    if pairing == "consecutive":
        return [(images[i], images[i + 1]) for i in range(len(images) - 1)]
    if pairing == "reference":
        return [(images[0], images[i]) for i in range(1, len(images))]
    raise ValueError(f"Unknown pairing {pairing!r}; expected 'consecutive' or 'reference'")


def _run_pair(
    index: int,
    pair: ImagePair,
    config: TwoViewConfig,
) -> Tuple[int, Optional[TwoViewResult], Optional[ReconstructionError]]:
    image1, image2 = pair
    try:
        return index, reconstruct_two_view(image1, image2, config), None
    except ReconstructionError as e:
        logger.warning("Skipping pair %d (%s / %s): %s: %s", index, image1, image2, type(e).__name__, e)
        return index, None, e


def reconstruct_pairs(
    pairs: Sequence[ImagePair],
    config: Optional[TwoViewConfig] = None,
    max_workers: int = 1,
) -> MultiPairResult:
    """
    Run the two-view pipeline on every pair and merge the surviving clouds.

    A pair failing with a ReconstructionError is recorded in ``failures`` and
    does not affect the others. Images shared between pairs compute their
    features once.

    Args:
        pairs: Image pairs to reconstruct.
        config: Pipeline settings shared by all pairs.
        max_workers: Number of pairs processed concurrently.
    """
    config = config or TwoViewConfig()
    result = MultiPairResult()

    if max_workers > 1 and len(pairs) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            outcomes = list(executor.map(lambda item: _run_pair(item[0], item[1], config), enumerate(pairs)))
    else:
        outcomes = [_run_pair(i, pair, config) for i, pair in enumerate(pairs)]

    for index, two_view, error in outcomes:
        if error is not None:
            result.failures[index] = error
            continue
        result.results[index] = two_view
        result.point_cloud.merge(two_view.pose.point_cloud)

    logger.info(
        "Reconstructed %d of %d pairs, %d points in total",
        result.num_succeeded,
        len(pairs),
        len(result.point_cloud),
    )
    return result


__all__ = ["MultiPairResult", "make_pairs", "reconstruct_pairs"]
