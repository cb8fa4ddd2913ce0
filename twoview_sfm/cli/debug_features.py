"""
Small debugging tool to inspect keypoint detection and matching between two images.

Usage:

    twoview-sfm-debug left.jpg right.jpg --output debug_matches.png

This will:
  - Detect keypoints/descriptors in both images
  - Match them with the ratio test
  - Estimate F with RANSAC and count inliers
  - Save an image with inlier matches drawn to the output path
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from twoview_sfm.config import MATCH_RATIO, RANSAC_CONFIDENCE
from twoview_sfm.features.keypoints import detect_keypoints
from twoview_sfm.features.matching import filter_matches_ratio_test, match_keypoints
from twoview_sfm.geometry.fundamental import fundamental_matrix_ransac, snavely_threshold
from twoview_sfm.io.calib_io import guess_intrinsics
from twoview_sfm.io.image_io import read_image
from twoview_sfm.sfm.data_structures import MatchedPair
from twoview_sfm.utils.logging_utils import setup_logger
from twoview_sfm.viz.matches import draw_matches


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Debug keypoint detection and matching between two images."
    )
    parser.add_argument("image1", type=str, help="First image")
    parser.add_argument("image2", type=str, help="Second image")
    parser.add_argument(
        "--detector",
        type=str,
        default="SIFT",
        choices=["SIFT", "ORB", "AKAZE", "BRISK"],
        help="Detector with its own descriptor (default: SIFT)",
    )
    parser.add_argument(
        "--ratio",
        type=float,
        default=MATCH_RATIO,
        help="Lowe ratio threshold (default: 0.8)",
    )
    parser.add_argument(
        "--width",
        type=int,
        default=None,
        help="Rescale images to this width first",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="debug_matches.png",
        help="Path to output image with drawn matches (default: debug_matches.png).",
    )

    args = parser.parse_args(argv)
    logger = setup_logger("twoview_sfm")

    img1, _ = read_image(args.image1, width=args.width)
    img2, _ = read_image(args.image2, width=args.width)

    # Detect keypoints
    kp1, desc1 = detect_keypoints(img1, args.detector)
    kp2, desc2 = detect_keypoints(img2, args.detector)
    logger.info("Detected %d keypoints in %s, %d in %s", len(kp1), args.image1, len(kp2), args.image2)

    if len(kp1) == 0 or len(kp2) == 0:
        logger.error("No features in one of the images; aborting.")
        return 1

    # Match descriptors
    candidates = match_keypoints(desc1, desc2)
    good = filter_matches_ratio_test(candidates, ratio=args.ratio)
    logger.info("Matching stats: %d candidates, %d after ratio test", len(candidates), len(good))

    if len(good) < 8:
        logger.error("Too few good matches (<8); cannot estimate F robustly.")
        return 1

    h, w = img1.shape[:2]
    pair = MatchedPair(
        keypoints1=tuple(kp1),
        keypoints2=tuple(kp2),
        correspondences=tuple(good),
        K1=guess_intrinsics(w, h),
        K2=guess_intrinsics(img2.shape[1], img2.shape[0]),
    )

    # Estimate F with RANSAC to see how many inliers we have
    pts1 = pair.points1()
    threshold = snavely_threshold(pts1)
    _, inlier_mask = fundamental_matrix_ransac(pts1, pair.points2(), threshold, RANSAC_CONFIDENCE)
    logger.info("F RANSAC inliers: %d (threshold %.2f px)", int(np.sum(inlier_mask)), threshold)

    # Keep only inlier matches for drawing
    inliers = pair.with_correspondences([c for c, keep in zip(good, inlier_mask) if keep])

    out_path = Path(args.output)
    cv2.imwrite(str(out_path), draw_matches(img1, img2, inliers))
    logger.info("Wrote inlier match visualization to %s", out_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
