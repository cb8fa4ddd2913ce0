"""
Command-line interface for the two-view reconstruction pipeline.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from twoview_sfm.config import MatchMode, TwoViewConfig
from twoview_sfm.io.calib_io import load_intrinsics, save_calibration
from twoview_sfm.io.cloud_io import sample_colors, save_point_cloud_npz, write_point_cloud_ply
from twoview_sfm.io.image_io import load_image
from twoview_sfm.sfm.data_structures import PointCloud
from twoview_sfm.sfm.multi_pair import make_pairs, reconstruct_pairs
from twoview_sfm.sfm.point_cloud_filters import (
    cloud_extent,
    filter_by_reprojection_error,
    remove_statistical_outliers,
)
from twoview_sfm.utils.logging_utils import setup_logger
from twoview_sfm.viz.depth_map import draw_depth_map
from twoview_sfm.viz.matches import draw_matches
from twoview_sfm.viz.plotly_viz import plot_two_view_reconstruction


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Two-view Structure-from-Motion: relative pose and sparse point cloud from image pairs"
    )
    parser.add_argument(
        "images",
        nargs="+",
        help="Two or more image files, in capture order",
    )
    parser.add_argument(
        "--intrinsics",
        type=str,
        default=None,
        help=(
            "Camera matrix for all images (.npz calibration or text file with 9 values). "
            "Default: a '.camera' file next to each image, else guessed from the image size"
        ),
    )
    parser.add_argument(
        "--width",
        type=int,
        default=None,
        help="Rescale images to this width before processing (aspect ratio kept)",
    )
    parser.add_argument(
        "--height",
        type=int,
        default=None,
        help="Expected height after rescaling; must match the aspect ratio",
    )
    parser.add_argument(
        "--detector",
        type=str,
        default="SIFT",
        choices=["SIFT", "ORB", "AKAZE", "BRISK", "FAST", "GFTT"],
        help="Feature detector (default: SIFT)",
    )
    parser.add_argument(
        "--match-mode",
        type=str,
        default=MatchMode.NEAREST_TWO.value,
        choices=[m.value for m in MatchMode],
        help="Nearest-neighbour search mode (default: nearest_two)",
    )
    parser.add_argument(
        "--ratio",
        type=float,
        default=None,
        help="Lowe ratio threshold (default: 0.8)",
    )
    parser.add_argument(
        "--radius",
        type=float,
        default=None,
        help="Radius for --match-mode radius, as a fraction of the descriptor scale (default: 0.2)",
    )
    parser.add_argument(
        "--flann",
        action="store_true",
        help="Use approximate FLANN matching for float descriptors",
    )
    parser.add_argument(
        "--pairing",
        type=str,
        default="consecutive",
        choices=["consecutive", "reference"],
        help="Pair images consecutively or all against the first image (default: consecutive)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Threads per triangulation (default: automatic, 1 disables threading)",
    )
    parser.add_argument(
        "--pair-workers",
        type=int,
        default=1,
        help="Image pairs reconstructed concurrently (default: 1)",
    )
    parser.add_argument(
        "--max-error",
        type=float,
        default=None,
        help="Drop points whose reprojection error exceeds this many pixels",
    )
    parser.add_argument(
        "--remove-outliers",
        action="store_true",
        help="Apply statistical outlier removal to each pair's point cloud",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Output directory for point cloud files (default: output)",
    )
    parser.add_argument(
        "--ply",
        action="store_true",
        help="Also write the merged point cloud as ASCII PLY",
    )
    parser.add_argument(
        "--matches",
        action="store_true",
        help="Write an image of the inlier matches for every reconstructed pair",
    )
    parser.add_argument(
        "--depth-maps",
        action="store_true",
        help="Write a depth map of every reconstructed pair over its first image",
    )
    parser.add_argument(
        "--save-intrinsics",
        action="store_true",
        help="Save the intrinsics used for the first image to intrinsics.npz",
    )
    parser.add_argument(
        "--visualize",
        action="store_true",
        help="Generate HTML visualization of the reconstruction",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional log file",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Usage:
        twoview-sfm left.jpg right.jpg --output-dir out/ --ply --visualize

    Returns:
        0 if at least one pair was reconstructed, 1 otherwise.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.images) < 2:
        parser.error("at least two images are required")

    logger = setup_logger("twoview_sfm", level=getattr(logging, args.log_level), log_file=args.log_file)

    config = TwoViewConfig(detector_type=args.detector).with_overrides(
        match_mode=MatchMode(args.match_mode),
        ratio=args.ratio,
        radius=args.radius,
        use_flann=args.flann or None,
        max_workers=args.workers,
    )

    # Create output directory
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    K = load_intrinsics(args.intrinsics) if args.intrinsics else None
    if K is not None and args.width is not None:
        logger.warning("--intrinsics are used as given; they are not rescaled with --width")

    try:
        images = [load_image(path, width=args.width, height=args.height, K=K) for path in args.images]
    except (OSError, ValueError) as e:
        logger.error("Could not load images: %s", e)
        return 1

    if args.save_intrinsics:
        intrinsics_path = output_dir / "intrinsics.npz"
        save_calibration(str(intrinsics_path), images[0].intrinsics)
        logger.info("Intrinsics saved to %s", intrinsics_path)

    pairs = make_pairs(images, args.pairing)
    logger.info("Reconstructing %d image pairs (%s pairing)", len(pairs), args.pairing)

    result = reconstruct_pairs(pairs, config, max_workers=args.pair_workers)

    if result.num_succeeded == 0:
        logger.error("No image pair could be reconstructed")
        return 1

    # Per-pair outputs
    for index, two_view in sorted(result.results.items()):
        image1, image2 = pairs[index]
        logger.info(
            "Pair %d: %d points, mean reprojection error %.4f px, pose\n%s",
            index,
            len(two_view.pose.point_cloud),
            two_view.pose.reprojection_error,
            two_view.pose.matrix,
        )
        if args.matches:
            match_path = output_dir / f"matches_{index:03d}.png"
            cv2.imwrite(str(match_path), draw_matches(image1.mat, image2.mat, two_view.inliers))
            logger.info("Inlier matches written to %s", match_path)
        if args.depth_maps:
            depth_path = output_dir / f"depth_map_{index:03d}.png"
            cv2.imwrite(str(depth_path), draw_depth_map(image1.mat, two_view.pose.point_cloud))
            logger.info("Depth map written to %s", depth_path)

    # Filter each pair in its own frame, then merge
    cloud = PointCloud()
    colors = []
    for index, two_view in sorted(result.results.items()):
        pair_cloud = two_view.pose.point_cloud
        if args.max_error is not None:
            pair_cloud = filter_by_reprojection_error(pair_cloud, args.max_error)
        if args.remove_outliers:
            pair_cloud = remove_statistical_outliers(pair_cloud)
        cloud.merge(pair_cloud)
        colors.append(sample_colors(pair_cloud, pairs[index][0].mat))
    point_colors = np.concatenate(colors, axis=0)

    logger.info("Merged cloud: %d points, extent %s", len(cloud), cloud_extent(cloud))

    first_index = min(result.results)
    first = result.results[first_index]
    npz_path = output_dir / "point_cloud.npz"
    save_point_cloud_npz(str(npz_path), cloud, pose=first.pose, K=pairs[first_index][0].intrinsics, colors=point_colors)
    logger.info("Point cloud saved to %s", npz_path)

    if args.ply:
        ply_path = output_dir / "point_cloud.ply"
        write_point_cloud_ply(str(ply_path), cloud, colors=point_colors)
        logger.info("PLY written to %s", ply_path)

    # Optional: Generate visualization
    if args.visualize:
        poses = [two_view.pose for _, two_view in sorted(result.results.items())]
        fig = plot_two_view_reconstruction(cloud, poses=poses, colors=point_colors)
        viz_path = output_dir / "reconstruction.html"
        fig.write_html(str(viz_path))
        logger.info("Visualization saved to %s", viz_path)

    if result.failures:
        logger.warning("%d of %d pairs failed", len(result.failures), len(pairs))
    logger.info("Pipeline completed successfully!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
