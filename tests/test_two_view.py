from unittest import mock

import numpy as np
import pytest

from twoview_sfm.config import TwoViewConfig
from twoview_sfm.errors import InsufficientGeometry, InsufficientMatches
from twoview_sfm.geometry.triangulation import triangulate
from twoview_sfm.sfm.data_structures import CameraPose, Keypoint
from twoview_sfm.sfm.image import Image
from twoview_sfm.sfm.two_view import estimate_pose, match_images, reconstruct_two_view

from conftest import StaticExtractor, make_images, make_scene


def test_match_images_recovers_permutation(scene):
    image1, image2 = make_images(scene)

    pair = match_images(image1, image2)

    assert len(pair) == len(scene.points)
    np.testing.assert_allclose(pair.points2(), scene.uv2[[c.query_idx for c in pair.correspondences]])


def test_estimate_pose_on_synthetic_scene(scene):
    image1, image2 = make_images(scene)

    pose = estimate_pose(image1, image2)

    assert pose.fraction_in_front() == 1.0
    assert pose.reprojection_error < 1e-5
    assert pose.rotation_is_coherent(1e-6)
    assert len(pose.point_cloud) == len(scene.points)
    np.testing.assert_allclose(pose.rotation, scene.R, atol=1e-6)
    np.testing.assert_allclose(pose.translation.ravel(), scene.t, atol=1e-6)


def test_reconstruction_recovers_points(scene):
    image1, image2 = make_images(scene)

    result = reconstruct_two_view(image1, image2)
    cloud = result.pose.point_cloud
    expected = scene.points[[p.keypoint_idx for p in cloud]]

    np.testing.assert_allclose(cloud.xyz, expected, atol=1e-6)
    assert result.geometry.num_inliers == len(scene.points)
    assert len(result.matches) == len(scene.points)
    assert result.inliers is result.geometry.pair


def test_retriangulating_selected_pose_reproduces_points(scene):
    image1, image2 = make_images(scene)
    result = reconstruct_two_view(image1, image2)

    cloud, error = triangulate(CameraPose.identity(), result.pose, result.inliers)

    np.testing.assert_allclose(cloud.xyz, result.pose.point_cloud.xyz)
    assert error == pytest.approx(result.pose.reprojection_error)


def test_zero_matches_never_reach_the_estimator():
    blank = np.zeros((480, 640), dtype=np.uint8)
    keypoints = [Keypoint(float(i), float(i)) for i in range(10)]
    image1 = Image(blank, extractor=StaticExtractor(keypoints, np.ones((10, 8), dtype=np.float32)))
    image2 = Image(blank, extractor=StaticExtractor([], np.zeros((0, 8), dtype=np.float32)))

    with mock.patch("twoview_sfm.sfm.two_view.estimate_epipolar_geometry") as estimator:
        with pytest.raises(InsufficientMatches):
            estimate_pose(image1, image2)

    estimator.assert_not_called()


def test_too_few_matches_raise_insufficient_geometry():
    scene = make_scene(n=6)
    image1, image2 = make_images(scene)

    with pytest.raises(InsufficientGeometry):
        estimate_pose(image1, image2)


def test_shared_image_features_are_computed_once(scene):
    image1, image2 = make_images(scene)
    config = TwoViewConfig(max_workers=1)

    estimate_pose(image1, image2, config)
    estimate_pose(image1, image2, config)

    assert image1.extractor.detect_calls == 1
    assert image2.extractor.describe_calls == 1
