import numpy as np
import pytest

from twoview_sfm.sfm.data_structures import (
    CameraPose,
    CloudPoint,
    Correspondence,
    Keypoint,
    MatchedPair,
    PointCloud,
    keypoints_to_array,
)


def point(z, idx=0, error=0.0):
    return CloudPoint(np.array([0.0, 0.0, z]), Keypoint(0.0, 0.0), idx, error)


def test_keypoints_to_array():
    assert keypoints_to_array([]).shape == (0, 2)
    np.testing.assert_allclose(keypoints_to_array([Keypoint(1.0, 2.0), Keypoint(3.0, 4.0)]), [[1, 2], [3, 4]])


def test_point_cloud_merge_keeps_order():
    a = PointCloud([point(1.0, 0), point(2.0, 1)])
    b = PointCloud([point(3.0, 2)])

    a.merge(b)

    assert [p.keypoint_idx for p in a] == [0, 1, 2]
    assert len(b) == 1
    np.testing.assert_allclose(a.xyz[:, 2], [1.0, 2.0, 3.0])


def test_point_cloud_mean_error():
    assert PointCloud().mean_reprojection_error() == 0.0
    assert PointCloud([point(1.0, error=1.0), point(1.0, error=3.0)]).mean_reprojection_error() == 2.0


def test_camera_pose_center():
    pose = CameraPose.from_rt(np.eye(3), [1.0, 0.0, 0.0])

    np.testing.assert_allclose(pose.center, [-1.0, 0.0, 0.0])
    assert pose.translation.shape == (3, 1)
    assert not pose.is_triangulated


def test_rotation_coherence():
    assert CameraPose.identity().rotation_is_coherent(1e-6)
    assert CameraPose.from_rt(-np.eye(3), np.zeros(3)).rotation_is_coherent(1e-6)
    assert not CameraPose.from_rt(1.001 * np.eye(3), np.zeros(3)).rotation_is_coherent(1e-6)


def test_fraction_in_front_needs_both_cameras():
    # The second camera looks back along -z.
    R = np.diag([1.0, -1.0, -1.0])
    pose = CameraPose.from_rt(R, [0.0, 0.0, 10.0])
    pose.point_cloud = PointCloud([point(5.0), point(15.0), point(-1.0)])

    assert pose.fraction_in_front() == pytest.approx(1.0 / 3.0)


def test_fraction_in_front_of_empty_cloud():
    assert CameraPose.identity().fraction_in_front() == 0.0


def test_matched_pair_checks_bounds():
    kps = [Keypoint(0.0, 0.0)]
    with pytest.raises(IndexError):
        MatchedPair(kps, kps, [Correspondence(0, 1, 0.0)], np.eye(3), np.eye(3))


def test_matched_pair_points():
    kps1 = [Keypoint(0.0, 0.0), Keypoint(1.0, 1.0)]
    kps2 = [Keypoint(5.0, 5.0), Keypoint(6.0, 6.0)]
    pair = MatchedPair(kps1, kps2, [Correspondence(1, 0, 0.0)], np.eye(3), np.eye(3))

    np.testing.assert_allclose(pair.points1(), [[1.0, 1.0]])
    np.testing.assert_allclose(pair.points2(), [[5.0, 5.0]])
    assert len(pair.with_correspondences([])) == 0
    assert pair.with_correspondences([]).points1().shape == (0, 2)
