import cv2
import numpy as np

from twoview_sfm.sfm.data_structures import CloudPoint, Keypoint, PointCloud
from twoview_sfm.viz.depth_map import draw_depth_map, normalized_depths


def depth_cloud(depths, positions):
    return PointCloud(
        CloudPoint(np.array([0.0, 0.0, z]), Keypoint(float(u), float(v)), i, 0.0)
        for i, (z, (u, v)) in enumerate(zip(depths, positions))
    )


def test_normalized_depths():
    cloud = depth_cloud([2.0, 4.0, 3.0], [(0, 0)] * 3)

    np.testing.assert_allclose(normalized_depths(cloud), [0.0, 1.0, 0.5])
    np.testing.assert_allclose(normalized_depths(depth_cloud([5.0, 5.0], [(0, 0)] * 2)), [0.0, 0.0])
    assert len(normalized_depths(PointCloud())) == 0


def test_near_points_are_red_and_far_points_blue():
    image = np.full((40, 60, 3), 80, dtype=np.uint8)
    cloud = depth_cloud([1.0, 10.0], [(10, 20), (45, 20)])

    depth_map = draw_depth_map(image, cloud, radius=2)

    assert depth_map.shape == (40, 60, 3)
    b, g, r = depth_map[20, 10]
    assert r > 200 and b < 50
    b, g, r = depth_map[20, 45]
    assert b > 200 and r < 50
    # Pixels away from the keypoints keep the grey input.
    np.testing.assert_allclose(depth_map[5, 30], [80, 80, 80], atol=2)


def test_greyscale_input():
    image = np.zeros((20, 20), dtype=np.uint8)

    depth_map = draw_depth_map(image, depth_cloud([1.0], [(5, 5)]))

    assert depth_map.shape == (20, 20, 3)
    assert cv2.cvtColor(depth_map[5:6, 5:6], cv2.COLOR_BGR2HSV)[0, 0, 1] == 255
