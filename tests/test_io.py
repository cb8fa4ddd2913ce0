import cv2
import numpy as np
import open3d as o3d
import pytest

from twoview_sfm.io.calib_io import (
    find_sidecar_file,
    guess_intrinsics,
    load_calibration,
    load_intrinsics,
    read_camera_file,
    save_calibration,
)
from twoview_sfm.io.cloud_io import (
    sample_colors,
    save_point_cloud_npz,
    write_point_cloud_ply,
)
from twoview_sfm.io.image_io import load_image, read_image
from twoview_sfm.sfm.data_structures import CameraPose, CloudPoint, Keypoint, PointCloud

K_TEXT = "700 0 200\n0 700 150\n0 0 1\n"


def small_cloud():
    return PointCloud(
        [
            CloudPoint(np.array([0.0, 0.0, 1.0]), Keypoint(1.0, 2.0), 0, 0.5),
            CloudPoint(np.array([1.0, 2.0, 3.0]), Keypoint(10.0, 0.0), 4, 1.5),
        ]
    )


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "view.png"
    bgr = np.zeros((300, 400, 3), dtype=np.uint8)
    bgr[:, :, 2] = 255
    cv2.imwrite(str(path), bgr)
    return path


def test_guess_intrinsics():
    np.testing.assert_allclose(guess_intrinsics(400, 300), [[400, 0, 200], [0, 300, 150], [0, 0, 1]])
    with pytest.raises(ValueError):
        guess_intrinsics(0, 300)


def test_read_camera_file(tmp_path):
    path = tmp_path / "cam.camera"
    path.write_text(K_TEXT)

    K = read_camera_file(str(path))

    assert K.dtype == np.float64
    np.testing.assert_allclose(K, [[700, 0, 200], [0, 700, 150], [0, 0, 1]])


@pytest.mark.parametrize("text", ["1 2 3\n", "1 0 0 0 1 0 0 0 1 5", "0 0 0 0 0 0 0 0 0"])
def test_read_camera_file_rejects_bad_content(tmp_path, text):
    path = tmp_path / "bad.camera"
    path.write_text(text)
    with pytest.raises(ValueError):
        read_camera_file(str(path))


def test_find_sidecar_file(tmp_path):
    image = tmp_path / "a.jpg"
    assert find_sidecar_file(str(image)) is None

    (tmp_path / "a.camera").write_text(K_TEXT)
    assert find_sidecar_file(str(image)) == str(tmp_path / "a.camera")

    (tmp_path / "a.jpg.camera").write_text(K_TEXT)
    assert find_sidecar_file(str(image)) == str(tmp_path / "a.jpg.camera")


def test_calibration_npz(tmp_path):
    path = str(tmp_path / "calib.npz")
    K = guess_intrinsics(640, 480)
    save_calibration(path, K)

    loaded_K, dist = load_calibration(path)

    np.testing.assert_allclose(loaded_K, K)
    np.testing.assert_allclose(dist, np.zeros(5))
    np.testing.assert_allclose(load_intrinsics(path), K)


def test_load_intrinsics_text(tmp_path):
    path = tmp_path / "K.txt"
    path.write_text(K_TEXT)
    assert load_intrinsics(str(path))[0, 0] == 700.0


def test_read_image_is_rgb(image_file):
    rgb, scaling = read_image(str(image_file))

    assert rgb.shape == (300, 400, 3)
    assert scaling == 1.0
    assert tuple(rgb[0, 0]) == (255, 0, 0)


def test_read_image_rescales(image_file):
    rgb, scaling = read_image(str(image_file), width=200)

    assert rgb.shape == (150, 200, 3)
    assert scaling == pytest.approx(0.5)


def test_read_image_checks_aspect_ratio(image_file):
    with pytest.raises(ValueError, match="Should be 200x150"):
        read_image(str(image_file), width=200, height=100)


def test_read_image_missing_file(tmp_path):
    with pytest.raises(ValueError):
        read_image(str(tmp_path / "missing.png"))


def test_load_image_scales_camera_file(image_file):
    image_file.with_suffix(".camera").write_text(K_TEXT)

    image = load_image(str(image_file), width=200)

    np.testing.assert_allclose(image.intrinsics, [[350, 0, 100], [0, 350, 75], [0, 0, 1]])
    assert image.filename == str(image_file)


def test_load_image_guesses_without_camera_file(image_file):
    image = load_image(str(image_file))
    np.testing.assert_allclose(image.intrinsics, guess_intrinsics(400, 300))


def test_load_image_explicit_intrinsics_win(image_file):
    image_file.with_suffix(".camera").write_text(K_TEXT)
    K = guess_intrinsics(10, 10)

    image = load_image(str(image_file), K=K)

    np.testing.assert_allclose(image.intrinsics, K)


def test_sample_colors():
    image = np.zeros((4, 4, 3), dtype=np.uint8)
    image[2, 1] = (10, 20, 30)

    colors = sample_colors(small_cloud(), image)

    np.testing.assert_array_equal(colors, [[10, 20, 30], [128, 128, 128]])


def test_point_cloud_npz(tmp_path):
    path = str(tmp_path / "cloud.npz")
    pose = CameraPose.from_rt(np.eye(3), [1.0, 0.0, 0.0])
    colors = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.uint8)

    save_point_cloud_npz(path, small_cloud(), pose=pose, K=np.eye(3), colors=colors)
    with np.load(path) as archive:
        data = {key: archive[key] for key in archive.files}

    np.testing.assert_allclose(data["points_xyz"], small_cloud().xyz)
    np.testing.assert_allclose(data["reprojection_errors"], [0.5, 1.5])
    np.testing.assert_allclose(data["keypoint_uv"], [[1.0, 2.0], [10.0, 0.0]])
    np.testing.assert_array_equal(data["keypoint_indices"], [0, 4])
    np.testing.assert_array_equal(data["points_colors"], colors)
    np.testing.assert_allclose(data["pose"], pose.matrix)


def test_point_cloud_ply(tmp_path):
    path = tmp_path / "cloud.ply"
    colors = np.array([[0, 128, 255], [255, 0, 0]], dtype=np.uint8)

    write_point_cloud_ply(str(path), small_cloud(), colors=colors)

    assert path.read_bytes().startswith(b"ply\nformat ascii 1.0")
    pcd = o3d.io.read_point_cloud(str(path))
    np.testing.assert_allclose(np.asarray(pcd.points), small_cloud().xyz, atol=1e-6)
    np.testing.assert_allclose(np.asarray(pcd.colors) * 255.0, colors, atol=0.6)


def test_point_cloud_ply_without_colours(tmp_path):
    path = tmp_path / "plain.ply"

    write_point_cloud_ply(str(path), small_cloud())

    pcd = o3d.io.read_point_cloud(str(path))
    assert len(pcd.points) == 2
    assert not pcd.has_colors()


def test_point_cloud_ply_checks_colour_count(tmp_path):
    with pytest.raises(ValueError):
        write_point_cloud_ply(str(tmp_path / "x.ply"), small_cloud(), colors=np.zeros((1, 3), dtype=np.uint8))
