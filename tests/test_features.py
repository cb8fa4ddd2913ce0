import threading
import time
from concurrent.futures import ThreadPoolExecutor

import cv2
import numpy as np
import pytest

from twoview_sfm.cli import debug_features
from twoview_sfm.errors import FeatureExtractionError
from twoview_sfm.features import keypoints as keypoints_module
from twoview_sfm.features.cache import FeatureCache, FeatureSet
from twoview_sfm.features.keypoints import OpenCVFeatureExtractor, detect_keypoints, to_cv_keypoints
from twoview_sfm.sfm.data_structures import Keypoint
from twoview_sfm.sfm.image import Image

from conftest import StaticExtractor


def textured_image(seed=0, size=(240, 320)):
    rng = np.random.default_rng(seed)
    noise = rng.integers(0, 256, size, dtype=np.uint8)
    return cv2.GaussianBlur(noise, (5, 5), 1.5)


def test_feature_set_checks_alignment():
    with pytest.raises(ValueError):
        FeatureSet(keypoints=[Keypoint(1.0, 2.0)], descriptors=np.zeros((2, 8)))


def test_feature_set_descriptors_are_read_only():
    features = FeatureSet(keypoints=[Keypoint(1.0, 2.0)], descriptors=np.zeros((1, 8)))
    with pytest.raises(ValueError):
        features.descriptors[0, 0] = 1.0


def test_cache_computes_once_under_contention():
    calls = []
    lock = threading.Lock()

    def compute(detector_type):
        with lock:
            calls.append(detector_type)
        time.sleep(0.05)
        return FeatureSet(keypoints=[Keypoint(0.0, 0.0)], descriptors=np.zeros((1, 4)))

    cache = FeatureCache(compute)
    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: cache.get_or_compute("SIFT"), range(16)))

    assert calls == ["SIFT"]
    assert all(r is results[0] for r in results)
    assert "SIFT" in cache
    assert len(cache) == 1


def test_cache_keys_are_independent():
    cache = FeatureCache(
        lambda detector_type: FeatureSet(keypoints=[], descriptors=np.zeros((0, 4)))
    )
    a = cache.get_or_compute("SIFT")
    b = cache.get_or_compute("ORB")

    assert a is not b
    assert len(cache) == 2
    assert "AKAZE" not in cache


def test_image_features_are_cached():
    extractor = StaticExtractor([Keypoint(1.0, 1.0)], np.ones((1, 8), dtype=np.float32))
    image = Image(np.zeros((10, 20), dtype=np.uint8), extractor=extractor)

    first = image.features("SIFT")
    second = image.features("SIFT")

    assert first is second
    assert extractor.detect_calls == 1
    assert extractor.describe_calls == 1


def test_image_guesses_intrinsics():
    image = Image(np.zeros((480, 640, 3), dtype=np.uint8))

    assert image.size == (640, 480)
    np.testing.assert_allclose(image.intrinsics, [[640, 0, 320], [0, 480, 240], [0, 0, 1]])


def test_image_rejects_bad_intrinsics():
    with pytest.raises(ValueError):
        Image(np.zeros((4, 4), dtype=np.uint8), K=np.eye(4))


@pytest.mark.parametrize("detector_type", ["SIFT", "ORB", "AKAZE", "BRISK", "FAST", "GFTT"])
def test_opencv_extractor_describes_every_detection(detector_type):
    image = textured_image()
    extractor = OpenCVFeatureExtractor()

    detected = extractor.detect(image, detector_type)
    keypoints, descriptors = extractor.describe(image, detected, detector_type)

    assert len(detected) > 0
    assert 0 < len(keypoints) <= len(detected)
    assert len(descriptors) == len(keypoints)


@pytest.mark.parametrize("detector_type", ["FAST", "GFTT"])
def test_border_keypoints_are_dropped_with_orb_descriptors(detector_type):
    image = textured_image(seed=1)
    extractor = OpenCVFeatureExtractor()
    detected = extractor.detect(image, detector_type) + [Keypoint(1.0, 1.0, size=31.0)]

    keypoints, descriptors = extractor.describe(image, detected, detector_type)

    assert descriptors.dtype == np.uint8
    assert descriptors.shape == (len(keypoints), 32)
    assert len(keypoints) < len(detected)
    assert all(kp.x > 1.0 or kp.y > 1.0 for kp in keypoints)


def test_akaze_class_id_survives_conversion():
    image = textured_image(seed=2)
    detected = OpenCVFeatureExtractor().detect(image, "AKAZE")

    assert detected
    assert all(kp.class_id >= 0 for kp in detected)
    assert [kp.class_id for kp in to_cv_keypoints(detected)] == [kp.class_id for kp in detected]


def test_image_features_use_described_keypoints():
    image = Image(cv2.cvtColor(textured_image(seed=4), cv2.COLOR_GRAY2RGB))

    features = image.features("GFTT")

    assert len(features.keypoints) == len(features.descriptors)
    assert len(features.keypoints) > 0


def test_describe_errors_are_reconstruction_errors(monkeypatch):
    class Broken:
        def descriptorSize(self):
            return 32

        def compute(self, image, keypoints):
            raise cv2.error("bad keypoints")

    monkeypatch.setitem(keypoints_module._DETECTOR_FACTORIES, "ORB", Broken)

    with pytest.raises(FeatureExtractionError):
        OpenCVFeatureExtractor().describe(textured_image(), [Keypoint(50.0, 50.0)], "ORB")


def test_unknown_detector_raises():
    with pytest.raises(ValueError):
        OpenCVFeatureExtractor().detect(textured_image(), "NOPE")


def test_detect_keypoints_returns_aligned_arrays():
    keypoints, descriptors = detect_keypoints(textured_image(seed=2), "ORB")

    assert len(keypoints) == len(descriptors)
    assert all(isinstance(kp, Keypoint) for kp in keypoints)


def test_debug_tool_writes_match_image(tmp_path):
    image = cv2.cvtColor(textured_image(seed=3, size=(240, 320)), cv2.COLOR_GRAY2BGR)
    shifted = np.roll(image, 6, axis=1)
    cv2.imwrite(str(tmp_path / "a.png"), image)
    cv2.imwrite(str(tmp_path / "b.png"), shifted)
    output = tmp_path / "matches.png"

    code = debug_features.main(
        [str(tmp_path / "a.png"), str(tmp_path / "b.png"), "--detector", "ORB", "--output", str(output)]
    )

    assert code == 0
    assert output.exists()
