"""
Synthetic two-view scenes shared by the tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pytest

from twoview_sfm.sfm.data_structures import Correspondence, Keypoint, MatchedPair
from twoview_sfm.sfm.image import Image

K = np.array(
    [
        [800.0, 0.0, 320.0],
        [0.0, 800.0, 240.0],
        [0.0, 0.0, 1.0],
    ]
)


def rotation_y(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def project(K: np.ndarray, R: np.ndarray, t: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Pixel projections (N, 2) of world points X (N, 3) through K [R | t]."""
    cam = R @ X.T + t.reshape(3, 1)
    uv = K @ cam
    return (uv[:2] / uv[2]).T


def to_keypoints(uv: np.ndarray) -> List[Keypoint]:
    return [Keypoint(x=float(u), y=float(v)) for u, v in uv]


@dataclass
class SyntheticScene:
    points: np.ndarray
    R: np.ndarray
    t: np.ndarray
    K: np.ndarray
    uv1: np.ndarray
    uv2: np.ndarray

    def matched_pair(self) -> MatchedPair:
        n = len(self.points)
        return MatchedPair(
            keypoints1=tuple(to_keypoints(self.uv1)),
            keypoints2=tuple(to_keypoints(self.uv2)),
            correspondences=tuple(Correspondence(i, i, 0.0) for i in range(n)),
            K1=self.K,
            K2=self.K,
        )


def make_scene(n: int = 20, seed: int = 0, angle: float = 0.1) -> SyntheticScene:
    """Random points in front of two cameras with baseline (1, 0, 0)."""
    rng = np.random.default_rng(seed)
    points = np.column_stack(
        [
            rng.uniform(-1.5, 1.5, n),
            rng.uniform(-1.0, 1.0, n),
            rng.uniform(4.0, 8.0, n),
        ]
    )
    R = rotation_y(angle)
    t = np.array([1.0, 0.0, 0.0])
    uv1 = project(K, np.eye(3), np.zeros(3), points)
    uv2 = project(K, R, t, points)
    return SyntheticScene(points=points, R=R, t=t, K=K, uv1=uv1, uv2=uv2)


class StaticExtractor:
    """Feature extractor returning prepared keypoints and descriptors."""

    def __init__(self, keypoints: Sequence[Keypoint], descriptors: np.ndarray) -> None:
        self.keypoints = list(keypoints)
        self.descriptors = descriptors
        self.detect_calls = 0
        self.describe_calls = 0

    def detect(self, image, detector_type):
        self.detect_calls += 1
        return self.keypoints

    def describe(self, image, keypoints, detector_type):
        self.describe_calls += 1
        return keypoints, self.descriptors


def make_images(scene: SyntheticScene, seed: int = 1, dim: int = 32):
    """
    Two Images whose extractors report the scene projections.

    Image 2 lists its keypoints in a shuffled order so matching has to
    recover the permutation.
    """
    rng = np.random.default_rng(seed)
    n = len(scene.points)
    descriptors = rng.uniform(0.0, 1.0, (n, dim)).astype(np.float32)
    perm = rng.permutation(n)

    kps1 = to_keypoints(scene.uv1)
    kps2 = to_keypoints(scene.uv2[perm])
    blank = np.zeros((480, 640), dtype=np.uint8)

    image1 = Image(blank, K=scene.K, extractor=StaticExtractor(kps1, descriptors))
    image2 = Image(blank, K=scene.K, extractor=StaticExtractor(kps2, descriptors[perm]))
    return image1, image2


@pytest.fixture
def scene() -> SyntheticScene:
    return make_scene()


@pytest.fixture
def large_scene() -> SyntheticScene:
    return make_scene(n=300, seed=3)
