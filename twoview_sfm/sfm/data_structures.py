"""
Shared core data structures for the two-view pipeline.

These dataclasses are intentionally simple containers used across:
- descriptor matching
- epipolar geometry and pose disambiguation
- triangulation, point-cloud filtering and visualization
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Keypoint:
    """A detected 2D feature location in pixel coordinates."""

    x: float
    y: float
    size: float = 1.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0
    # Detector-specific tag; AKAZE stores its descriptor class here.
    class_id: int = -1

    @property
    def pt(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=np.float64)

    @classmethod
    def from_cv(cls, kp) -> "Keypoint":
        """Build from a ``cv2.KeyPoint``."""
        return cls(
            x=float(kp.pt[0]),
            y=float(kp.pt[1]),
            size=float(kp.size),
            angle=float(kp.angle),
            response=float(kp.response),
            octave=int(kp.octave),
            class_id=int(kp.class_id),
        )


def keypoints_to_array(keypoints: Sequence[Keypoint]) -> np.ndarray:
    """Stack keypoint locations into an (N, 2) float64 array."""
    if len(keypoints) == 0:
        return np.zeros((0, 2), dtype=np.float64)
    return np.array([(kp.x, kp.y) for kp in keypoints], dtype=np.float64)


@dataclass(frozen=True)
class Correspondence:
    """
    A match between keypoint ``query_idx`` of image 1 and ``train_idx`` of image 2.

    ``distance`` is the descriptor distance reported by the matcher.
    """

    query_idx: int
    train_idx: int
    distance: float


@dataclass(frozen=True, eq=False)
class CloudPoint:
    """A triangulated 3D point and the image-1 keypoint it was seen at."""

    # (3,) float64, reference camera coordinates.
    xyz: np.ndarray
    keypoint: Keypoint
    # Index of `keypoint` in the image-1 keypoint list.
    keypoint_idx: int
    reprojection_error: float


class PointCloud:
    """Ordered, append-only collection of CloudPoints."""

    def __init__(self, points: Optional[Iterable[CloudPoint]] = None) -> None:
        self._points: List[CloudPoint] = list(points) if points is not None else []

    def add_point(self, point: CloudPoint) -> None:
        self._points.append(point)

    def extend(self, points: Iterable[CloudPoint]) -> None:
        self._points.extend(points)

    def merge(self, other: "PointCloud") -> None:
        """Append all points of ``other`` after the points of this cloud."""
        self._points.extend(other._points)

    @property
    def points(self) -> Tuple[CloudPoint, ...]:
        return tuple(self._points)

    @property
    def xyz(self) -> np.ndarray:
        """(N, 3) array of point coordinates."""
        if not self._points:
            return np.zeros((0, 3), dtype=np.float64)
        return np.stack([p.xyz for p in self._points])

    @property
    def reprojection_errors(self) -> np.ndarray:
        return np.array([p.reprojection_error for p in self._points], dtype=np.float64)

    def mean_reprojection_error(self) -> float:
        if not self._points:
            return 0.0
        return float(np.mean(self.reprojection_errors))

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[CloudPoint]:
        return iter(self._points)

    def __getitem__(self, index: int) -> CloudPoint:
        return self._points[index]

    def __repr__(self) -> str:
        return f"PointCloud({len(self._points)} points)"


@dataclass(eq=False)
class CameraPose:
    """
    One relative pose candidate ``[R | t]`` of the second camera.

    ``point_cloud`` and ``reprojection_error`` stay empty until the candidate
    has been triangulated.
    """

    # (3, 4) float64.
    matrix: np.ndarray
    # Position in the fixed candidate order, used as the final tie-break.
    index: int = 0
    reprojection_error: Optional[float] = None
    point_cloud: PointCloud = field(default_factory=PointCloud)

    @classmethod
    def from_rt(cls, R: np.ndarray, t: np.ndarray, index: int = 0) -> "CameraPose":
        matrix = np.hstack([np.asarray(R, dtype=np.float64), np.asarray(t, dtype=np.float64).reshape(3, 1)])
        return cls(matrix=matrix, index=index)

    @classmethod
    def identity(cls) -> "CameraPose":
        return cls(matrix=np.hstack([np.eye(3), np.zeros((3, 1))]))

    @property
    def rotation(self) -> np.ndarray:
        return self.matrix[:, :3]

    @property
    def translation(self) -> np.ndarray:
        """Translation as a (3, 1) column."""
        return self.matrix[:, 3:4]

    @property
    def center(self) -> np.ndarray:
        """Camera centre C = -R^T t in reference coordinates, shape (3,)."""
        return (-self.rotation.T @ self.translation).ravel()

    @property
    def is_triangulated(self) -> bool:
        return self.reprojection_error is not None

    def rotation_is_coherent(self, tolerance: float) -> bool:
        """True if det(R) is within ``tolerance`` of +1 or -1."""
        return abs(abs(float(np.linalg.det(self.rotation))) - 1.0) <= tolerance

    def fraction_in_front(self) -> float:
        """
        Fraction of the point cloud with positive depth in both cameras.

        Depth in the reference camera is the point's z; depth in this camera is
        the z of ``R @ X + t``.
        """
        if len(self.point_cloud) == 0:
            return 0.0
        xyz = self.point_cloud.xyz
        z_ref = xyz[:, 2]
        z_cam = (self.rotation @ xyz.T + self.translation)[2]
        in_front = (z_ref > 0) & (z_cam > 0)
        return float(np.count_nonzero(in_front)) / float(len(xyz))


@dataclass(frozen=True, eq=False)
class MatchedPair:
    """
    Keypoints of two images, the correspondences between them and both intrinsics.

    This is the unit handed from the matcher to the epipolar estimator and
    from the estimator to the triangulator.
    """

    keypoints1: Tuple[Keypoint, ...]
    keypoints2: Tuple[Keypoint, ...]
    correspondences: Tuple[Correspondence, ...]
    # Intrinsic matrices (3x3) of image 1 and image 2.
    K1: np.ndarray
    K2: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "keypoints1", tuple(self.keypoints1))
        object.__setattr__(self, "keypoints2", tuple(self.keypoints2))
        object.__setattr__(self, "correspondences", tuple(self.correspondences))
        object.__setattr__(self, "K1", np.asarray(self.K1, dtype=np.float64))
        object.__setattr__(self, "K2", np.asarray(self.K2, dtype=np.float64))
        n1, n2 = len(self.keypoints1), len(self.keypoints2)
        for c in self.correspondences:
            if not (0 <= c.query_idx < n1 and 0 <= c.train_idx < n2):
                raise IndexError(
                    f"Correspondence {c} out of bounds for {n1} / {n2} keypoints"
                )

    def points1(self) -> np.ndarray:
        """(N, 2) image-1 locations in correspondence order."""
        if not self.correspondences:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array(
            [(self.keypoints1[c.query_idx].x, self.keypoints1[c.query_idx].y) for c in self.correspondences],
            dtype=np.float64,
        )

    def points2(self) -> np.ndarray:
        """(N, 2) image-2 locations in correspondence order."""
        if not self.correspondences:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array(
            [(self.keypoints2[c.train_idx].x, self.keypoints2[c.train_idx].y) for c in self.correspondences],
            dtype=np.float64,
        )

    def with_correspondences(self, correspondences: Sequence[Correspondence]) -> "MatchedPair":
        return MatchedPair(
            keypoints1=self.keypoints1,
            keypoints2=self.keypoints2,
            correspondences=tuple(correspondences),
            K1=self.K1,
            K2=self.K2,
        )

    def __len__(self) -> int:
        return len(self.correspondences)


__all__ = [
    "Keypoint",
    "keypoints_to_array",
    "Correspondence",
    "CloudPoint",
    "PointCloud",
    "CameraPose",
    "MatchedPair",
]
