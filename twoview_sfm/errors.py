"""
Exceptions and warnings raised by the two-view pipeline.

Hard failures derive from ``ReconstructionError`` and abort the current image
pair only. Non-fatal conditions are ``UserWarning`` subclasses emitted through
``warnings.warn`` while the estimation carries on.
"""

from __future__ import annotations


class ReconstructionError(Exception):
    """Base class for failures that abort an image pair."""


class FeatureExtractionError(ReconstructionError):
    """The feature backend failed to detect or describe keypoints."""


class InsufficientMatches(ReconstructionError):
    """No correspondence survived descriptor matching."""


class InsufficientGeometry(ReconstructionError):
    """Too few correspondences for a robust fundamental-matrix solve."""

    def __init__(self, count: int, required: int) -> None:
        super().__init__(
            f"Need at least {required} correspondences for the fundamental matrix, got {count}"
        )
        self.count = count
        self.required = required


class NoValidPose(ReconstructionError):
    """No pose candidate produced a usable reconstruction."""


class IllConditionedEssentialMatrix(UserWarning):
    """The two leading singular values of E are too far apart."""


class TriangulationDivergence(UserWarning):
    """Iterative triangulation hit its iteration cap without converging."""


__all__ = [
    "ReconstructionError",
    "FeatureExtractionError",
    "InsufficientMatches",
    "InsufficientGeometry",
    "NoValidPose",
    "IllConditionedEssentialMatrix",
    "TriangulationDivergence",
]
