"""
Configuration constants and the two-view pipeline settings.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

# Features
DEFAULT_DETECTOR = "SIFT"

# Matching
MATCH_RATIO = 0.8
# Fraction of the descriptor scale (bit length or largest row norm).
RADIUS_MATCH_DISTANCE = 0.2

# Epipolar geometry
SNAVELY_FACTOR = 0.006
RANSAC_CONFIDENCE = 0.99
MIN_CORRESPONDENCES = 8

# Pose disambiguation
SINGULAR_VALUE_RATIO_MIN = 0.7
ROTATION_TOLERANCE = 1e-6

# Triangulation
TRIANGULATION_EPSILON = 1e-4
TRIANGULATION_MAX_ITERATIONS = 10

# Point cloud
OUTLIER_NEIGHBOURS = 8
OUTLIER_STD_RATIO = 1.0


class MatchMode(str, Enum):
    """Nearest-neighbour search strategy of the descriptor matcher."""

    NEAREST_TWO = "nearest_two"
    RADIUS = "radius"


@dataclass(frozen=True)
class TwoViewConfig:
    """Settings for a single two-view estimation.

    Every field defaults to the module-level constant of the same meaning, so
    ``TwoViewConfig()`` reproduces the reference behaviour.
    """

    detector_type: str = DEFAULT_DETECTOR

    match_mode: MatchMode = MatchMode.NEAREST_TWO
    # None selects NORM_L2 for float descriptors and NORM_HAMMING for binary ones.
    norm_type: Optional[int] = None
    ratio: float = MATCH_RATIO
    radius: float = RADIUS_MATCH_DISTANCE
    use_flann: bool = False

    snavely_factor: float = SNAVELY_FACTOR
    ransac_confidence: float = RANSAC_CONFIDENCE
    min_correspondences: int = MIN_CORRESPONDENCES
    # Re-estimate F from all RANSAC inliers with the normalized 8-point algorithm.
    refit_fundamental: bool = True
    symmetric_essential: bool = False

    singular_value_ratio_min: float = SINGULAR_VALUE_RATIO_MIN
    rotation_tolerance: float = ROTATION_TOLERANCE

    triangulation_epsilon: float = TRIANGULATION_EPSILON
    triangulation_max_iterations: int = TRIANGULATION_MAX_ITERATIONS
    # None lets ThreadPoolExecutor pick; 1 runs everything inline.
    max_workers: Optional[int] = None

    def with_overrides(self, **overrides) -> "TwoViewConfig":
        """Return a copy with the non-None ``overrides`` applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def __post_init__(self) -> None:
        if not 0.0 < self.ratio <= 1.0:
            raise ValueError(f"ratio must be in (0, 1], got {self.ratio}")
        if self.radius <= 0.0:
            raise ValueError(f"radius must be positive, got {self.radius}")
        if self.min_correspondences < 8:
            raise ValueError(
                f"min_correspondences must be >= 8, got {self.min_correspondences}"
            )
        if self.triangulation_max_iterations < 0:
            raise ValueError("triangulation_max_iterations must be non-negative")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")


__all__ = ["MatchMode", "TwoViewConfig"]
