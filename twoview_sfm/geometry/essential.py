"""
Essential matrix computation and camera pose candidate extraction.
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional, Tuple

import numpy as np

from twoview_sfm.config import SINGULAR_VALUE_RATIO_MIN
from twoview_sfm.errors import IllConditionedEssentialMatrix
from twoview_sfm.sfm.data_structures import CameraPose

logger = logging.getLogger(__name__)

W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])


def compute_essential_matrix(
    K: np.ndarray,
    F: np.ndarray,
    K2: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Compute essential matrix from fundamental matrix and camera intrinsics.

    Args:
        K: Intrinsic camera matrix (3x3) of the first image.
        F: Fundamental matrix (3x3).
        K2: Intrinsic matrix of the second image. If omitted, both images
            are assumed to share ``K``.

    Returns:
        Essential matrix E (3x3), where E = K2^T @ F @ K (E = K^T @ F @ K
        without ``K2``).
    """
    if K2 is None:
        K2 = K
    E = K2.T @ F @ K
    return E


def singular_value_ratio(E: np.ndarray) -> float:
    """
    Ratio of the two largest singular values of E, folded into [0, 1].

    A proper essential matrix has two equal non-zero singular values (ratio 1).
    """
    S = np.linalg.svd(E, compute_uv=False)
    if S[1] == 0.0:
        return 0.0
    ratio = abs(S[0] / S[1])
    if ratio > 1.0:
        ratio = 1.0 / ratio
    return float(ratio)


def check_essential_matrix(E: np.ndarray, ratio_min: float = SINGULAR_VALUE_RATIO_MIN) -> bool:
    """
    Check that the two leading singular values of E are close.

    Emits an IllConditionedEssentialMatrix warning when the ratio is below
    ``ratio_min``; the caller is expected to proceed anyway.

    Returns:
        True if E is well conditioned.
    """
    ratio = singular_value_ratio(E)
    if ratio < ratio_min:
        message = f"Singular values of the essential matrix are too far apart (ratio {ratio:.3f} < {ratio_min})"
        logger.warning(message)
        warnings.warn(message, IllConditionedEssentialMatrix, stacklevel=2)
        return False
    return True


def decompose_essential_matrix(E: np.ndarray) -> Tuple[CameraPose, CameraPose, CameraPose, CameraPose]:
    """
    Split E into the four relative pose candidates.

    With E = U diag(s, s, 0) V^T the candidates are, in this order,
    (R1, t), (R1, -t), (R2, t), (R2, -t) where R1 = U W V^T, R2 = U W^T V^T
    and t is the third column of U. U and V^T are sign-corrected to proper
    rotations first, so both R1 and R2 have determinant +1.

    Args:
        E: Essential matrix (3x3).

    Returns:
        Tuple of four CameraPose candidates, indexed 0..3.
    """
    U, _, Vt = np.linalg.svd(E)
    if np.linalg.det(U) < 0:
        U = -U
    if np.linalg.det(Vt) < 0:
        Vt = -Vt

    R1 = U @ W @ Vt
    R2 = U @ W.T @ Vt
    t1 = U[:, 2].reshape(3, 1)
    t2 = -t1

    return (
        CameraPose.from_rt(R1, t1, index=0),
        CameraPose.from_rt(R1, t2, index=1),
        CameraPose.from_rt(R2, t1, index=2),
        CameraPose.from_rt(R2, t2, index=3),
    )


__all__ = [
    "compute_essential_matrix",
    "singular_value_ratio",
    "check_essential_matrix",
    "decompose_essential_matrix",
]
