"""
Calibration I/O utilities for loading, saving and guessing camera intrinsics.
"""

from __future__ import annotations

import os
from typing import Optional

import numpy as np

CAMERA_EXTENSION = "camera"


def guess_intrinsics(width: int, height: int) -> np.ndarray:
    """
    Guess an intrinsic matrix from the image size alone.

    The focal lengths are set to the image width and height and the principal
    point to the image centre.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        Intrinsic camera matrix K (3x3), dtype=float64.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image size must be positive, got {width}x{height}")
    return np.array(
        [
            [float(width), 0.0, width / 2.0],
            [0.0, float(height), height / 2.0],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def read_camera_file(path: str) -> np.ndarray:
    """
    Read a 3x3 intrinsic matrix stored as nine whitespace-separated numbers.

    Args:
        path: Path to the text file, values in row-major order.

    Returns:
        Intrinsic camera matrix K (3x3), dtype=float64.

    Raises:
        ValueError: If the file does not hold exactly nine numbers or the
            matrix is singular.
    """
    with open(path, "r", encoding="utf-8") as f:
        tokens = f.read().split()
    if len(tokens) != 9:
        raise ValueError(f"{path}: expected 9 values for a 3x3 camera matrix, got {len(tokens)}")
    K = np.array([float(tok) for tok in tokens], dtype=np.float64).reshape(3, 3)
    if abs(np.linalg.det(K)) < 1e-12:
        raise ValueError(f"{path}: camera matrix is not invertible")
    return K


def find_sidecar_file(filename: str, extension: str = CAMERA_EXTENSION) -> Optional[str]:
    """
    Find a file stored next to ``filename`` with an extra extension.

    Candidates are checked in order: ``<filename>.<extension>`` and then
    ``<filename without its extension>.<extension>``.

    Returns:
        The first existing candidate, or None.
    """
    if not filename:
        return None

    candidates = [f"{filename}.{extension}"]
    base, ext = os.path.splitext(filename)
    if ext:
        candidates.append(f"{base}.{extension}")

    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    return None


def save_calibration(
    output_path: str,
    K: np.ndarray,
    dist_coeffs: Optional[np.ndarray] = None,
) -> None:
    """
    Save camera intrinsics and distortion coefficients to a .npz file.

    Args:
        output_path: Path where the calibration data will be saved (.npz file).
        K: Intrinsic camera matrix (3x3).
        dist_coeffs: Distortion coefficients array (zeros if omitted).
    """
    if dist_coeffs is None:
        dist_coeffs = np.zeros(5)
    np.savez(output_path, K=K, dist_coeffs=dist_coeffs)


def load_calibration(
    input_path: str,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Load camera intrinsics and distortion coefficients from a .npz file.

    Args:
        input_path: Path to the .npz file containing calibration data.

    Returns:
        Tuple of (K, dist_coeffs) where:
        - K: Intrinsic camera matrix (3x3).
        - dist_coeffs: Distortion coefficients array.
    """
    data = np.load(input_path)
    K = data["K"]
    dist_coeffs = data["dist_coeffs"]
    return K, dist_coeffs


def load_intrinsics(path: str) -> np.ndarray:
    """Load K from either a calibration .npz or a plain-text camera file."""
    if path.endswith(".npz"):
        K, _ = load_calibration(path)
        return np.asarray(K, dtype=np.float64)
    return read_camera_file(path)


__all__ = [
    "guess_intrinsics",
    "read_camera_file",
    "find_sidecar_file",
    "save_calibration",
    "load_calibration",
    "load_intrinsics",
]
