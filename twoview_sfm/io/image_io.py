"""
Image loading utilities.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from twoview_sfm.io.calib_io import find_sidecar_file, read_camera_file
from twoview_sfm.sfm.image import Image

logger = logging.getLogger(__name__)


def read_image(
    path: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> tuple[np.ndarray, float]:
    """
    Read an image file, optionally rescaling it to a target width.

    Args:
        path: Path to the image file.
        width: Target width in pixels; the height follows the aspect ratio.
        height: Optional expected height, only used to validate the aspect ratio.

    Returns:
        Tuple of (image, scaling) where image is (H, W, 3) uint8 RGB and
        scaling is the applied resize factor (1.0 if unchanged).

    Raises:
        ValueError: If the file cannot be read or ``height`` violates the
            original aspect ratio.
    """
    bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ValueError(f"Could not read image file: {path}")

    scaling = 1.0
    if width is not None and width > 0:
        h, w = bgr.shape[:2]
        scaling = width / float(w)
        calc_height = int(scaling * h)
        if height is not None and height > 0 and height != calc_height:
            raise ValueError(
                "The new resolution violates the original aspect ratio. "
                f"Should be {width}x{calc_height}."
            )
        bgr = cv2.resize(bgr, (width, calc_height), interpolation=cv2.INTER_AREA)

    # Convert BGR to RGB
    rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
    return rgb.astype(np.uint8), scaling


def load_image(
    path: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
    K: Optional[np.ndarray] = None,
) -> Image:
    """
    Load an Image with its intrinsics.

    Intrinsics come from ``K`` if given, otherwise from a ``.camera`` file next
    to the image, otherwise they are guessed from the (rescaled) image size.
    A camera file describes the original resolution and is scaled along with
    the image.
    """
    mat, scaling = read_image(path, width=width, height=height)

    if K is None:
        camera_file = find_sidecar_file(path)
        if camera_file is not None:
            logger.info("Using camera matrix from %s", camera_file)
            K = read_camera_file(camera_file)
            if scaling != 1.0:
                K = np.diag([scaling, scaling, 1.0]) @ K

    return Image(mat, K=K, filename=path)


__all__ = ["read_image", "load_image"]
