"""
Image pyramid construction for coarse-to-fine correspondence search.

Level 0 is the source image and every following level is produced by
``cv2.pyrDown``. The number of levels is clamped the way OpenCV's
``buildOpticalFlowPyramid`` clamps it: construction stops at the first level
whose half-resolution successor would be no larger than the matching window
in either dimension.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import numpy as np
import cv2

from stereo_depth.errors import EmptyImageError, PyramidError, WindowSizeError


@dataclass
class ImagePyramid:
    """Multi-resolution image sequence, level 0 = full resolution."""
    levels: List[np.ndarray]
    win_size: Tuple[int, int]
    derivatives: Optional[List[np.ndarray]] = None

    @property
    def max_level(self) -> int:
        return len(self.levels) - 1

    @property
    def has_derivatives(self) -> bool:
        return self.derivatives is not None

    def level(self, level: int) -> np.ndarray:
        if not 0 <= level <= self.max_level:
            raise PyramidError(
                "Pyramid level out of range",
                details={"level": level, "max_level": self.max_level}
            )
        return self.levels[level]

    def padded(self, level: int, border: Tuple[int, int]) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Padded float32 copies of a level and its derivatives.

        Images are extended with reflect-101 borders and derivatives with
        zeros, so windows partially outside the image can still be sampled.

        Args:
            level: Pyramid level
            border: (horizontal, vertical) padding in pixels

        Returns:
            Tuple of (padded_image, padded_derivatives or None)
        """
        bx, by = border
        image = self.level(level).astype(np.float32)
        padded_image = cv2.copyMakeBorder(image, by, by, bx, bx, cv2.BORDER_REFLECT_101)

        padded_deriv = None
        if self.derivatives is not None:
            padded_deriv = cv2.copyMakeBorder(
                self.derivatives[level], by, by, bx, bx, cv2.BORDER_CONSTANT, value=0
            )
        return padded_image, padded_deriv


def scharr_derivatives(image: np.ndarray) -> np.ndarray:
    """
    Horizontal and vertical Scharr derivatives stacked as ``(h, w, 2)`` float32.

    Kernel is [-3 0 3; -10 0 10; -3 0 3] (and its transpose), so a unit
    intensity ramp yields a derivative of 32.
    """
    ddepth = cv2.CV_16S if image.dtype == np.uint8 else cv2.CV_32F
    dx = cv2.Scharr(image, ddepth, 1, 0, borderType=cv2.BORDER_REFLECT_101)
    dy = cv2.Scharr(image, ddepth, 0, 1, borderType=cv2.BORDER_REFLECT_101)
    return np.dstack([dx, dy]).astype(np.float32)


def build_pyramid(
    image: np.ndarray,
    win_size: Tuple[int, int],
    max_level: int,
    with_derivatives: bool = False
) -> ImagePyramid:
    """
    Build an image pyramid.

    Args:
        image: Source image, 8-bit or float32 single channel
        win_size: (width, height) of the matching window
        max_level: Requested coarsest level (0 = no downsampling)
        with_derivatives: Also compute Scharr derivatives for every level

    Returns:
        ImagePyramid whose ``max_level`` is the realized (clamped) level count
    """
    if image is None or image.size == 0:
        raise EmptyImageError("Cannot build a pyramid from an empty image")
    if image.ndim != 2:
        raise PyramidError(
            "Pyramids are built from single-channel images",
            details={"shape": image.shape}
        )
    if max_level < 0:
        raise PyramidError("max_level must be non-negative", details={"max_level": max_level})

    win_w, win_h = win_size
    if win_w < 1 or win_h < 1:
        raise WindowSizeError("Window size must be positive", details={"win_size": win_size})

    levels = [image]
    width, height = image.shape[1], image.shape[0]
    for level in range(max_level + 1):
        if level > 0:
            levels.append(cv2.pyrDown(levels[-1], dstsize=(width, height)))
        width, height = (width + 1) // 2, (height + 1) // 2
        if width <= win_w or height <= win_h:
            break

    derivatives = None
    if with_derivatives:
        derivatives = [scharr_derivatives(level_image) for level_image in levels]

    return ImagePyramid(levels=levels, win_size=(win_w, win_h), derivatives=derivatives)


def level_scale(level: int) -> int:
    """Downsampling factor of a pyramid level."""
    return 1 << level


def scale_point(point: Tuple[float, float], level: int) -> Tuple[float, float]:
    """Coordinates of a level-0 point on pyramid ``level``."""
    scale = level_scale(level)
    return point[0] / scale, point[1] / scale
