"""Block dissimilarity scores used by the block-matching engine."""

from enum import Enum
from typing import Tuple
import numpy as np

from stereo_depth.encoding import SampleEncoding
from stereo_depth.errors import EncodingError, ImageDimensionError


def _difference(window_left: np.ndarray, window_right: np.ndarray) -> np.ndarray:
    encoding = SampleEncoding.of(window_left)
    right_encoding = SampleEncoding.of(window_right)

    if encoding is not right_encoding:
        raise EncodingError(
            "Window encodings differ",
            details={"left": encoding.value, "right": right_encoding.value}
        )

    if window_left.shape != window_right.shape:
        raise ImageDimensionError(
            "Window shapes differ",
            details={"left_shape": window_left.shape, "right_shape": window_right.shape}
        )

    return encoding.intensities(window_left) - encoding.intensities(window_right)


def ssd(window_left: np.ndarray, window_right: np.ndarray) -> float:
    """
    Sum of squared differences between two windows.

    Args:
        window_left: Window from the left image
        window_right: Window from the right image, same shape and encoding

    Returns:
        Non-negative dissimilarity score

    Raises:
        EncodingError: If an encoding is unsupported or the encodings differ
        ImageDimensionError: If the window shapes differ
    """
    diff = _difference(window_left, window_right)
    return float(np.sum(diff * diff, dtype=np.float64))


def sad(window_left: np.ndarray, window_right: np.ndarray) -> float:
    """
    Sum of absolute differences between two windows.

    Same contract as ``ssd``.
    """
    diff = _difference(window_left, window_right)
    return float(np.sum(np.abs(diff), dtype=np.float64))


class BlockScorer(Enum):
    """Scorer choice for block matching."""
    SSD = "ssd"
    SAD = "sad"

    @classmethod
    def from_flag(cls, ssd_approach: bool) -> "BlockScorer":
        return cls.SSD if ssd_approach else cls.SAD

    def score(self, window_left: np.ndarray, window_right: np.ndarray) -> float:
        if self is BlockScorer.SSD:
            return ssd(window_left, window_right)
        return sad(window_left, window_right)


def window_bounds(center: Tuple[int, int], half_win: Tuple[int, int]) -> Tuple[slice, slice]:
    """Row and column slices of the window centered on integer ``(x, y)``."""
    x, y = center
    half_w, half_h = half_win
    return slice(y - half_h, y + half_h + 1), slice(x - half_w, x + half_w + 1)
