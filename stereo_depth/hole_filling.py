"""Neighbour interpolation of small gaps in registered depth maps."""

from typing import Optional
import numpy as np

from stereo_depth.config import HoleFillingConfig
from stereo_depth.errors import HoleFillingError
from stereo_depth.logging_config import get_logger

# Initialize logger
logger = get_logger(__name__)


def _consistent(a: int, c: int) -> Optional[int]:
    """Tolerance (1% of the mean) if ``a`` and ``c`` agree within it, else None."""
    error = int(0.01 * ((a + c) // 2))
    if abs(a - c) <= error:
        return error
    return None


def _fill_single(depth: np.ndarray, b_index, a: int, c: int) -> bool:
    """Set ``b`` to the mean of ``a`` and ``c`` if it is a hole or an outlier."""
    if not (a and c):
        return False
    error = _consistent(a, c)
    if error is None:
        return False
    b = int(depth[b_index])
    if b == 0 or (b > a + error and b > c + error):
        depth[b_index] = (a + c) // 2
        return True
    return False


def _fill_double(depth: np.ndarray, b_index, c_index, a: int, d: int) -> bool:
    """Bridge a two-pixel gap ``b, c`` between ``a`` and ``d`` at 1/4 and 3/4."""
    b = int(depth[b_index])
    c = int(depth[c_index])
    if not (a and d and (b == 0 or c == 0)):
        return False
    error = _consistent(a, d)
    if error is None:
        return False
    b_gap = b == 0 or (b > a + error and b > d + error)
    c_gap = c == 0 or (c > a + error and c > d + error)
    if not (b_gap and c_gap):
        return False

    low = min(a, d)
    quarter = abs(a - d) // 4
    depth[b_index] = low + quarter
    depth[c_index] = low + 3 * quarter
    return True


def fill_registered_depth_holes(
    depth: np.ndarray,
    vertical: bool = True,
    horizontal: bool = False,
    fill_double_holes: bool = False
) -> np.ndarray:
    """
    Fill one- or two-pixel holes of a registered depth map in place.

    Interior pixels are visited column by column. A pixel that is empty, or
    farther than both of its neighbours, takes the mean of the two neighbours
    when they agree within 1% of their mean. Vertical neighbours are tried
    first, then horizontal ones. With ``fill_double_holes`` a two-pixel gap
    is bridged from the neighbours two pixels away. When horizontal filling
    is off, rows filled vertically are skipped for the rest of the column.

    Args:
        depth: uint16 depth map in millimetres, modified in place
        vertical: Interpolate between the pixels above and below
        horizontal: Interpolate between the pixels left and right
        fill_double_holes: Also bridge gaps of two pixels

    Returns:
        The same array, for chaining
    """
    if depth is None or depth.ndim != 2 or depth.dtype != np.uint16:
        raise HoleFillingError(
            "Hole filling requires a uint16 millimetre depth map",
            details={"dtype": None if depth is None else str(depth.dtype),
                     "shape": None if depth is None else depth.shape}
        )

    rows, cols = depth.shape
    margin = 2 if fill_double_holes else 1
    filled = 0

    for x in range(1, cols - margin):
        y = 1
        while y < rows - margin:
            done = False
            if vertical:
                a = int(depth[y - 1, x])
                c = int(depth[y + 1, x])
                done = _fill_single(depth, (y, x), a, c)
                if done and not horizontal:
                    y += 1
                if not done and fill_double_holes:
                    d = int(depth[y + 2, x])
                    done = _fill_double(depth, (y, x), (y + 1, x), a, d)
                    if done and not horizontal:
                        y += 2
            if not done and horizontal:
                a = int(depth[y, x - 1])
                c = int(depth[y, x + 1])
                done = _fill_single(depth, (y, x), a, c)
                if not done and fill_double_holes:
                    d = int(depth[y, x + 2])
                    done = _fill_double(depth, (y, x), (y, x + 1), a, d)
            if done:
                filled += 1
            y += 1

    logger.debug("Registered depth holes filled", filled=filled)
    return depth


class HoleFiller:
    """Configured hole-filling step."""

    def __init__(self, config: Optional[HoleFillingConfig] = None):
        self.config = config if config is not None else HoleFillingConfig()

    def apply(self, depth: np.ndarray) -> np.ndarray:
        """Fill holes in place according to the configuration."""
        if not self.config.enabled:
            return depth
        return fill_registered_depth_holes(
            depth,
            vertical=self.config.vertical,
            horizontal=self.config.horizontal,
            fill_double_holes=self.config.fill_double_holes
        )
