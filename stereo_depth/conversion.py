"""
Conversions between disparity, metric depth and millimetre depth maps.

Depth maps are either float32 in metres or uint16 in millimetres. In both
encodings a zero pixel means "no measurement". Values too far to be stored
in a uint16 millimetre map (65.535 m and beyond) are dropped to zero and
counted; the count is logged once per call.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import numpy as np
import cv2

from stereo_depth.correspondence import as_points
from stereo_depth.errors import (
    DepthConversionError, EmptyImageError, EncodingError, ImageDimensionError,
    InvalidParameterError, InvalidPointsError
)
from stereo_depth.logging_config import get_logger
from stereo_depth.optical_flow import StereoOpticalFlow, TerminationCriteria

# Initialize logger
logger = get_logger(__name__)

MAX_DEPTH_MM = 65535
FIXED_POINT_DISPARITY_SCALE = 16.0


@dataclass
class DepthConversion:
    """Converted depth map and the number of pixels dropped for overflow."""
    depth: np.ndarray
    overflow_count: int = 0


def _check_map(image: np.ndarray, name: str, dtypes: Tuple[type, ...]) -> None:
    if image is None or image.size == 0:
        raise EmptyImageError(f"{name} is empty or None")
    if image.ndim != 2 or image.dtype not in dtypes:
        raise EncodingError(
            f"Unsupported {name} encoding",
            details={"dtype": str(image.dtype), "shape": image.shape,
                     "expected": [np.dtype(t).name for t in dtypes]}
        )


def disparity_to_float(disparity: np.ndarray) -> np.ndarray:
    """Float32 disparity in pixels from a float32 or fixed-point int16 map."""
    _check_map(disparity, "Disparity map", (np.float32, np.int16))
    if disparity.dtype == np.int16:
        return disparity.astype(np.float32) / FIXED_POINT_DISPARITY_SCALE
    return disparity


def _quantize_millimeters(depth_m: np.ndarray) -> Tuple[np.ndarray, int]:
    """Truncate metres to uint16 millimetres; returns (depth_mm, overflow_count)."""
    scaled = depth_m.astype(np.float32) * np.float32(1000.0)
    with np.errstate(invalid='ignore'):
        overflow = scaled >= MAX_DEPTH_MM
        in_range = (scaled > 0) & ~overflow

    depth_mm = np.zeros(depth_m.shape, dtype=np.uint16)
    depth_mm[in_range] = scaled[in_range].astype(np.uint16)
    return depth_mm, int(np.count_nonzero(overflow))


def _warn_overflow(count: int) -> None:
    if count:
        logger.warning(
            "Depth conversion dropped values over the maximum depth allowed (65535 mm). "
            "32-bit depth images should be in metres and 16-bit images in millimetres.",
            dropped=count
        )


def depth_from_disparity(
    disparity: np.ndarray,
    fx: float,
    baseline: float,
    dtype=np.float32
) -> DepthConversion:
    """
    Convert a disparity map to a depth map: ``depth = baseline * fx / disparity``.

    Pixels with non-positive disparity get depth 0.

    Args:
        disparity: float32 disparity or int16 fixed-point (x16) disparity
        fx: Focal length in pixels
        baseline: Stereo baseline in metres
        dtype: ``np.float32`` for metres or ``np.uint16`` for millimetres

    Returns:
        DepthConversion with the depth map and the overflow count
    """
    disp = disparity_to_float(disparity)
    if np.dtype(dtype) not in (np.dtype(np.float32), np.dtype(np.uint16)):
        raise DepthConversionError(
            "Depth type must be float32 (metres) or uint16 (millimetres)",
            details={"dtype": np.dtype(dtype).name}
        )

    depth_m = np.zeros(disp.shape, dtype=np.float32)
    valid = disp > 0
    depth_m[valid] = np.float32(baseline * fx) / disp[valid]
    depth_m[depth_m < 0] = 0.0

    if np.dtype(dtype) == np.dtype(np.float32):
        return DepthConversion(depth=depth_m)

    depth_mm, overflow = _quantize_millimeters(depth_m)
    _warn_overflow(overflow)
    return DepthConversion(depth=depth_mm, overflow_count=overflow)


def depth_meters_to_millimeters(depth: np.ndarray) -> DepthConversion:
    """
    Quantize a float32 metre depth map to uint16 millimetres.

    Values are multiplied by 1000 and truncated. Non-positive and NaN values
    become 0 silently; values of 65535 mm or more become 0 and are counted.
    """
    _check_map(depth, "Depth map", (np.float32,))
    depth_mm, overflow = _quantize_millimeters(depth)
    _warn_overflow(overflow)
    return DepthConversion(depth=depth_mm, overflow_count=overflow)


def depth_millimeters_to_meters(depth: np.ndarray) -> np.ndarray:
    """Convert a uint16 millimetre depth map to float32 metres."""
    _check_map(depth, "Depth map", (np.uint16,))
    return depth.astype(np.float32) / np.float32(1000.0)


def get_depth(
    depth_image: np.ndarray,
    x: float,
    y: float,
    smoothing: bool = True,
    max_z_error: float = 0.02
) -> float:
    """
    Depth in metres at a sub-pixel location.

    With smoothing, the center pixel (weight 4) is averaged with its
    4-connected (weight 2) and diagonal (weight 1) neighbours. Neighbours
    that are zero, non-finite or differ from the center by more than
    ``max_z_error`` metres are left out.

    Args:
        depth_image: float32 metres or uint16 millimetres
        x, y: Query location, rounded to the nearest pixel
        smoothing: Apply the weighted neighbourhood average
        max_z_error: Largest accepted neighbour deviation in metres

    Returns:
        Depth in metres, 0 if the location is outside the image or the
        center pixel has no valid depth
    """
    _check_map(depth_image, "Depth image", (np.float32, np.uint16))

    u = int(x + 0.5)
    v = int(y + 0.5)
    rows, cols = depth_image.shape

    if not (0 <= u < cols and 0 <= v < rows):
        logger.debug("Depth query outside image", x=x, y=y, cols=cols, rows=rows)
        return 0.0

    in_mm = depth_image.dtype == np.uint16

    def value(vv: int, uu: int) -> float:
        d = float(depth_image[vv, uu])
        return d * 0.001 if in_mm else d

    depth = value(v, u)
    if depth == 0.0 or not np.isfinite(depth):
        return 0.0

    if not smoothing:
        return depth

    sum_weights = 4.0
    sum_depths = depth * 4.0
    for uu in range(max(u - 1, 0), min(u + 1, cols - 1) + 1):
        for vv in range(max(v - 1, 0), min(v + 1, rows - 1) + 1):
            if uu == u and vv == v:
                continue
            d = value(vv, uu)
            if d == 0.0 or not np.isfinite(d) or abs(d - depth) > max_z_error:
                continue
            weight = 2.0 if (uu == u or vv == v) else 1.0
            sum_weights += weight
            sum_depths += d * weight

    return sum_depths / sum_weights


def _correspondence_pixels(shape: Tuple[int, int], left: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    finite = np.isfinite(left).all(axis=1)
    safe = np.where(finite[:, None], left, -1.0)
    rows = (safe[:, 1] + 0.5).astype(np.int64)
    cols = (safe[:, 0] + 0.5).astype(np.int64)
    inside = finite & (rows >= 0) & (rows < shape[0]) & (cols >= 0) & (cols < shape[1])
    return rows, cols, inside


def _selected(left_points, right_points, mask) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    left = as_points(left_points)
    right = as_points(right_points)
    if left.shape[0] != right.shape[0]:
        raise InvalidPointsError(
            "Left and right points differ in length",
            details={"left": left.shape[0], "right": right.shape[0]}
        )
    if mask is None or len(mask) == 0:
        selected = np.ones(left.shape[0], dtype=bool)
    else:
        selected = np.asarray(mask).reshape(-1).astype(bool)
        if selected.shape[0] != left.shape[0]:
            raise InvalidPointsError(
                "Mask and points differ in length",
                details={"points": left.shape[0], "mask": selected.shape[0]}
            )
    return left, right, selected


def disparity_from_correspondences(
    shape: Tuple[int, int],
    left_points,
    right_points,
    mask=None
) -> np.ndarray:
    """
    Sparse float32 disparity map from stereo correspondences.

    Each selected correspondence writes ``left.x - right.x`` at the left
    point's nearest pixel; other pixels stay 0. Points outside the map are
    skipped.

    Args:
        shape: (rows, cols) of the output map
        left_points: (N, 2) left points
        right_points: (N, 2) right points
        mask: Optional (N,) validity mask (e.g. a correspondence status)
    """
    left, right, selected = _selected(left_points, right_points, mask)
    disparity = np.zeros(shape, dtype=np.float32)

    rows, cols, inside = _correspondence_pixels(shape, left)
    skipped = int(np.count_nonzero(selected & ~inside))
    if skipped:
        logger.warning("Correspondences outside the disparity map skipped", skipped=skipped)

    keep = selected & inside
    disparity[rows[keep], cols[keep]] = left[keep, 0] - right[keep, 0]
    return disparity


def depth_from_correspondences(
    shape: Tuple[int, int],
    left_points,
    right_points,
    fx: float,
    baseline: float,
    mask=None
) -> np.ndarray:
    """
    Sparse float32 depth map (metres) from stereo correspondences.

    Only correspondences with positive disparity produce a depth.
    """
    left, right, selected = _selected(left_points, right_points, mask)
    depth = np.zeros(shape, dtype=np.float32)

    disparity = left[:, 0] - right[:, 0]
    rows, cols, inside = _correspondence_pixels(shape, left)
    keep = selected & inside & (disparity > 0)
    depth[rows[keep], cols[keep]] = np.float32(baseline * fx) / disparity[keep]
    return depth


def depth_from_stereo_images(
    left: np.ndarray,
    right: np.ndarray,
    left_points,
    fx: float,
    baseline: float,
    win_size: int = 9,
    max_level: int = 4,
    iterations: int = 20,
    epsilon: float = 0.02
) -> np.ndarray:
    """
    Sparse depth at left feature points tracked into the right image.

    Points are tracked with the horizontally constrained stereo optical
    flow; untrackable points are left at 0.
    """
    for name, image in (("left", left), ("right", right)):
        if image is None or image.size == 0:
            raise EmptyImageError(f"Image '{name}' is empty or None")
        if image.dtype != np.uint8 or image.ndim != 2:
            raise EncodingError(
                "Stereo images must be 8-bit single channel",
                details={"image": name, "dtype": str(image.dtype), "shape": image.shape}
            )
    if left.shape != right.shape:
        raise ImageDimensionError(
            "Image dimensions mismatch",
            details={"left_shape": left.shape, "right_shape": right.shape}
        )
    if not (fx > 0 and baseline > 0):
        raise InvalidParameterError(
            "fx and baseline must be positive", details={"fx": fx, "baseline": baseline}
        )

    tracker = StereoOpticalFlow(
        win_size=(win_size, win_size),
        max_level=max_level,
        criteria=TerminationCriteria(max_count=iterations, epsilon=epsilon)
    )
    result = tracker.track(left, right, left_points, get_min_eigenvalues=True)
    return depth_from_correspondences(
        left.shape, left_points, result.points, fx, baseline, mask=result.status
    )


def decimate(image: np.ndarray, decimation: int) -> np.ndarray:
    """
    Reduce image resolution by an integer factor.

    Depth maps (float32 / uint16) are subsampled exactly, keeping every
    ``decimation``-th pixel so no depth values are blended; other images
    are resized with area interpolation.
    """
    if decimation < 1:
        raise InvalidParameterError(
            "decimation must be >= 1", details={"decimation": decimation}
        )
    if image is None or image.size == 0:
        return image
    if decimation == 1:
        return image

    if image.ndim == 2 and image.dtype in (np.float32, np.uint16):
        rows, cols = image.shape
        if rows % decimation != 0 or cols % decimation != 0:
            raise ImageDimensionError(
                "Decimation of depth images should be exact",
                details={"shape": image.shape, "decimation": decimation}
            )
        return np.ascontiguousarray(image[::decimation, ::decimation])

    return cv2.resize(
        image, None, fx=1.0 / decimation, fy=1.0 / decimation,
        interpolation=cv2.INTER_AREA
    )
