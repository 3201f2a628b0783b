"""
Horizontally constrained pyramidal Lucas-Kanade tracking for stereo pairs.

This is OpenCV's ``calcOpticalFlowPyrLK`` with the motion model reduced to a
single horizontal degree of freedom: the vertical component of every Newton
step is zeroed, since corresponding points of a rectified pair share the
same row.

Sampling uses floating-point bilinear interpolation. Intensities are scaled
by 32 and derivatives are raw Scharr responses, and window sums are scaled
by 2^-20, which keeps minimum eigenvalues and tracking errors on the same
scale as OpenCV's fixed-point implementation (``min_eigen_threshold=1e-4``
means the same thing in both).
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
import numpy as np
import cv2

from stereo_depth.correspondence import CorrespondenceResult, as_points
from stereo_depth.errors import (
    EmptyImageError, EncodingError, ImageDimensionError, InvalidParameterError,
    InvalidPointsError, PyramidError, TerminationCriteriaError, WindowSizeError
)
from stereo_depth.logging_config import get_logger, PerformanceTimer
from stereo_depth.pyramid import ImagePyramid, build_pyramid

# Initialize logger
logger = get_logger(__name__)

INTENSITY_SCALE = 32.0
SUM_SCALE = 1.0 / (1 << 20)
FLT_EPSILON = float(np.finfo(np.float32).eps)
OSCILLATION_TOLERANCE = 0.01

DEFAULT_MAX_COUNT = 30
DEFAULT_EPSILON = 0.01


@dataclass
class TerminationCriteria:
    """Iteration stopping rule: maximum iteration count and/or minimum step."""
    max_count: Optional[int] = DEFAULT_MAX_COUNT
    epsilon: Optional[float] = DEFAULT_EPSILON

    def __post_init__(self):
        if self.max_count is None and self.epsilon is None:
            raise TerminationCriteriaError(
                "At least one of max_count or epsilon is required"
            )

    @classmethod
    def from_cv(cls, criteria: Tuple[int, int, float]) -> 'TerminationCriteria':
        """Create criteria from an OpenCV ``(type, max_count, epsilon)`` tuple."""
        criteria_type, max_count, epsilon = criteria
        use_count = bool(criteria_type & cv2.TERM_CRITERIA_COUNT)
        use_eps = bool(criteria_type & cv2.TERM_CRITERIA_EPS)
        return cls(
            max_count=int(max_count) if use_count else None,
            epsilon=float(epsilon) if use_eps else None
        )

    def resolved(self) -> Tuple[int, float]:
        """
        Effective (max_count, squared epsilon).

        max_count is clamped to [0, 100] (default 30) and epsilon to
        [0, 10] (default 0.01) before squaring.
        """
        if self.max_count is None:
            max_count = DEFAULT_MAX_COUNT
        else:
            max_count = min(max(int(self.max_count), 0), 100)

        if self.epsilon is None:
            epsilon = DEFAULT_EPSILON
        else:
            epsilon = min(max(float(self.epsilon), 0.0), 10.0)

        return max_count, epsilon * epsilon


def _bilinear_window(padded: np.ndarray, border: Tuple[int, int],
                     ix: int, iy: int, a: float, b: float,
                     win_w: int, win_h: int) -> np.ndarray:
    """Window of ``win_h x win_w`` samples whose top-left is at ``(ix + a, iy + b)``."""
    x0 = ix + border[0]
    y0 = iy + border[1]
    patch = padded[y0:y0 + win_h + 1, x0:x0 + win_w + 1]

    w00 = (1.0 - a) * (1.0 - b)
    w01 = a * (1.0 - b)
    w10 = (1.0 - a) * b
    w11 = 1.0 - w00 - w01 - w10

    return (patch[:-1, :-1] * w00 + patch[:-1, 1:] * w01 +
            patch[1:, :-1] * w10 + patch[1:, 1:] * w11)


def _out_of_bounds(ix: int, iy: int, win_w: int, win_h: int, cols: int, rows: int) -> bool:
    return ix < -win_w or ix >= cols or iy < -win_h or iy >= rows


class StereoOpticalFlow:
    """
    Sparse stereo correspondence by horizontally constrained Lucas-Kanade.

    Points of the first (left) image are tracked into the second (right)
    image from the coarsest pyramid level to full resolution.
    """

    def __init__(
        self,
        win_size: Tuple[int, int] = (21, 21),
        max_level: int = 3,
        criteria: Optional[TerminationCriteria] = None,
        min_eigen_threshold: float = 1e-4
    ):
        """
        Initialize the tracker.

        Args:
            win_size: (width, height) of the integration window, both > 2
            max_level: Coarsest pyramid level (0 = single level)
            criteria: Termination criteria, defaults to 30 iterations / 0.01 px
            min_eigen_threshold: Minimum normalized eigenvalue of the gradient
                structure matrix below which a point is not trackable
        """
        win_w, win_h = int(win_size[0]), int(win_size[1])
        if win_w <= 2 or win_h <= 2:
            raise WindowSizeError(
                "Window size must be > 2 in both dimensions",
                details={"win_size": win_size}
            )
        if max_level < 0:
            raise InvalidParameterError(
                "max_level must be non-negative", details={"max_level": max_level}
            )

        self.win_size = (win_w, win_h)
        self.max_level = int(max_level)
        self.criteria = criteria if criteria is not None else TerminationCriteria()
        self.min_eigen_threshold = float(min_eigen_threshold)

    @classmethod
    def from_config(cls, config) -> 'StereoOpticalFlow':
        """Create a tracker from an OpticalFlowConfig."""
        return cls(
            win_size=config.win_size,
            max_level=config.max_level,
            criteria=TerminationCriteria(max_count=config.iterations, epsilon=config.epsilon),
            min_eigen_threshold=config.min_eigen_threshold
        )

    def build_pyramids(
        self,
        prev: Union[np.ndarray, ImagePyramid],
        next_: Union[np.ndarray, ImagePyramid]
    ) -> Tuple[ImagePyramid, ImagePyramid, int]:
        """Build (or validate prebuilt) pyramids and return the usable level count."""
        if isinstance(prev, ImagePyramid):
            prev_pyramid = prev
            if not prev_pyramid.has_derivatives:
                raise PyramidError("The first pyramid must carry derivatives")
        else:
            self._check_image(prev, "prev")
            prev_pyramid = build_pyramid(prev, self.win_size, self.max_level, with_derivatives=True)

        max_level = min(self.max_level, prev_pyramid.max_level)

        if isinstance(next_, ImagePyramid):
            next_pyramid = next_
        else:
            self._check_image(next_, "next")
            next_pyramid = build_pyramid(next_, self.win_size, max_level)

        max_level = min(max_level, next_pyramid.max_level)

        for level in range(max_level + 1):
            prev_level = prev_pyramid.level(level)
            next_level = next_pyramid.level(level)
            if prev_level.shape != next_level.shape:
                raise ImageDimensionError(
                    "Pyramid level sizes differ",
                    details={"level": level, "prev_shape": prev_level.shape,
                             "next_shape": next_level.shape}
                )
            if prev_level.dtype != next_level.dtype:
                raise EncodingError(
                    "Pyramid level encodings differ",
                    details={"level": level, "prev_dtype": str(prev_level.dtype),
                             "next_dtype": str(next_level.dtype)}
                )

        return prev_pyramid, next_pyramid, max_level

    @staticmethod
    def _check_image(image: np.ndarray, name: str) -> None:
        if image is None or image.size == 0:
            raise EmptyImageError(f"Image '{name}' is empty or None")
        if image.ndim != 2 or image.dtype not in (np.uint8, np.float32):
            raise EncodingError(
                "Tracking requires single-channel uint8 or float32 images",
                details={"image": name, "dtype": str(image.dtype), "shape": image.shape}
            )

    def track(
        self,
        prev: Union[np.ndarray, ImagePyramid],
        next_: Union[np.ndarray, ImagePyramid],
        prev_points,
        next_points=None,
        use_initial_flow: bool = False,
        get_min_eigenvalues: bool = False,
        compute_error: bool = True
    ) -> CorrespondenceResult:
        """
        Track points from the first image into the second.

        Args:
            prev: First (left) image or its pyramid (with derivatives)
            next_: Second (right) image or its pyramid
            prev_points: (N, 2) points in the first image
            next_points: (N, 2) initial estimates, used with ``use_initial_flow``
            use_initial_flow: Start the coarsest level from ``next_points``
            get_min_eigenvalues: Report the minimum eigenvalue as error
            compute_error: Report an error value per point

        Returns:
            CorrespondenceResult with tracked points, status and optional error
        """
        points = as_points(prev_points)
        n = points.shape[0]

        if n == 0:
            return CorrespondenceResult(
                points=np.zeros((0, 2), dtype=np.float32),
                status=np.zeros(0, dtype=np.uint8),
                error=np.zeros(0, dtype=np.float32) if compute_error else None
            )

        initial = None
        if use_initial_flow:
            if next_points is None:
                raise InvalidPointsError("use_initial_flow requires next_points")
            initial = as_points(next_points)
            if initial.shape[0] != n:
                raise InvalidPointsError(
                    "Initial estimates and points differ in length",
                    details={"points": n, "initial": initial.shape[0]}
                )

        with PerformanceTimer(logger, "Stereo optical flow"):
            prev_pyramid, next_pyramid, max_level = self.build_pyramids(prev, next_)

            border = (self.win_size[0] + 1, self.win_size[1] + 1)
            prev_levels: List[Tuple[np.ndarray, np.ndarray]] = []
            next_levels: List[np.ndarray] = []
            for level in range(max_level + 1):
                prev_levels.append(prev_pyramid.padded(level, border))
                next_levels.append(next_pyramid.padded(level, border)[0])

            next_out = np.zeros((n, 2), dtype=np.float32)
            status = np.ones(n, dtype=np.uint8)
            errors = np.zeros(n, dtype=np.float32) if (compute_error or get_min_eigenvalues) else None
            total_iterations = 0

            for i in range(n):
                result = self._track_point(
                    points[i],
                    None if initial is None else initial[i],
                    prev_pyramid, prev_levels, next_levels, border, max_level,
                    errors is not None, get_min_eigenvalues
                )
                next_out[i], valid, err, iterations = result
                status[i] = 1 if valid else 0
                total_iterations += iterations
                if errors is not None:
                    errors[i] = err

        logger.debug(
            "Stereo optical flow completed",
            valid=int(status.sum()),
            total=n,
            levels=max_level + 1,
            iterations=total_iterations
        )

        return CorrespondenceResult(
            points=next_out,
            status=status,
            error=errors,
            statistics={"iterations": float(total_iterations),
                        "accepted": float(status.sum())}
        )

    def _track_point(
        self,
        point: np.ndarray,
        initial: Optional[np.ndarray],
        prev_pyramid: ImagePyramid,
        prev_levels: List[Tuple[np.ndarray, np.ndarray]],
        next_levels: List[np.ndarray],
        border: Tuple[int, int],
        max_level: int,
        want_error: bool,
        get_min_eigenvalues: bool
    ) -> Tuple[Tuple[float, float], bool, float, int]:
        win_w, win_h = self.win_size
        half_w = (win_w - 1) * 0.5
        half_h = (win_h - 1) * 0.5
        max_count, epsilon_sq = self.criteria.resolved()

        valid = True
        err = 0.0
        iterations = 0
        next_x = next_y = 0.0

        for level in range(max_level, -1, -1):
            inv_scale = 1.0 / (1 << level)
            rows, cols = prev_pyramid.level(level).shape[:2]
            prev_image, prev_deriv = prev_levels[level]
            next_image = next_levels[level]

            prev_x = float(point[0]) * inv_scale
            prev_y = float(point[1]) * inv_scale
            if level == max_level:
                if initial is not None:
                    next_x = float(initial[0]) * inv_scale
                    next_y = float(initial[1]) * inv_scale
                else:
                    next_x, next_y = prev_x, prev_y
            else:
                next_x *= 2.0
                next_y *= 2.0

            prev_x -= half_w
            prev_y -= half_h
            ix = int(np.floor(prev_x))
            iy = int(np.floor(prev_y))

            if _out_of_bounds(ix, iy, win_w, win_h, cols, rows):
                if level == 0:
                    valid = False
                    err = 0.0
                continue

            a = prev_x - ix
            b = prev_y - iy
            i_win = _bilinear_window(prev_image, border, ix, iy, a, b, win_w, win_h) * INTENSITY_SCALE
            d_win = _bilinear_window(prev_deriv, border, ix, iy, a, b, win_w, win_h)
            ix_win = d_win[..., 0]
            iy_win = d_win[..., 1]

            a11 = float(np.sum(ix_win * ix_win)) * SUM_SCALE
            a12 = float(np.sum(ix_win * iy_win)) * SUM_SCALE
            a22 = float(np.sum(iy_win * iy_win)) * SUM_SCALE

            det = a11 * a22 - a12 * a12
            min_eig = (a22 + a11 - np.sqrt((a11 - a22) ** 2 + 4.0 * a12 * a12)) / (2.0 * win_w * win_h)

            if want_error and get_min_eigenvalues:
                err = float(min_eig)

            if min_eig < self.min_eigen_threshold or det < FLT_EPSILON:
                if level == 0:
                    valid = False
                continue

            inv_det = 1.0 / det

            x = next_x - half_w
            y = next_y - half_h
            prev_delta = 0.0
            for j in range(max_count):
                jx = int(np.floor(x))
                jy = int(np.floor(y))

                if _out_of_bounds(jx, jy, win_w, win_h, cols, rows):
                    if level == 0:
                        valid = False
                    break

                iterations += 1
                j_win = _bilinear_window(
                    next_image, border, jx, jy, x - jx, y - jy, win_w, win_h
                ) * INTENSITY_SCALE
                diff = j_win - i_win
                b1 = float(np.sum(diff * ix_win)) * SUM_SCALE
                b2 = float(np.sum(diff * iy_win)) * SUM_SCALE

                # vertical component of the step is dropped
                delta = (a12 * b2 - a22 * b1) * inv_det

                x += delta
                next_x = x + half_w
                next_y = y + half_h

                if delta * delta <= epsilon_sq:
                    break

                if j > 0 and abs(delta + prev_delta) < OSCILLATION_TOLERANCE:
                    next_x -= delta * 0.5
                    break
                prev_delta = delta

            if valid and want_error and level == 0 and not get_min_eigenvalues:
                x = next_x - half_w
                y = next_y - half_h
                jx = int(np.floor(x))
                jy = int(np.floor(y))

                if _out_of_bounds(jx, jy, win_w, win_h, cols, rows):
                    valid = False
                    continue

                j_win = _bilinear_window(
                    next_image, border, jx, jy, x - jx, y - jy, win_w, win_h
                ) * INTENSITY_SCALE
                err = float(np.sum(np.abs(j_win - i_win))) / (INTENSITY_SCALE * win_w * win_h)

        return (next_x, next_y), valid, err, iterations


def calc_optical_flow_pyr_lk_stereo(
    prev: Union[np.ndarray, ImagePyramid],
    next_: Union[np.ndarray, ImagePyramid],
    prev_points,
    next_points=None,
    win_size: Tuple[int, int] = (21, 21),
    max_level: int = 3,
    criteria: Tuple[int, int, float] = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, 30, 0.01),
    flags: int = 0,
    min_eig_threshold: float = 1e-4
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    OpenCV-style interface to ``StereoOpticalFlow``.

    ``flags`` accepts ``cv2.OPTFLOW_USE_INITIAL_FLOW`` and
    ``cv2.OPTFLOW_LK_GET_MIN_EIGENVALS``.

    Returns:
        Tuple of (next_points (N, 2), status (N,), error (N,))
    """
    tracker = StereoOpticalFlow(
        win_size=win_size,
        max_level=max_level,
        criteria=TerminationCriteria.from_cv(criteria),
        min_eigen_threshold=min_eig_threshold
    )
    result = tracker.track(
        prev,
        next_,
        prev_points,
        next_points=next_points,
        use_initial_flow=bool(flags & cv2.OPTFLOW_USE_INITIAL_FLOW),
        get_min_eigenvalues=bool(flags & cv2.OPTFLOW_LK_GET_MIN_EIGENVALS),
        compute_error=True
    )
    return result.points, result.status, result.error
