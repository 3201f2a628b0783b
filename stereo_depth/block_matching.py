"""Pyramidal block-matching correspondence search for rectified stereo pairs."""

from dataclasses import dataclass
from typing import Dict, Tuple
import time
import numpy as np
import cv2

from stereo_depth.correspondence import CorrespondenceResult, as_points
from stereo_depth.errors import (
    EmptyImageError, EncodingError, ImageDimensionError, InvalidParameterError,
    CorrespondenceError
)
from stereo_depth.logging_config import get_logger
from stereo_depth.pyramid import ImagePyramid, build_pyramid, level_scale, scale_point
from stereo_depth.scoring import BlockScorer, window_bounds

# Initialize logger
logger = get_logger(__name__)


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _trunc_mod(a: int, b: int) -> int:
    """Remainder whose sign follows the dividend."""
    return a - b * _trunc_div(a, b)


def odd_window(win_size: Tuple[int, int]) -> Tuple[int, int]:
    """Round each window dimension up to the next odd value."""
    width, height = int(win_size[0]), int(win_size[1])
    if width < 1 or height < 1:
        raise InvalidParameterError(
            "Window size must be positive", details={"win_size": win_size}
        )
    if width % 2 == 0:
        width += 1
    if height % 2 == 0:
        height += 1
    return width, height


@dataclass
class _PointMatch:
    x: float
    score: float
    second_best: float
    valid: bool
    refined: bool
    candidates: int


class StereoBlockMatcher:
    """
    Coarse-to-fine block matcher for sparse stereo correspondences.

    For every left feature point an exhaustive integer disparity search is
    run from the coarsest pyramid level down to full resolution, each level
    narrowing the disparity range handed to the next one. The level-0 integer
    match is then refined to sub-pixel precision by a bracketing search on
    bilinearly interpolated windows.

    Disparities are searched as negative horizontal offsets: a left point at
    ``x`` matches a right point at ``x - disparity``. The integer search
    covers ``min_disparity <= disparity < max_disparity``; sub-pixel
    refinement may move a match up to one pixel beyond that range.
    """

    def __init__(
        self,
        win_size: Tuple[int, int] = (5, 5),
        max_level: int = 3,
        iterations: int = 30,
        min_disparity: int = 0,
        max_disparity: int = 64,
        scorer: BlockScorer = BlockScorer.SSD
    ):
        """
        Initialize the block matcher.

        Args:
            win_size: (width, height) of the matching window, forced to odd
            max_level: Coarsest pyramid level searched
            iterations: Upper bound on sub-pixel refinement iterations
            min_disparity: Smallest disparity searched (pixels, level 0)
            max_disparity: Exclusive upper bound of the searched disparities
            scorer: Block dissimilarity score
        """
        if max_level < 0:
            raise InvalidParameterError(
                "max_level must be non-negative", details={"max_level": max_level}
            )
        if iterations < 0:
            raise InvalidParameterError(
                "iterations must be non-negative", details={"iterations": iterations}
            )
        if max_disparity <= min_disparity:
            raise InvalidParameterError(
                "max_disparity must be > min_disparity",
                details={"min_disparity": min_disparity, "max_disparity": max_disparity}
            )

        self.win_size = odd_window(win_size)
        self.half_win = ((self.win_size[0] - 1) // 2, (self.win_size[1] - 1) // 2)
        self.max_level = int(max_level)
        self.iterations = int(iterations)
        self.min_disparity = int(min_disparity)
        self.max_disparity = int(max_disparity)
        self.scorer = scorer

    @classmethod
    def from_config(cls, config) -> 'StereoBlockMatcher':
        """Create a matcher from a BlockMatchingConfig."""
        return cls(
            win_size=config.win_size,
            max_level=config.max_level,
            iterations=config.iterations,
            min_disparity=config.min_disparity,
            max_disparity=config.max_disparity,
            scorer=BlockScorer.from_flag(config.ssd)
        )

    def match(self, left: np.ndarray, right: np.ndarray, left_points) -> CorrespondenceResult:
        """
        Find right-image correspondences for left feature points.

        Args:
            left: Left rectified image (uint8 or float32, single channel)
            right: Right rectified image, same shape and dtype as ``left``
            left_points: (N, 2) feature points in the left image

        Returns:
            CorrespondenceResult with right points, status, the refined score
            as ``error`` and the level-0 second-best score as ``second_best``

        Raises:
            EmptyImageError: If an image is empty
            ImageDimensionError: If the images differ in shape
            EncodingError: If the images differ in dtype or are not gray
        """
        self._check_images(left, right)
        points = as_points(left_points)

        start = time.perf_counter()
        left_pyramid = build_pyramid(left, self.win_size, self.max_level)
        right_pyramid = build_pyramid(right, self.win_size, left_pyramid.max_level)
        max_level = min(left_pyramid.max_level, right_pyramid.max_level)
        pyramid_time = time.perf_counter() - start

        n = points.shape[0]
        right_points = np.zeros((n, 2), dtype=np.float32)
        status = np.zeros(n, dtype=np.uint8)
        scores = np.zeros(n, dtype=np.float32)
        second_best = np.full(n, np.nan, dtype=np.float32)

        total_candidates = 0
        refined = 0
        start = time.perf_counter()
        try:
            for i in range(n):
                result = self._match_point(points[i], left_pyramid, right_pyramid, max_level)
                total_candidates += result.candidates
                if not result.valid:
                    continue
                right_points[i] = (result.x, points[i, 1])
                status[i] = 1
                scores[i] = result.score
                second_best[i] = result.second_best
                if result.refined:
                    refined += 1
        except cv2.error as e:
            raise CorrespondenceError(
                "OpenCV error during block matching",
                details={"opencv_error": str(e)}
            )
        search_time = time.perf_counter() - start

        statistics = {
            "candidates": float(total_candidates),
            "sub_pixel_refined": float(refined),
            "accepted": float(status.sum()),
            "pyramid_seconds": pyramid_time,
            "search_seconds": search_time,
        }
        logger.debug(
            "Block matching completed",
            sub_pixel=f"{refined}/{int(status.sum())}",
            total=n,
            candidates=total_candidates,
            pyramid_seconds=f"{pyramid_time:.4f}",
            search_seconds=f"{search_time:.4f}"
        )

        return CorrespondenceResult(
            points=right_points,
            status=status,
            error=scores,
            second_best=second_best,
            statistics=statistics
        )

    def _check_images(self, left: np.ndarray, right: np.ndarray) -> None:
        if left is None or right is None or left.size == 0 or right.size == 0:
            raise EmptyImageError(
                "Invalid input images",
                details={"left_is_none": left is None, "right_is_none": right is None}
            )
        if left.shape != right.shape:
            raise ImageDimensionError(
                "Image dimensions mismatch",
                details={"left_shape": left.shape, "right_shape": right.shape}
            )
        if left.dtype != right.dtype or left.ndim != 2 or left.dtype not in (np.uint8, np.float32):
            raise EncodingError(
                "Block matching requires two single-channel uint8 or float32 images",
                details={"left_dtype": str(left.dtype), "right_dtype": str(right.dtype),
                         "ndim": left.ndim}
            )

    def _match_point(
        self,
        point: np.ndarray,
        left_pyramid: ImagePyramid,
        right_pyramid: ImagePyramid,
        max_level: int
    ) -> _PointMatch:
        half_w, half_h = self.half_win
        x, y = float(point[0]), float(point[1])

        tmp_min = self.min_disparity
        tmp_max = self.max_disparity
        candidates = 0
        level0_candidates = 0
        best_index = -1
        best_score = None
        second_best = None
        local_min = 0
        center = (0, 0)

        for level in range(max_level, -1, -1):
            scale = level_scale(level)
            left_image = left_pyramid.level(level)
            right_image = right_pyramid.level(level)
            rows, cols = left_image.shape[:2]

            sx, sy = scale_point((x, y), level)
            center = (int(sx), int(sy))
            cx, cy = center

            best_index = -1
            best_score = None
            second_best = None
            local_max = _trunc_div(-tmp_max, scale)
            local_min = _trunc_div(-tmp_min, scale)

            margin = 1 if level == 0 else 0
            if not (cx - half_w - margin >= 0 and cx + half_w + margin < cols and
                    cy - half_h >= 0 and cy + half_h < rows):
                continue

            window_left = left_image[window_bounds(center, self.half_win)]

            # Keep the leftmost and rightmost right-image windows inside the image
            min_col = cx + local_max - half_w - 1
            if min_col < 0:
                local_max -= min_col
            max_col = cx + local_min + half_w + 1
            if max_col >= cols:
                local_min -= max_col - (cols - 1)

            if local_min < local_max:
                local_max = local_min
            stop = local_max if local_min > local_max else local_max - 1

            index = 0
            for d in range(local_min, stop, -1):
                if cx + d - half_w < 0 or cx + d + half_w >= cols:
                    index += 1
                    continue
                candidates += 1
                if level == 0:
                    level0_candidates += 1
                window_right = right_image[window_bounds((cx + d, cy), self.half_win)]
                score = self.scorer.score(window_left, window_right)
                if best_score is None or score < best_score:
                    second_best = best_score
                    best_score = score
                    best_index = index
                elif second_best is None or score < second_best:
                    second_best = score
                index += 1

            if best_index >= 0 and level > 0:
                # Narrow the search around the best candidate for the finer level
                tmp_max = tmp_min + (best_index + 1) * scale
                tmp_max += _trunc_mod(tmp_max, level)
                if tmp_max > self.max_disparity:
                    tmp_max = self.max_disparity
                tmp_min = tmp_min + (best_index - 1) * scale
                tmp_min -= _trunc_mod(tmp_min, level)
                if tmp_min < self.min_disparity:
                    tmp_min = self.min_disparity

        if best_index < 0:
            return _PointMatch(x=0.0, score=0.0, second_best=np.nan, valid=False,
                               refined=False, candidates=candidates)

        seed = x + float(local_min - best_index)
        xc, vc, valid = self._refine(
            left_pyramid.level(0), right_pyramid.level(0), x, y, seed, best_score,
            min(self.iterations, level0_candidates)
        )

        return _PointMatch(
            x=xc,
            score=vc,
            second_best=np.nan if second_best is None else second_best,
            valid=valid,
            refined=valid and xc != seed,
            candidates=candidates
        )

    def _refine(
        self,
        left_image: np.ndarray,
        right_image: np.ndarray,
        x: float,
        y: float,
        seed: float,
        seed_score: float,
        iterations: int
    ) -> Tuple[float, float, bool]:
        """
        Sub-pixel refinement around the integer match ``seed``.

        Scores at ``xc - step`` and ``xc + step`` are compared with the current
        score; the center moves to a strictly better neighbour, otherwise the
        step is halved. Returns (xc, score, valid); the match is rejected as
        soon as it drifts more than one pixel away from the seed.
        """
        window_left = cv2.getRectSubPix(left_image, self.win_size, (x, y), patchType=cv2.CV_32F)

        if x != float(int(x)):
            # the integer search scored a window centered on int(x)
            window_right = cv2.getRectSubPix(
                right_image, self.win_size, (seed, y), patchType=cv2.CV_32F
            )
            seed_score = self.scorer.score(window_left, window_right)

        cache: Dict[float, float] = {seed: seed_score}

        def sample(xs: float) -> float:
            if xs not in cache:
                window = cv2.getRectSubPix(
                    right_image, self.win_size, (xs, y), patchType=cv2.CV_32F
                )
                cache[xs] = self.scorer.score(window_left, window)
            return cache[xs]

        xc = seed
        vc = seed_score
        step = 0.5
        for _ in range(iterations):
            x1 = xc - step
            x2 = xc + step
            v1 = sample(x1)
            v2 = sample(x2)

            if v1 < vc and v1 < v2:
                xc, vc = x1, v1
            elif v2 < vc and v2 < v1:
                xc, vc = x2, v2
            else:
                step /= 2.0

            if xc < seed - 1.0 or xc > seed + 1.0:
                return xc, vc, False

        return xc, vc, True


def calc_stereo_correspondences(
    left: np.ndarray,
    right: np.ndarray,
    left_points,
    win_size: Tuple[int, int] = (5, 5),
    max_level: int = 3,
    iterations: int = 30,
    min_disparity: int = 0,
    max_disparity: int = 64,
    ssd_approach: bool = True
) -> CorrespondenceResult:
    """Functional shortcut for ``StereoBlockMatcher(...).match(...)``."""
    matcher = StereoBlockMatcher(
        win_size=win_size,
        max_level=max_level,
        iterations=iterations,
        min_disparity=min_disparity,
        max_disparity=max_disparity,
        scorer=BlockScorer.from_flag(ssd_approach)
    )
    return matcher.match(left, right, left_points)
