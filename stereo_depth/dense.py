"""Whole-image disparity from a rectified pair, computed by OpenCV's StereoBM."""

from typing import Optional
import numpy as np
import cv2

from stereo_depth.config import DenseStereoConfig
from stereo_depth.conversion import FIXED_POINT_DISPARITY_SCALE
from stereo_depth.errors import InvalidDisparityMapError
from stereo_depth.logging_config import get_logger, PerformanceTimer

# Initialize logger
logger = get_logger(__name__)


class DenseStereoSolver:
    """
    Dense block matcher used as an opaque disparity source.

    Given two equal-sized rectified images it returns a same-sized disparity
    map, either fixed-point int16 (disparity x 16) or float32 pixels.
    """

    def __init__(self, config: Optional[DenseStereoConfig] = None):
        """
        Initialize the solver.

        Args:
            config: StereoBM parameters. Defaults to a 15x15 block, 64
                disparities and strong speckle filtering.
        """
        self.config = config if config is not None else DenseStereoConfig()
        errors = self.config.validate()
        if errors:
            raise InvalidDisparityMapError(
                "Invalid dense stereo configuration",
                details={"errors": "; ".join(errors)}
            )
        self.stereo = self._create_matcher()

    def _create_matcher(self):
        c = self.config
        stereo = cv2.StereoBM_create(numDisparities=c.num_disparities, blockSize=c.block_size)
        stereo.setMinDisparity(c.min_disparity)
        stereo.setPreFilterSize(c.pre_filter_size)
        stereo.setPreFilterCap(c.pre_filter_cap)
        stereo.setUniquenessRatio(c.uniqueness_ratio)
        stereo.setTextureThreshold(c.texture_threshold)
        stereo.setSpeckleWindowSize(c.speckle_window_size)
        stereo.setSpeckleRange(c.speckle_range)
        return stereo

    def compute(self, left: np.ndarray, right: np.ndarray, dtype=np.int16) -> np.ndarray:
        """
        Compute disparity from a rectified stereo pair.

        Args:
            left: Left rectified image (8-bit gray or BGR)
            right: Right rectified image (8-bit gray)
            dtype: ``np.int16`` for fixed-point output, ``np.float32`` for pixels

        Returns:
            Disparity map with the shape of the input images

        Raises:
            InvalidDisparityMapError: If inputs are invalid or matching fails
        """
        if left is None or right is None or left.size == 0 or right.size == 0:
            raise InvalidDisparityMapError(
                "Invalid input images",
                details={"left_is_none": left is None, "right_is_none": right is None}
            )

        if left.shape[:2] != right.shape[:2]:
            raise InvalidDisparityMapError(
                "Image dimensions mismatch",
                details={"left_shape": left.shape, "right_shape": right.shape}
            )

        if left.dtype != np.uint8 or right.dtype != np.uint8 or right.ndim != 2:
            raise InvalidDisparityMapError(
                "Dense stereo requires an 8-bit left image and an 8-bit gray right image",
                details={"left_dtype": str(left.dtype), "right_dtype": str(right.dtype),
                         "right_shape": right.shape}
            )

        if np.dtype(dtype) not in (np.dtype(np.int16), np.dtype(np.float32)):
            raise InvalidDisparityMapError(
                "Disparity type must be int16 or float32",
                details={"dtype": np.dtype(dtype).name}
            )

        left_gray = cv2.cvtColor(left, cv2.COLOR_BGR2GRAY) if left.ndim == 3 else left

        try:
            with PerformanceTimer(logger, "StereoBM disparity computation"):
                disparity = self.stereo.compute(left_gray, right)
        except cv2.error as e:
            raise InvalidDisparityMapError(
                "OpenCV error during disparity computation",
                details={"opencv_error": str(e)}
            )

        if disparity is None:
            raise InvalidDisparityMapError("StereoBM returned no disparity")

        valid_ratio = float(np.count_nonzero(disparity > 0)) / disparity.size
        logger.debug("Disparity computed", valid_ratio=f"{valid_ratio:.2%}")

        if np.dtype(dtype) == np.dtype(np.float32):
            return disparity.astype(np.float32) / FIXED_POINT_DISPARITY_SCALE
        return disparity
