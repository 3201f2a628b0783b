"""Correspondence results shared by the block matcher and the stereo tracker."""

from dataclasses import dataclass, field
from typing import Dict, Optional
import numpy as np

from stereo_depth.errors import InvalidPointsError


def as_points(points) -> np.ndarray:
    """
    Convert feature points to a contiguous ``(N, 2)`` float32 array.

    Accepts lists of ``(x, y)`` tuples, ``(N, 2)`` arrays and OpenCV-style
    ``(N, 1, 2)`` arrays.
    """
    if points is None:
        raise InvalidPointsError("Feature points cannot be None")

    array = np.asarray(points, dtype=np.float32)
    if array.size == 0:
        return np.zeros((0, 2), dtype=np.float32)

    if array.ndim == 3 and array.shape[1] == 1:
        array = array.reshape(-1, 2)

    if array.ndim != 2 or array.shape[1] != 2:
        raise InvalidPointsError(
            "Feature points must be an (N, 2) array",
            details={"shape": array.shape}
        )

    return np.ascontiguousarray(array)


@dataclass
class CorrespondenceResult:
    """Per-point right-image coordinates with validity status."""
    points: np.ndarray  # (N, 2) float32 right-image coordinates
    status: np.ndarray  # (N,) uint8, 1 = valid
    error: Optional[np.ndarray] = None  # (N,) float32
    second_best: Optional[np.ndarray] = None  # (N,) float32, block matching only
    statistics: Dict[str, float] = field(default_factory=dict)

    @property
    def valid_mask(self) -> np.ndarray:
        return self.status.astype(bool)

    @property
    def valid_count(self) -> int:
        return int(np.count_nonzero(self.status))

    def __len__(self) -> int:
        return len(self.status)

    def disparities(self, left_points) -> np.ndarray:
        """
        Horizontal disparities ``left.x - right.x``.

        Invalid correspondences yield 0, the "no measurement" value.
        """
        left = as_points(left_points)
        if left.shape[0] != self.points.shape[0]:
            raise InvalidPointsError(
                "Left points and correspondences differ in length",
                details={"left": left.shape[0], "right": self.points.shape[0]}
            )
        disparity = left[:, 0] - self.points[:, 0]
        return np.where(self.valid_mask, disparity, 0.0).astype(np.float32)
