"""Camera intrinsics and rigid transforms supplied by the calling system."""

from dataclasses import dataclass
from typing import Union
import numpy as np
import cv2

from stereo_depth.errors import InvalidParameterError


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics: focal lengths and principal point in pixels."""
    fx: float
    fy: float
    cx: float
    cy: float

    def __post_init__(self):
        if not (self.fx > 0 and self.fy > 0):
            raise InvalidParameterError(
                "Focal lengths must be positive",
                details={"fx": self.fx, "fy": self.fy}
            )

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> 'CameraIntrinsics':
        """Create intrinsics from a 3x3 row-major camera matrix."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise InvalidParameterError(
                "Camera matrix must be 3x3", details={"shape": K.shape}
            )
        return cls(fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2]))

    @classmethod
    def coerce(cls, value: Union['CameraIntrinsics', np.ndarray]) -> 'CameraIntrinsics':
        if isinstance(value, cls):
            return value
        return cls.from_matrix(value)

    def to_matrix(self) -> np.ndarray:
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)

    def scaled(self, factor: float) -> 'CameraIntrinsics':
        """Intrinsics of the same camera after resizing the image by ``factor``."""
        return CameraIntrinsics(
            fx=self.fx * factor, fy=self.fy * factor,
            cx=self.cx * factor, cy=self.cy * factor
        )


class RigidTransform:
    """
    Rotation + translation mapping 3-D points between camera frames.

    ``apply`` computes ``R @ p + t``. The stored arrays are read-only.
    """

    def __init__(self, rotation: np.ndarray, translation: np.ndarray):
        rotation = np.array(rotation, dtype=np.float64)
        translation = np.array(translation, dtype=np.float64).reshape(-1)

        if rotation.shape != (3, 3):
            raise InvalidParameterError(
                "Rotation must be 3x3", details={"shape": rotation.shape}
            )
        if translation.shape != (3,):
            raise InvalidParameterError(
                "Translation must have 3 components", details={"shape": translation.shape}
            )
        if not np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-5):
            raise InvalidParameterError("Rotation matrix is not orthonormal")

        rotation.setflags(write=False)
        translation.setflags(write=False)
        self._rotation = rotation
        self._translation = translation

    @property
    def rotation(self) -> np.ndarray:
        return self._rotation

    @property
    def translation(self) -> np.ndarray:
        return self._translation

    @classmethod
    def identity(cls) -> 'RigidTransform':
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> 'RigidTransform':
        """Create a transform from a 3x4 or 4x4 homogeneous matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape not in ((3, 4), (4, 4)):
            raise InvalidParameterError(
                "Transform matrix must be 3x4 or 4x4", details={"shape": matrix.shape}
            )
        return cls(matrix[:3, :3], matrix[:3, 3])

    @classmethod
    def from_rotation_vector(cls, rvec, tvec) -> 'RigidTransform':
        """Create a transform from a Rodrigues rotation vector and a translation."""
        rotation, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation, tvec)

    @classmethod
    def coerce(cls, value: Union['RigidTransform', np.ndarray]) -> 'RigidTransform':
        if isinstance(value, cls):
            return value
        return cls.from_matrix(value)

    def to_matrix(self) -> np.ndarray:
        matrix = np.eye(4)
        matrix[:3, :3] = self._rotation
        matrix[:3, 3] = self._translation
        return matrix

    def inverse(self) -> 'RigidTransform':
        rotation_t = self._rotation.T
        return RigidTransform(rotation_t, -rotation_t @ self._translation)

    def compose(self, other: 'RigidTransform') -> 'RigidTransform':
        """Transform applying ``other`` first, then ``self``."""
        return RigidTransform(
            self._rotation @ other.rotation,
            self._rotation @ other.translation + self._translation
        )

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform an (N, 3) array of points."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self._rotation.T + self._translation

    def __repr__(self) -> str:
        return (f"RigidTransform(rotation={self._rotation.tolist()}, "
                f"translation={self._translation.tolist()})")
