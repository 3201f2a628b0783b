"""Reprojection of millimetre depth maps into another camera's image plane."""

from typing import Optional, Tuple, Union
import numpy as np

from stereo_depth.camera import CameraIntrinsics, RigidTransform
from stereo_depth.conversion import MAX_DEPTH_MM
from stereo_depth.errors import EmptyImageError, EncodingError, RegistrationError
from stereo_depth.logging_config import get_logger

# Initialize logger
logger = get_logger(__name__)


def register_depth(
    depth: np.ndarray,
    source_intrinsics: Union[CameraIntrinsics, np.ndarray],
    destination_intrinsics: Union[CameraIntrinsics, np.ndarray],
    transform: Union[RigidTransform, np.ndarray],
    output_shape: Optional[Tuple[int, int]] = None
) -> np.ndarray:
    """
    Register a depth map into a destination camera frame.

    Every non-empty source pixel is back-projected with the source
    intrinsics, moved by ``transform`` (source frame -> destination frame)
    and projected with the destination intrinsics onto the nearest
    destination pixel. When several source pixels land on the same
    destination pixel the smallest depth is kept. Points that end up
    behind the destination camera or outside its image are dropped.

    Args:
        depth: uint16 depth map in millimetres
        source_intrinsics: Intrinsics (or 3x3 matrix) of the depth camera
        destination_intrinsics: Intrinsics (or 3x3 matrix) of the target camera
        transform: RigidTransform or 3x4/4x4 matrix from source to destination
        output_shape: (rows, cols) of the registered map, defaults to the input shape

    Returns:
        uint16 registered depth map in millimetres, 0 where nothing projected
    """
    if depth is None or depth.size == 0:
        raise EmptyImageError("Depth map is empty or None")
    if depth.ndim != 2 or depth.dtype != np.uint16:
        raise EncodingError(
            "Registration requires a uint16 millimetre depth map",
            details={"dtype": str(depth.dtype), "shape": depth.shape}
        )
    if transform is None:
        raise RegistrationError("Transform cannot be None")

    source = CameraIntrinsics.coerce(source_intrinsics)
    destination = CameraIntrinsics.coerce(destination_intrinsics)
    transform = RigidTransform.coerce(transform)

    rows, cols = output_shape if output_shape is not None else depth.shape

    v, u = np.nonzero(depth)
    z = depth[v, u].astype(np.float64) * 0.001
    points = np.column_stack([
        (u - source.cx) * z / source.fx,
        (v - source.cy) * z / source.fy,
        z
    ])

    projected = transform.apply(points)
    in_front = projected[:, 2] > 0
    projected = projected[in_front]

    inv_z = 1.0 / projected[:, 2]
    du = np.rint(destination.fx * projected[:, 0] * inv_z + destination.cx).astype(np.int64)
    dv = np.rint(destination.fy * projected[:, 1] * inv_z + destination.cy).astype(np.int64)
    z_mm = np.rint(projected[:, 2] * 1000.0)

    keep = (du >= 0) & (du < cols) & (dv >= 0) & (dv < rows) & (z_mm > 0) & (z_mm <= MAX_DEPTH_MM)

    # z-buffer: nearest point wins
    zbuffer = np.full(rows * cols, np.iinfo(np.uint32).max, dtype=np.uint32)
    np.minimum.at(zbuffer, dv[keep] * cols + du[keep], z_mm[keep].astype(np.uint32))

    registered = np.where(zbuffer == np.iinfo(np.uint32).max, 0, zbuffer).astype(np.uint16)

    logger.debug(
        "Depth registered",
        source_pixels=int(z.size),
        projected=int(np.count_nonzero(keep)),
        registered_pixels=int(np.count_nonzero(registered))
    )
    return registered.reshape(rows, cols)
