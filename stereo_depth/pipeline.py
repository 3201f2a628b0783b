"""
Stereo depth pipeline controller.

Wires the sparse correspondence search, depth conversion, registration and
hole filling into one configurable processing chain:

- block matching or constrained optical flow for left/right correspondences
- sparse metric depth and its 16-bit millimetre quantization
- optional registration into another camera frame
- optional interpolation of small holes in the registered map

A dense path using OpenCV's block matcher is also available for whole-image
depth.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Union
import numpy as np
import cv2

from stereo_depth.block_matching import StereoBlockMatcher
from stereo_depth.camera import CameraIntrinsics, RigidTransform
from stereo_depth.config import StereoDepthConfig
from stereo_depth.conversion import (
    depth_from_correspondences, depth_from_disparity, depth_meters_to_millimeters, get_depth
)
from stereo_depth.correspondence import CorrespondenceResult, as_points
from stereo_depth.dense import DenseStereoSolver
from stereo_depth.errors import PipelineStageError, handle_error
from stereo_depth.hole_filling import HoleFiller
from stereo_depth.logging_config import get_logger, PerformanceTimer
from stereo_depth.optical_flow import StereoOpticalFlow
from stereo_depth.registration import register_depth

# Initialize logger
logger = get_logger(__name__)


@dataclass
class DepthPipelineResult:
    """Complete result from sparse pipeline processing."""
    correspondences: CorrespondenceResult
    depth: np.ndarray  # float32 metres, 0 = no measurement
    depth_mm: np.ndarray  # uint16 millimetres
    overflow_count: int
    registered_depth: Optional[np.ndarray]  # uint16 millimetres in the destination frame
    processing_time: float
    stage_times: Dict[str, float] = field(default_factory=dict)

    @property
    def valid_count(self) -> int:
        return self.correspondences.valid_count


@dataclass
class DenseDepthResult:
    """Result of the dense disparity path."""
    disparity: np.ndarray  # float32 pixels
    depth: np.ndarray  # float32 metres
    processing_time: float


class StereoDepthPipeline:
    """
    Pipeline controller for sparse and dense stereo depth.

    All components are created from a single StereoDepthConfig; the
    correspondence method is chosen by ``config.method``.
    """

    def __init__(self, config: Optional[StereoDepthConfig] = None):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration. If None, uses default configuration.

        Raises:
            ParameterValidationError: If the configuration is invalid
        """
        self.config = config if config is not None else StereoDepthConfig()
        self.config.raise_if_invalid()

        self._initialize_components()

    def _initialize_components(self) -> None:
        """Initialize all pipeline processing components."""
        camera = self.config.camera
        self.intrinsics = CameraIntrinsics(fx=camera.fx, fy=camera.fy, cx=camera.cx, cy=camera.cy)

        if self.config.method == "optical_flow":
            self.matcher = StereoOpticalFlow.from_config(self.config.optical_flow)
        else:
            self.matcher = StereoBlockMatcher.from_config(self.config.block_matching)

        self.dense_solver = DenseStereoSolver(self.config.dense_stereo)
        self.hole_filler = HoleFiller(self.config.hole_filling)

        logger.info(
            "Stereo depth pipeline initialized",
            method=self.config.method,
            baseline=camera.baseline,
            fx=camera.fx
        )

    def _run_stage(self, name: str, stage_times: Dict[str, float], func: Callable, *args, **kwargs):
        """Run one stage, recording its duration and wrapping OpenCV failures."""
        try:
            with PerformanceTimer(logger, name) as timer:
                result = func(*args, **kwargs)
        except cv2.error as e:
            handle_error(
                PipelineStageError(
                    f"Stage '{name}' failed",
                    details={"stage": name, "opencv_error": str(e)}
                ),
                logger
            )
        stage_times[name] = timer.elapsed
        return result

    def _correspond(self, left: np.ndarray, right: np.ndarray, left_points) -> CorrespondenceResult:
        if isinstance(self.matcher, StereoOpticalFlow):
            return self.matcher.track(left, right, left_points, get_min_eigenvalues=True)
        return self.matcher.match(left, right, left_points)

    def process(
        self,
        left: np.ndarray,
        right: np.ndarray,
        left_points,
        destination_intrinsics: Optional[Union[CameraIntrinsics, np.ndarray]] = None,
        transform: Optional[Union[RigidTransform, np.ndarray]] = None
    ) -> DepthPipelineResult:
        """
        Process a rectified stereo pair at the given left feature points.

        Registration runs when a destination camera or a transform is given;
        a missing destination camera defaults to the source camera and a
        missing transform to the identity. Hole filling is applied to the
        registered map only.

        Args:
            left: Left rectified image
            right: Right rectified image
            left_points: (N, 2) feature points in the left image
            destination_intrinsics: Intrinsics of the registration target
            transform: Source-to-destination rigid transform

        Returns:
            DepthPipelineResult with correspondences and depth maps
        """
        stage_times: Dict[str, float] = {}
        points = as_points(left_points)
        camera = self.config.camera

        with PerformanceTimer(logger, "Stereo depth pipeline") as total:
            correspondences = self._run_stage(
                "correspondence", stage_times, self._correspond, left, right, points
            )

            depth = self._run_stage(
                "depth", stage_times, depth_from_correspondences,
                left.shape[:2], points, correspondences.points,
                camera.fx, camera.baseline, mask=correspondences.status
            )

            conversion = self._run_stage(
                "quantization", stage_times, depth_meters_to_millimeters, depth
            )

            registered = None
            if destination_intrinsics is not None or transform is not None:
                registered = self._run_stage(
                    "registration", stage_times, register_depth,
                    conversion.depth,
                    self.intrinsics,
                    destination_intrinsics if destination_intrinsics is not None else self.intrinsics,
                    transform if transform is not None else RigidTransform.identity()
                )
                registered = self._run_stage(
                    "hole_filling", stage_times, self.hole_filler.apply, registered
                )

        logger.info(
            "Stereo pair processed",
            points=len(points),
            valid=correspondences.valid_count,
            overflow=conversion.overflow_count,
            duration_seconds=f"{total.elapsed:.3f}"
        )

        return DepthPipelineResult(
            correspondences=correspondences,
            depth=depth,
            depth_mm=conversion.depth,
            overflow_count=conversion.overflow_count,
            registered_depth=registered,
            processing_time=total.elapsed,
            stage_times=stage_times
        )

    def compute_dense_depth(self, left: np.ndarray, right: np.ndarray) -> DenseDepthResult:
        """
        Compute whole-image depth with the dense block matcher.

        Args:
            left: Left rectified 8-bit image
            right: Right rectified 8-bit gray image

        Returns:
            DenseDepthResult with float32 disparity and metric depth
        """
        stage_times: Dict[str, float] = {}
        camera = self.config.camera

        with PerformanceTimer(logger, "Dense stereo depth") as total:
            disparity = self._run_stage(
                "dense_disparity", stage_times, self.dense_solver.compute,
                left, right, dtype=np.float32
            )
            conversion = depth_from_disparity(disparity, camera.fx, camera.baseline)

        return DenseDepthResult(
            disparity=disparity,
            depth=conversion.depth,
            processing_time=total.elapsed
        )

    def depth_at(self, depth_image: np.ndarray, x: float, y: float) -> float:
        """Sample a depth map with the configured smoothing."""
        sampling = self.config.depth_sampling
        return get_depth(
            depth_image, x, y,
            smoothing=sampling.smoothing,
            max_z_error=sampling.max_z_error
        )


def create_pipeline(config_file: Optional[str] = None) -> StereoDepthPipeline:
    """
    Factory function to create a configured pipeline.

    Args:
        config_file: Optional path to a JSON configuration file

    Returns:
        Configured StereoDepthPipeline instance
    """
    if config_file is not None:
        config = StereoDepthConfig.load_from_file(config_file)
    else:
        config = StereoDepthConfig()

    return StereoDepthPipeline(config)
