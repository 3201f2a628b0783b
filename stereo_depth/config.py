"""Parameter configuration system for the stereo depth core."""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Tuple
import json
from pathlib import Path

from stereo_depth.errors import ParameterValidationError


CORRESPONDENCE_METHODS = ("block_matching", "optical_flow")


@dataclass
class CameraConfig:
    """Rectified stereo camera parameters (left camera intrinsics + baseline)."""
    baseline: float = 0.12
    fx: float = 700.0
    fy: float = 700.0
    cx: float = 320.0
    cy: float = 240.0

    def validate(self) -> List[str]:
        """Validate camera configuration parameters."""
        errors = []

        if self.baseline <= 0:
            errors.append(f"Baseline must be positive, got {self.baseline}")

        if self.fx <= 0 or self.fy <= 0:
            errors.append(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )

        return errors


@dataclass
class BlockMatchingConfig:
    """Pyramidal block-matching correspondence configuration."""
    win_width: int = 5
    win_height: int = 5
    max_level: int = 3
    iterations: int = 30
    min_disparity: int = 0
    max_disparity: int = 64
    ssd: bool = True

    @property
    def win_size(self) -> Tuple[int, int]:
        return self.win_width, self.win_height

    def validate(self) -> List[str]:
        """Validate block-matching configuration parameters."""
        errors = []

        if self.win_width < 1 or self.win_height < 1:
            errors.append(
                f"Window size must be positive, got "
                f"{self.win_width}x{self.win_height}"
            )

        if self.max_level < 0:
            errors.append(f"max_level must be non-negative, got {self.max_level}")

        if self.iterations < 0:
            errors.append(f"iterations must be non-negative, got {self.iterations}")

        if self.min_disparity < 0:
            errors.append(
                f"min_disparity must be non-negative, got {self.min_disparity}"
            )

        if self.max_disparity <= self.min_disparity:
            errors.append(
                f"max_disparity ({self.max_disparity}) must be > "
                f"min_disparity ({self.min_disparity})"
            )

        return errors


@dataclass
class OpticalFlowConfig:
    """Horizontally constrained pyramidal Lucas-Kanade configuration."""
    win_width: int = 21
    win_height: int = 21
    max_level: int = 3
    iterations: int = 30
    epsilon: float = 0.01
    min_eigen_threshold: float = 1e-4

    @property
    def win_size(self) -> Tuple[int, int]:
        return self.win_width, self.win_height

    def validate(self) -> List[str]:
        """Validate tracker configuration parameters."""
        errors = []

        if self.win_width <= 2 or self.win_height <= 2:
            errors.append(
                f"Window size must be > 2 in both dimensions, got "
                f"{self.win_width}x{self.win_height}"
            )

        if self.max_level < 0:
            errors.append(f"max_level must be non-negative, got {self.max_level}")

        if not (0 <= self.iterations <= 100):
            errors.append(f"iterations must be in [0, 100], got {self.iterations}")

        if not (0.0 <= self.epsilon <= 10.0):
            errors.append(f"epsilon must be in [0, 10], got {self.epsilon}")

        if self.min_eigen_threshold < 0:
            errors.append(
                f"min_eigen_threshold must be non-negative, "
                f"got {self.min_eigen_threshold}"
            )

        return errors


@dataclass
class DenseStereoConfig:
    """Whole-image block matcher (StereoBM) configuration."""
    block_size: int = 15
    min_disparity: int = 0
    num_disparities: int = 64
    pre_filter_size: int = 9
    pre_filter_cap: int = 31
    uniqueness_ratio: int = 15
    texture_threshold: int = 10
    speckle_window_size: int = 100
    speckle_range: int = 4

    def validate(self) -> List[str]:
        """Validate dense stereo configuration parameters."""
        errors = []

        if self.num_disparities <= 0 or self.num_disparities % 16 != 0:
            errors.append(
                f"num_disparities must be a positive multiple of 16, "
                f"got {self.num_disparities}"
            )

        if self.block_size % 2 == 0 or not (5 <= self.block_size <= 255):
            errors.append(
                f"block_size must be odd and in [5, 255], got {self.block_size}"
            )

        if self.pre_filter_size % 2 == 0 or not (5 <= self.pre_filter_size <= 255):
            errors.append(
                f"pre_filter_size must be odd and in [5, 255], "
                f"got {self.pre_filter_size}"
            )

        if not (1 <= self.pre_filter_cap <= 63):
            errors.append(
                f"pre_filter_cap must be in [1, 63], got {self.pre_filter_cap}"
            )

        if self.uniqueness_ratio < 0:
            errors.append(
                f"uniqueness_ratio must be non-negative, got {self.uniqueness_ratio}"
            )

        return errors


@dataclass
class DepthSamplingConfig:
    """Neighborhood depth sampler configuration."""
    smoothing: bool = True
    max_z_error: float = 0.02

    def validate(self) -> List[str]:
        """Validate depth sampling configuration."""
        errors = []

        if self.max_z_error <= 0:
            errors.append(f"max_z_error must be positive, got {self.max_z_error}")

        return errors


@dataclass
class HoleFillingConfig:
    """Registered depth hole-filling configuration."""
    enabled: bool = True
    vertical: bool = True
    horizontal: bool = True
    fill_double_holes: bool = False

    def validate(self) -> List[str]:
        """Validate hole filling configuration."""
        errors = []

        if self.enabled and not (self.vertical or self.horizontal):
            errors.append(
                "At least one of vertical or horizontal filling must be "
                "enabled when hole filling is enabled"
            )

        return errors


@dataclass
class StereoDepthConfig:
    """Complete stereo depth configuration."""
    method: str = "block_matching"
    camera: CameraConfig = field(default_factory=CameraConfig)
    block_matching: BlockMatchingConfig = field(default_factory=BlockMatchingConfig)
    optical_flow: OpticalFlowConfig = field(default_factory=OpticalFlowConfig)
    dense_stereo: DenseStereoConfig = field(default_factory=DenseStereoConfig)
    depth_sampling: DepthSamplingConfig = field(default_factory=DepthSamplingConfig)
    hole_filling: HoleFillingConfig = field(default_factory=HoleFillingConfig)

    def validate(self) -> List[str]:
        """Validate all configuration parameters."""
        errors = []

        if self.method not in CORRESPONDENCE_METHODS:
            errors.append(
                f"method must be one of {CORRESPONDENCE_METHODS}, got '{self.method}'"
            )

        # Validate individual sections
        errors.extend([f"Camera: {e}" for e in self.camera.validate()])
        errors.extend([f"Block Matching: {e}" for e in self.block_matching.validate()])
        errors.extend([f"Optical Flow: {e}" for e in self.optical_flow.validate()])
        errors.extend([f"Dense Stereo: {e}" for e in self.dense_stereo.validate()])
        errors.extend([f"Depth Sampling: {e}" for e in self.depth_sampling.validate()])
        errors.extend([f"Hole Filling: {e}" for e in self.hole_filling.validate()])

        errors.extend(self._validate_cross_section())

        return errors

    def _validate_cross_section(self) -> List[str]:
        """Validate consistency across configuration sections."""
        errors = []

        # The smallest disparity searched must still map to a depth that fits
        # in a 16-bit millimetre map.
        if self.block_matching.min_disparity <= 0 or self.camera.fx <= 0:
            return errors

        max_depth_mm = (
            self.camera.baseline * self.camera.fx
            / self.block_matching.min_disparity * 1000.0
        )
        if max_depth_mm >= 65535.0:
            errors.append(
                f"min_disparity {self.block_matching.min_disparity} maps to "
                f"{max_depth_mm / 1000.0:.2f}m, beyond the 65.535m representable "
                f"in millimetre depth maps"
            )

        return errors

    def raise_if_invalid(self) -> None:
        """Raise ParameterValidationError listing every validation failure."""
        errors = self.validate()
        if errors:
            raise ParameterValidationError(
                "Invalid configuration:\n" + "\n".join(errors),
                details={"error_count": len(errors)}
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'StereoDepthConfig':
        """Create configuration from dictionary."""
        return cls(
            method=config_dict.get('method', 'block_matching'),
            camera=CameraConfig(**config_dict.get('camera', {})),
            block_matching=BlockMatchingConfig(**config_dict.get('block_matching', {})),
            optical_flow=OpticalFlowConfig(**config_dict.get('optical_flow', {})),
            dense_stereo=DenseStereoConfig(**config_dict.get('dense_stereo', {})),
            depth_sampling=DepthSamplingConfig(**config_dict.get('depth_sampling', {})),
            hole_filling=HoleFillingConfig(**config_dict.get('hole_filling', {}))
        )

    def save_to_file(self, filepath: str) -> None:
        """Save configuration to JSON file."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load_from_file(cls, filepath: str) -> 'StereoDepthConfig':
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, 'r') as f:
            config_dict = json.load(f)

        config = cls.from_dict(config_dict)

        errors = config.validate()
        if errors:
            raise ParameterValidationError(
                f"Invalid configuration loaded from {filepath}:\n" +
                "\n".join(errors),
                details={"error_count": len(errors)}
            )

        return config


def create_default_config() -> StereoDepthConfig:
    """Create default configuration."""
    return StereoDepthConfig()


def create_high_accuracy_config() -> StereoDepthConfig:
    """Create configuration trading speed for sub-pixel accuracy."""
    return StereoDepthConfig(
        method="optical_flow",
        block_matching=BlockMatchingConfig(
            win_width=9,
            win_height=9,
            max_level=4,
            iterations=50,
            max_disparity=128
        ),
        optical_flow=OpticalFlowConfig(
            win_width=31,
            win_height=31,
            max_level=4,
            iterations=60,
            epsilon=0.001
        ),
        hole_filling=HoleFillingConfig(fill_double_holes=True)
    )


def create_fast_config() -> StereoDepthConfig:
    """Create fast processing configuration."""
    return StereoDepthConfig(
        method="block_matching",
        block_matching=BlockMatchingConfig(
            win_width=3,
            win_height=3,
            max_level=2,
            iterations=10,
            max_disparity=32,
            ssd=False
        ),
        optical_flow=OpticalFlowConfig(
            win_width=11,
            win_height=11,
            max_level=2,
            iterations=10,
            epsilon=0.05
        ),
        hole_filling=HoleFillingConfig(enabled=False)
    )
