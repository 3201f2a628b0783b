"""Unit tests for the parameter configuration system.

Tests individual configuration classes and validation logic.
"""

import pytest
import json
import tempfile
from pathlib import Path
from stereo_depth.config import (
    CameraConfig,
    BlockMatchingConfig,
    OpticalFlowConfig,
    DenseStereoConfig,
    DepthSamplingConfig,
    HoleFillingConfig,
    StereoDepthConfig,
    create_default_config,
    create_high_accuracy_config,
    create_fast_config
)
from stereo_depth.errors import ConfigurationError, ParameterValidationError


class TestCameraConfig:
    """Test CameraConfig validation."""

    def test_valid_camera_config(self):
        """Valid camera configuration should pass validation."""
        config = CameraConfig(baseline=0.12, fx=700.0, fy=700.0, cx=320.0, cy=240.0)
        assert config.validate() == []

    def test_non_positive_baseline(self):
        """Zero baseline should fail validation."""
        errors = CameraConfig(baseline=0.0).validate()
        assert any("Baseline" in e for e in errors)

    def test_negative_focal_length(self):
        """Negative focal length should fail validation."""
        errors = CameraConfig(fy=-100.0).validate()
        assert any("Focal lengths" in e for e in errors)


class TestBlockMatchingConfig:
    """Test BlockMatchingConfig validation."""

    def test_valid_block_matching_config(self):
        """Default block matching configuration should pass validation."""
        config = BlockMatchingConfig()
        assert config.validate() == []
        assert config.win_size == (5, 5)

    def test_inverted_disparity_range(self):
        """max_disparity <= min_disparity should fail."""
        errors = BlockMatchingConfig(min_disparity=20, max_disparity=10).validate()
        assert any("max_disparity" in e for e in errors)

    def test_negative_values(self):
        """Negative levels, iterations and disparities should fail."""
        errors = BlockMatchingConfig(max_level=-1, iterations=-1, min_disparity=-1).validate()
        assert any("max_level" in e for e in errors)
        assert any("iterations" in e for e in errors)
        assert any("min_disparity" in e for e in errors)


class TestOpticalFlowConfig:
    """Test OpticalFlowConfig validation."""

    def test_valid_optical_flow_config(self):
        """Default tracker configuration should pass validation."""
        assert OpticalFlowConfig().validate() == []

    def test_window_too_small(self):
        """Windows of 2 pixels or less should fail."""
        errors = OpticalFlowConfig(win_width=2).validate()
        assert any("Window size" in e for e in errors)

    def test_criteria_out_of_range(self):
        """Iterations and epsilon outside their clamps should fail."""
        errors = OpticalFlowConfig(iterations=500, epsilon=-1.0).validate()
        assert any("iterations" in e for e in errors)
        assert any("epsilon" in e for e in errors)


class TestDenseStereoConfig:
    """Test DenseStereoConfig validation."""

    def test_valid_dense_config(self):
        """Default dense configuration should pass validation."""
        assert DenseStereoConfig().validate() == []

    def test_num_disparities_not_multiple_of_16(self):
        """num_disparities must be a multiple of 16."""
        errors = DenseStereoConfig(num_disparities=50).validate()
        assert any("num_disparities" in e for e in errors)

    def test_even_block_size(self):
        """Even block sizes should fail."""
        errors = DenseStereoConfig(block_size=10).validate()
        assert any("block_size" in e for e in errors)


class TestSamplingAndHoleFillingConfig:
    """Test DepthSamplingConfig and HoleFillingConfig validation."""

    def test_non_positive_z_error(self):
        """max_z_error must be positive."""
        errors = DepthSamplingConfig(max_z_error=0.0).validate()
        assert any("max_z_error" in e for e in errors)

    def test_hole_filling_needs_a_direction(self):
        """Enabled hole filling needs vertical or horizontal filling."""
        errors = HoleFillingConfig(vertical=False, horizontal=False).validate()
        assert len(errors) == 1
        assert HoleFillingConfig(enabled=False, vertical=False, horizontal=False).validate() == []


class TestStereoDepthConfig:
    """Test StereoDepthConfig validation and operations."""

    def test_valid_config(self):
        """Default configuration should pass validation."""
        assert StereoDepthConfig().validate() == []

    def test_unknown_method(self):
        """Unknown correspondence methods should fail."""
        errors = StereoDepthConfig(method="census").validate()
        assert any("method" in e for e in errors)

    def test_section_errors_are_prefixed(self):
        """Section errors name their section."""
        config = StereoDepthConfig(camera=CameraConfig(baseline=-1.0))
        errors = config.validate()
        assert any(e.startswith("Camera:") for e in errors)

    def test_min_disparity_beyond_millimetre_range(self):
        """A minimum disparity mapping past 65.535 m should fail."""
        config = StereoDepthConfig(
            camera=CameraConfig(baseline=0.12, fx=700.0),
            block_matching=BlockMatchingConfig(min_disparity=1, max_disparity=64)
        )
        errors = config.validate()
        assert any("65.535" in e for e in errors)

        config.block_matching.min_disparity = 2
        assert config.validate() == []

    def test_raise_if_invalid(self):
        """raise_if_invalid raises a ConfigurationError subclass."""
        config = StereoDepthConfig(method="census")
        with pytest.raises(ParameterValidationError):
            config.raise_if_invalid()
        with pytest.raises(ConfigurationError):
            config.raise_if_invalid()

    def test_to_dict_conversion(self):
        """Configuration should convert to dictionary correctly."""
        config_dict = StereoDepthConfig().to_dict()

        assert config_dict['method'] == 'block_matching'
        assert config_dict['camera']['baseline'] == 0.12
        assert config_dict['block_matching']['ssd'] is True
        assert 'hole_filling' in config_dict

    def test_from_dict_conversion(self):
        """Configuration should load from dictionary correctly."""
        config = StereoDepthConfig.from_dict({
            'method': 'optical_flow',
            'camera': {'baseline': 0.15, 'fx': 800.0},
            'optical_flow': {'win_width': 15, 'win_height': 15}
        })

        assert config.method == 'optical_flow'
        assert config.camera.baseline == 0.15
        assert config.camera.fx == 800.0
        assert config.optical_flow.win_size == (15, 15)
        assert config.block_matching == BlockMatchingConfig()

    def test_save_and_load(self):
        """Configuration should survive a JSON file round trip."""
        config = create_high_accuracy_config()

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "config.json"
            config.save_to_file(str(path))

            with open(path) as f:
                assert json.load(f)['method'] == 'optical_flow'

            loaded = StereoDepthConfig.load_from_file(str(path))

        assert loaded == config

    def test_load_missing_file(self):
        """Loading a missing file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            StereoDepthConfig.load_from_file("/nonexistent/config.json")

    def test_load_invalid_file(self):
        """Loading an invalid configuration should raise."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            with open(path, 'w') as f:
                json.dump({'camera': {'baseline': -1.0}}, f)

            with pytest.raises(ParameterValidationError):
                StereoDepthConfig.load_from_file(str(path))


class TestConfigPresets:
    """Test preset configurations."""

    def test_presets_are_valid(self):
        """All presets should pass validation."""
        for factory in (create_default_config, create_high_accuracy_config, create_fast_config):
            assert factory().validate() == []

    def test_fast_config(self):
        """Fast preset uses SAD and skips hole filling."""
        config = create_fast_config()
        assert config.block_matching.ssd is False
        assert config.hole_filling.enabled is False

    def test_high_accuracy_config(self):
        """High accuracy preset tracks with optical flow and fills double holes."""
        config = create_high_accuracy_config()
        assert config.method == "optical_flow"
        assert config.hole_filling.fill_double_holes is True
