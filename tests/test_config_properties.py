"""Property-based tests for the parameter configuration system.

Tests universal correctness properties for configuration management.
"""

import pytest
from hypothesis import given, strategies as st, settings
from stereo_depth.config import (
    BlockMatchingConfig,
    CameraConfig,
    OpticalFlowConfig,
    StereoDepthConfig
)


@st.composite
def camera_config_strategy(draw):
    """Generate valid camera configurations."""
    return CameraConfig(
        baseline=draw(st.floats(min_value=0.01, max_value=2.0)),
        fx=draw(st.floats(min_value=100.0, max_value=2000.0)),
        fy=draw(st.floats(min_value=100.0, max_value=2000.0)),
        cx=draw(st.floats(min_value=0.0, max_value=1920.0)),
        cy=draw(st.floats(min_value=0.0, max_value=1080.0))
    )


@st.composite
def block_matching_strategy(draw):
    """Generate valid block-matching configurations with min_disparity 0."""
    max_disparity = draw(st.integers(min_value=1, max_value=256))
    return BlockMatchingConfig(
        win_width=draw(st.integers(min_value=1, max_value=31)),
        win_height=draw(st.integers(min_value=1, max_value=31)),
        max_level=draw(st.integers(min_value=0, max_value=6)),
        iterations=draw(st.integers(min_value=0, max_value=100)),
        min_disparity=0,
        max_disparity=max_disparity,
        ssd=draw(st.booleans())
    )


@st.composite
def optical_flow_strategy(draw):
    """Generate valid tracker configurations."""
    return OpticalFlowConfig(
        win_width=draw(st.integers(min_value=3, max_value=51)),
        win_height=draw(st.integers(min_value=3, max_value=51)),
        max_level=draw(st.integers(min_value=0, max_value=6)),
        iterations=draw(st.integers(min_value=0, max_value=100)),
        epsilon=draw(st.floats(min_value=0.0, max_value=10.0)),
        min_eigen_threshold=draw(st.floats(min_value=0.0, max_value=1.0))
    )


class TestConfigProperties:
    """Property-based tests for StereoDepthConfig."""

    @given(camera_config_strategy(), block_matching_strategy(), optical_flow_strategy(),
           st.sampled_from(["block_matching", "optical_flow"]))
    @settings(max_examples=50)
    def test_property_valid_configs_pass(self, camera, block_matching, optical_flow, method):
        """
        Property: Configurations assembled from valid sections validate cleanly.
        """
        config = StereoDepthConfig(
            method=method,
            camera=camera,
            block_matching=block_matching,
            optical_flow=optical_flow
        )
        assert config.validate() == []

    @given(camera_config_strategy(), block_matching_strategy(), optical_flow_strategy())
    @settings(max_examples=50)
    def test_property_dict_round_trip(self, camera, block_matching, optical_flow):
        """
        Property: to_dict followed by from_dict reproduces the configuration.
        """
        config = StereoDepthConfig(
            camera=camera,
            block_matching=block_matching,
            optical_flow=optical_flow
        )
        assert StereoDepthConfig.from_dict(config.to_dict()) == config

    @given(st.floats(min_value=0.01, max_value=2.0),
           st.floats(min_value=100.0, max_value=2000.0),
           st.integers(min_value=1, max_value=100))
    @settings(max_examples=50)
    def test_property_min_disparity_range_check(self, baseline, fx, min_disparity):
        """
        Property: A positive min_disparity is rejected exactly when its depth
        does not fit in a millimetre depth map.
        """
        config = StereoDepthConfig(
            camera=CameraConfig(baseline=baseline, fx=fx),
            block_matching=BlockMatchingConfig(
                min_disparity=min_disparity, max_disparity=min_disparity + 10
            )
        )
        too_far = baseline * fx / min_disparity * 1000.0 >= 65535.0
        has_error = any("65.535" in e for e in config.validate())
        assert has_error == too_far
