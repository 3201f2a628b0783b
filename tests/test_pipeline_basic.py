"""Integration tests for the stereo depth pipeline."""

import json
import numpy as np
import cv2
import pytest
from stereo_depth import StereoDepthPipeline, create_pipeline
from stereo_depth.camera import CameraIntrinsics, RigidTransform
from stereo_depth.config import CameraConfig, StereoDepthConfig, create_fast_config
from stereo_depth.errors import ParameterValidationError
from stereo_depth.optical_flow import StereoOpticalFlow

POINTS = np.array([[100, 60], [140, 80], [180, 100]], dtype=np.float32)


def make_stereo_pair(disparity, shape=(160, 240), seed=0, sigma=1.5):
    rng = np.random.RandomState(seed)
    left = cv2.GaussianBlur(rng.randint(0, 256, shape).astype(np.uint8), (0, 0), sigma)
    right = np.roll(left, -disparity, axis=1)
    return left, right


def test_pipeline_initialization():
    """Default pipeline uses the block matcher."""
    pipeline = StereoDepthPipeline()
    assert pipeline.config.method == "block_matching"
    assert pipeline.intrinsics == CameraIntrinsics(700.0, 700.0, 320.0, 240.0)
    assert not isinstance(pipeline.matcher, StereoOpticalFlow)


def test_pipeline_rejects_invalid_config():
    """Invalid configurations raise before any component is built."""
    with pytest.raises(ParameterValidationError):
        StereoDepthPipeline(StereoDepthConfig(method="census"))


def test_process_block_matching():
    """Sparse depth is written at every matched point."""
    left, right = make_stereo_pair(8)
    result = StereoDepthPipeline().process(left, right, POINTS)

    assert result.valid_count == 3
    assert result.registered_depth is None
    assert result.overflow_count == 0
    for x, y in POINTS.astype(int):
        assert result.depth[y, x] == pytest.approx(0.12 * 700.0 / 8.0, rel=1e-5)
        assert result.depth_mm[y, x] == 10500
    assert np.count_nonzero(result.depth_mm) == 3
    assert set(result.stage_times) == {"correspondence", "depth", "quantization"}
    assert result.processing_time >= 0


def test_process_optical_flow():
    """The optical flow method tracks the same shift."""
    left, right = make_stereo_pair(6, sigma=3.0)
    left = cv2.normalize(left, None, 0, 255, cv2.NORM_MINMAX)
    right = np.roll(left, -6, axis=1)
    config = StereoDepthConfig(method="optical_flow")
    pipeline = StereoDepthPipeline(config)

    assert isinstance(pipeline.matcher, StereoOpticalFlow)

    result = pipeline.process(left, right, POINTS[:2])
    assert result.valid_count == 2
    x, y = POINTS[0].astype(int)
    assert result.depth[y, x] == pytest.approx(0.12 * 700.0 / 6.0, rel=0.03)


def test_process_with_registration():
    """Registration into the same camera reproduces the millimetre map."""
    left, right = make_stereo_pair(8)
    pipeline = StereoDepthPipeline()

    result = pipeline.process(left, right, POINTS, transform=RigidTransform.identity())

    assert result.registered_depth is not None
    np.testing.assert_array_equal(result.registered_depth, result.depth_mm)
    assert "registration" in result.stage_times
    assert "hole_filling" in result.stage_times


def test_process_overflow_counted():
    """Matches too far for millimetre maps are counted, not stored."""
    left, right = make_stereo_pair(1)
    config = StereoDepthConfig(camera=CameraConfig(baseline=0.5, fx=700.0))
    config.block_matching.max_level = 0
    config.block_matching.max_disparity = 4

    result = StereoDepthPipeline(config).process(left, right, POINTS[:1])

    assert result.valid_count == 1
    assert result.depth[60, 100] == pytest.approx(350.0, rel=1e-5)
    assert result.overflow_count == 1
    assert result.depth_mm[60, 100] == 0


def test_unmatched_points_have_no_depth():
    """Points off the image are reported invalid and leave no depth."""
    left, right = make_stereo_pair(8)
    points = np.array([[100, 60], [1000, 60]], dtype=np.float32)

    result = StereoDepthPipeline().process(left, right, points)

    np.testing.assert_array_equal(result.correspondences.status, [1, 0])
    assert np.count_nonzero(result.depth) == 1


def test_compute_dense_depth():
    """Dense depth follows baseline * fx / disparity."""
    rng = np.random.RandomState(0)
    left = rng.randint(0, 256, (120, 240)).astype(np.uint8)
    right = np.roll(left, -8, axis=1)

    result = StereoDepthPipeline().compute_dense_depth(left, right)

    assert result.depth.shape == left.shape
    valid = result.disparity > 0
    np.testing.assert_allclose(
        result.depth[valid], 0.12 * 700.0 / result.disparity[valid], rtol=1e-5
    )
    assert np.all(result.depth[~valid] == 0)


def test_depth_at_uses_sampling_config():
    """depth_at samples with the configured smoothing."""
    pipeline = StereoDepthPipeline()
    depth = np.full((5, 5), 2.0, dtype=np.float32)
    assert pipeline.depth_at(depth, 2, 2) == pytest.approx(2.0)


def test_create_pipeline_from_file(tmp_path):
    """create_pipeline loads a JSON configuration."""
    config = create_fast_config()
    path = tmp_path / "config.json"
    config.save_to_file(str(path))

    pipeline = create_pipeline(str(path))
    assert pipeline.config == config
    assert pipeline.hole_filler.config.enabled is False

    with open(path) as f:
        assert json.load(f)["block_matching"]["ssd"] is False


def test_create_pipeline_default():
    """create_pipeline without a file uses defaults."""
    assert create_pipeline().config == StereoDepthConfig()
