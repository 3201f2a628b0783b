"""Sparse and dense stereo depth estimation with 16-bit depth map utilities."""

from stereo_depth.pipeline import StereoDepthPipeline, create_pipeline
from stereo_depth.config import StereoDepthConfig
from stereo_depth.block_matching import StereoBlockMatcher, calc_stereo_correspondences
from stereo_depth.optical_flow import (
    StereoOpticalFlow, TerminationCriteria, calc_optical_flow_pyr_lk_stereo
)
from stereo_depth.conversion import (
    depth_from_disparity, depth_meters_to_millimeters, depth_millimeters_to_meters, get_depth
)
from stereo_depth.registration import register_depth
from stereo_depth.hole_filling import fill_registered_depth_holes

__version__ = "1.0.0"

__all__ = [
    'StereoDepthPipeline',
    'create_pipeline',
    'StereoDepthConfig',
    'StereoBlockMatcher',
    'calc_stereo_correspondences',
    'StereoOpticalFlow',
    'TerminationCriteria',
    'calc_optical_flow_pyr_lk_stereo',
    'depth_from_disparity',
    'depth_meters_to_millimeters',
    'depth_millimeters_to_meters',
    'get_depth',
    'register_depth',
    'fill_registered_depth_holes'
]
