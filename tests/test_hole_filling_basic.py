"""Basic unit tests for registered depth hole filling."""

import numpy as np
import pytest
from stereo_depth.config import HoleFillingConfig
from stereo_depth.errors import HoleFillingError
from stereo_depth.hole_filling import HoleFiller, fill_registered_depth_holes


def test_vertical_single_hole_filled():
    """A hole between two agreeing vertical neighbours takes their mean."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[1, 2] = 1000
    depth[3, 2] = 1010

    result = fill_registered_depth_holes(depth)

    assert result is depth
    assert depth[2, 2] == 1005


def test_farther_outlier_replaced():
    """A pixel farther than both neighbours by more than 1% is replaced."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[1:4, 2] = [1000, 1500, 1000]

    fill_registered_depth_holes(depth)
    assert depth[2, 2] == 1000


def test_nearer_pixel_kept():
    """A pixel nearer than its neighbours is not an outlier."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[1:4, 2] = [1000, 500, 1000]

    fill_registered_depth_holes(depth)
    assert depth[2, 2] == 500


def test_disagreeing_neighbours_leave_hole():
    """Neighbours more than 1% apart do not fill a hole."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[1, 2] = 1000
    depth[3, 2] = 1100

    fill_registered_depth_holes(depth)
    assert depth[2, 2] == 0


def test_horizontal_filling_optional():
    """Horizontal neighbours are only used when enabled."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[2, 1] = 2000
    depth[2, 3] = 2000

    fill_registered_depth_holes(depth, vertical=True, horizontal=False)
    assert depth[2, 2] == 0

    fill_registered_depth_holes(depth, vertical=True, horizontal=True)
    assert depth[2, 2] == 2000


def test_double_hole_vertical():
    """A two-pixel gap is bridged at one and three quarters."""
    depth = np.zeros((8, 8), dtype=np.uint16)
    depth[1, 3] = 2000
    depth[4, 3] = 2016

    untouched = depth.copy()
    fill_registered_depth_holes(untouched, fill_double_holes=False)
    assert untouched[2, 3] == 0 and untouched[3, 3] == 0

    fill_registered_depth_holes(depth, fill_double_holes=True)
    assert depth[2, 3] == 2004
    assert depth[3, 3] == 2012


def test_double_hole_horizontal():
    """Horizontal two-pixel gaps are bridged when horizontal filling is on."""
    depth = np.zeros((5, 8), dtype=np.uint16)
    depth[2, 1] = 3000
    depth[2, 4] = 3020

    fill_registered_depth_holes(depth, vertical=True, horizontal=True, fill_double_holes=True)

    assert depth[2, 2] == 3005
    assert depth[2, 3] == 3015


def test_borders_untouched():
    """Border pixels are never written."""
    depth = np.zeros((4, 4), dtype=np.uint16)
    depth[1, 0] = 1000
    depth[1, 2] = 1000
    depth[0, 1] = 1000
    depth[2, 1] = 1000

    fill_registered_depth_holes(depth, horizontal=True)

    assert depth[1, 1] == 1000
    assert depth[0, 0] == 0 and depth[3, 3] == 0


def test_rejects_non_millimetre_maps():
    """Only uint16 maps can be filled."""
    with pytest.raises(HoleFillingError):
        fill_registered_depth_holes(np.zeros((5, 5), dtype=np.float32))
    with pytest.raises(HoleFillingError):
        fill_registered_depth_holes(None)


def test_hole_filler_respects_config():
    """A disabled filler leaves the map alone."""
    depth = np.zeros((5, 5), dtype=np.uint16)
    depth[1, 2] = 1000
    depth[3, 2] = 1000

    HoleFiller(HoleFillingConfig(enabled=False)).apply(depth)
    assert depth[2, 2] == 0

    HoleFiller().apply(depth)
    assert depth[2, 2] == 1000
