import numpy as np
import pytest

from floorviz.config import OcclusionConfig
from floorviz.grids import DimensionMismatchError
from floorviz.occlusion import (
    depth_occlusion,
    dilate_mask,
    refine_occlusion_mask,
    visible_floor_mask,
)
from floorviz.plane import PlaneEquation

FLAT5 = PlaneEquation(0.0, 0.0, 1.0, -5.0)
NO_DILATE = OcclusionConfig(edge_refinement=False)


def _grids(h=6, w=6):
    floor = np.full((h, w), 255, dtype=np.uint8)
    furniture = np.zeros((h, w), dtype=np.uint8)
    depth = np.full((h, w), 5.0, dtype=np.float32)
    return floor, furniture, depth


def test_nearer_than_plane_is_occluded():
    floor, _, depth = _grids()
    depth[2, 3] = 4.5      # 0.5 in front of the floor
    depth[4, 4] = 4.95     # within threshold
    depth[1, 1] = 7.0      # behind the floor
    occ = depth_occlusion(floor, depth, FLAT5, 0.1)
    assert occ[2, 3] == 255
    assert int(np.count_nonzero(occ)) == 1


def test_invalid_depth_is_never_occluded():
    floor, _, depth = _grids()
    depth[0, 0] = 0.0
    depth[0, 1] = -2.0
    depth[0, 2] = np.nan
    assert not depth_occlusion(floor, depth, FLAT5).any()


def test_only_floor_pixels_are_depth_tested():
    floor, _, depth = _grids()
    floor[:3] = 0
    depth[1, 1] = 1.0
    depth[4, 4] = 1.0
    occ = depth_occlusion(floor, depth, FLAT5)
    assert occ[1, 1] == 0 and occ[4, 4] == 255


def test_tilted_plane_uses_per_pixel_expected_depth():
    # Expected depth = 2 + 0.5 * y
    plane = PlaneEquation.from_normal((0.0, 0.5, -1.0), 2.0)
    floor, _, _ = _grids()
    ys = np.arange(6, dtype=np.float32)[:, None]
    depth = np.repeat(2.0 + 0.5 * ys, 6, axis=1).astype(np.float32)
    depth[5, 0] = 3.0   # expected 4.5
    occ = depth_occlusion(floor, depth, plane, 0.1)
    assert occ[5, 0] == 255
    assert int(np.count_nonzero(occ)) == 1


def test_degenerate_plane_skips_depth_test(caplog):
    floor, furniture, depth = _grids()
    depth[:] = 0.5
    furniture[0, 0] = 255
    occ = refine_occlusion_mask(floor, furniture, depth, PlaneEquation(1.0, 0.0, 0.0, 0.0), cfg=NO_DILATE)
    assert np.array_equal(occ, furniture)
    assert "degenerate" in caplog.text


def test_furniture_always_occludes():
    floor, furniture, depth = _grids()
    furniture[3, 3] = 255
    depth[3, 3] = 9.0
    occ = refine_occlusion_mask(floor, furniture, depth, FLAT5, cfg=NO_DILATE)
    assert occ[3, 3] == 255
    assert int(np.count_nonzero(occ)) == 1


def test_edge_refinement_grows_by_one_pixel():
    floor, furniture, depth = _grids(7, 7)
    furniture[3, 3] = 255
    occ = refine_occlusion_mask(floor, furniture, depth, FLAT5)
    expected = np.zeros((7, 7), dtype=np.uint8)
    expected[2:5, 2:5] = 255
    assert np.array_equal(occ, expected)


def test_threshold_argument_overrides_config():
    floor, furniture, depth = _grids()
    depth[2, 2] = 4.7
    assert refine_occlusion_mask(floor, furniture, depth, FLAT5, 0.5, cfg=NO_DILATE)[2, 2] == 0
    assert refine_occlusion_mask(floor, furniture, depth, FLAT5, 0.1, cfg=NO_DILATE)[2, 2] == 255


def test_dimension_mismatch_fails_fast():
    floor, furniture, depth = _grids()
    with pytest.raises(DimensionMismatchError):
        refine_occlusion_mask(floor, furniture[:, :5], depth, FLAT5)


def test_visible_floor_excludes_occluders():
    floor = np.array([[255, 255], [0, 255]], dtype=np.uint8)
    occ = np.array([[0, 255], [255, 0]], dtype=np.uint8)
    assert visible_floor_mask(floor, occ).tolist() == [[255, 0], [0, 255]]


def test_dilate_mask_noop_for_small_kernel():
    m = np.zeros((3, 3), dtype=np.uint8)
    m[1, 1] = 255
    assert np.array_equal(dilate_mask(m, ksize=1), m)
