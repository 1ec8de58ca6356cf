"""
Tests for bearing projection.
"""

import math

import pytest

from camloc_harness.models import WorldPoint
from camloc_harness.projection import camera_distance, project, virtual_cameras


class TestCameraDistance:
    def test_default_square(self, fov):
        assert camera_distance(3.0, fov) == pytest.approx(3.98657, abs=1e-4)

    def test_scales_with_square_size(self, fov):
        assert camera_distance(6.0, fov) == pytest.approx(2 * camera_distance(3.0, fov))

    def test_ninety_degree_fov(self):
        # tan(45 deg) == 1, so cd == square size
        assert camera_distance(2.0, math.pi / 2) == pytest.approx(2.0)


class TestProject:
    def test_origin_is_center_of_both_views(self, fov):
        pair = project(WorldPoint(0.0, 0.0), 3.0, fov)
        assert pair.b1 == pytest.approx(0.5)
        assert pair.b2 == pytest.approx(0.5)

    def test_deterministic(self, fov):
        point = WorldPoint(0.37, -0.81)
        assert project(point, 3.0, fov) == project(point, 3.0, fov)

    def test_point_above_axis_moves_first_bearing_down(self, fov):
        pair = project(WorldPoint(0.0, 0.5), 3.0, fov)
        assert pair.b1 < 0.5

    def test_point_right_of_axis_moves_second_bearing_up(self, fov):
        pair = project(WorldPoint(0.5, 0.0), 3.0, fov)
        assert pair.b2 > 0.5

    def test_matches_formula(self, fov):
        cd = camera_distance(3.0, fov)
        x, y = 0.4, -0.3
        pair = project(WorldPoint(x, y), 3.0, fov)
        assert pair.b1 == pytest.approx(1 - (math.atan2(y, x + cd) + fov / 2) / fov)
        assert pair.b2 == pytest.approx(1 - (math.atan(x / (y - cd)) + fov / 2) / fov)

    def test_degenerate_point_on_camera_axis_is_nan(self, fov):
        cd = camera_distance(3.0, fov)
        pair = project(WorldPoint(0.0, cd), 3.0, fov)
        assert math.isnan(pair.b2)
        assert math.isfinite(pair.b1)

    def test_degenerate_point_beside_camera_saturates(self, fov):
        cd = camera_distance(3.0, fov)
        pair = project(WorldPoint(0.5, cd), 3.0, fov)
        assert pair.b2 == pytest.approx(1 - (math.pi / 2 + fov / 2) / fov)


class TestVirtualCameras:
    def test_positions_follow_camera_distance(self, fov):
        cd = camera_distance(3.0, fov)
        cam0, cam1 = virtual_cameras(3.0, fov)
        assert (cam0.host_id, cam0.x, cam0.y, cam0.rotation) == ("cam0", -cd, 0.0, 0.0)
        assert (cam1.host_id, cam1.x, cam1.y) == ("cam1", 0.0, cd)
        assert cam1.rotation == pytest.approx(-math.pi / 2)
        assert cam0.fov == cam1.fov == fov
