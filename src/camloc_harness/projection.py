"""
Bearing projection: what two virtual cameras report for a target position.

The first camera sits at (-cd, 0) looking along +X, the second at (0, cd)
looking along -Y, where cd is the camera distance for the configured square
size and field of view. Degenerate geometry (e.g. y == cd) yields NaN or
infinite bearings; these are returned as-is.
"""

from __future__ import annotations

import math
from typing import Tuple

from .models import BearingPair, CameraPlacement, WorldPoint


def camera_distance(square_size: float, fov: float) -> float:
    """Offset of each virtual camera's optical center from the world origin."""
    return 0.5 * square_size * (1.0 / math.tan(0.5 * fov) + 1.0)


def _normalize(angle: float, fov: float) -> float:
    return 1.0 - (angle + fov / 2.0) / fov


def project(point: WorldPoint, square_size: float, fov: float) -> BearingPair:
    cd = camera_distance(square_size, fov)

    m1 = math.atan2(point.y, point.x + cd)

    denom = point.y - cd
    if denom == 0.0:
        # IEEE semantics for x / 0; atan maps +-inf to +-pi/2
        m2 = math.nan if point.x == 0.0 else math.copysign(math.pi / 2, point.x)
    else:
        m2 = math.atan(point.x / denom)

    return BearingPair(_normalize(m1, fov), _normalize(m2, fov))


def virtual_cameras(square_size: float, fov: float) -> Tuple[CameraPlacement, ...]:
    cd = camera_distance(square_size, fov)
    return (
        CameraPlacement("cam0", -cd, 0.0, 0.0, fov),
        CameraPlacement("cam1", 0.0, cd, -math.pi / 2, fov),
    )
