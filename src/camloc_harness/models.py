"""
Data models for world points, bearings, camera placements and estimates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WorldPoint:
    """Position in the shared 2D world frame."""

    x: float
    y: float


@dataclass(frozen=True)
class ScreenPoint:
    x: float
    y: float


@dataclass(frozen=True)
class BearingPair:
    """Normalized bearings reported by the two virtual cameras."""

    b1: float
    b2: float

    def axis(self, client_id: int) -> float:
        return self.b1 if client_id == 0 else self.b2


@dataclass(frozen=True)
class CameraPlacement:
    """A camera's pose in the world frame, keyed by host id."""

    host_id: str
    x: float
    y: float
    rotation: float
    fov: float


@dataclass(frozen=True)
class CameraRemoval:
    host_id: str


@dataclass(frozen=True)
class PositionEstimate:
    """Latest known estimate of the tracked target."""

    x: float
    y: float
    heading: Optional[float] = None

    @property
    def heading_known(self) -> bool:
        return self.heading is not None and not math.isnan(self.heading)
