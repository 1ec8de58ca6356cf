"""
Pan/zoom view transform between world coordinates and canvas pixels.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .config import RENDER, VIEWPORT, WORLD
from .models import ScreenPoint, WorldPoint

# Fraction of min(canvas w, h) covered by one world unit at zoom 1.
REAL_WORLD_SCALE = RENDER["rect_percent"] / WORLD["square_size"]


@dataclass
class Viewport:
    """
    ``pan_x``/``pan_y`` is the world point under the canvas center.

    World -> screen: translate by pan, scale by zoom and the real-world
    scale, scale by min(w, h), flip Y, recenter on the canvas middle.
    """

    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0
    real_world_scale: float = REAL_WORLD_SCALE
    zoom_sensitivity: float = VIEWPORT["zoom_sensitivity"]
    drag_sensitivity: float = VIEWPORT["drag_sensitivity"]
    modifier_multiplier: float = VIEWPORT["modifier_multiplier"]
    min_zoom: float = VIEWPORT["min_zoom"]
    max_zoom: float = VIEWPORT["max_zoom"]

    def pixels_per_unit(self, width: int, height: int) -> float:
        return min(width, height) * self.real_world_scale * self.zoom

    def world_to_screen(self, point: WorldPoint, width: int, height: int) -> ScreenPoint:
        k = self.pixels_per_unit(width, height)
        return ScreenPoint(
            width / 2.0 + (point.x - self.pan_x) * k,
            height / 2.0 - (point.y - self.pan_y) * k,
        )

    def screen_to_world(self, point: ScreenPoint, width: int, height: int) -> WorldPoint:
        k = self.pixels_per_unit(width, height)
        return WorldPoint(
            (point.x - width / 2.0) / k + self.pan_x,
            (height / 2.0 - point.y) / k + self.pan_y,
        )

    def key(self) -> tuple:
        return (self.pan_x, self.pan_y, self.zoom)

    # -- input ----------------------------------------------------------------

    def scroll(
        self,
        notches: float,
        cursor: ScreenPoint,
        width: int,
        height: int,
        *,
        modifier: bool = False,
    ) -> None:
        """Zoom by ``notches`` wheel steps keeping the world point under the cursor fixed."""
        sensitivity = self.zoom_sensitivity
        if modifier:
            sensitivity *= self.modifier_multiplier

        anchor = self.screen_to_world(cursor, width, height)
        zoom = self.zoom * math.exp(sensitivity * notches)
        self.zoom = min(max(zoom, self.min_zoom), self.max_zoom)

        moved = self.screen_to_world(cursor, width, height)
        self.pan_x += anchor.x - moved.x
        self.pan_y += anchor.y - moved.y

    def drag(self, dx_px: float, dy_px: float, *, modifier: bool = False) -> None:
        sensitivity = self.drag_sensitivity
        if modifier:
            sensitivity *= self.modifier_multiplier
        self.pan_x -= dx_px * sensitivity / self.zoom
        self.pan_y += dy_px * sensitivity / self.zoom

    def reset(self) -> None:
        self.pan_x = 0.0
        self.pan_y = 0.0
        self.zoom = 1.0
