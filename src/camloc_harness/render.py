"""
Frame-paced rendering of the shared scene onto a Pillow image.

The engine keeps a cached backing image holding the static layers (grid,
axes, world square, camera glyphs, trail dots). When only new trail entries
arrived since the previous frame they are drawn onto the cache; any change of
canvas size, view, or camera set rebuilds the cache from scratch. Both paths
draw the same primitives in the same order, so they produce identical pixels.

The estimate glyph, the camera-to-estimate lines and the trail counter are
drawn on a copy of the cache for every presented frame.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont

from .config import RENDER, WORLD
from .models import CameraPlacement, PositionEstimate, ScreenPoint, WorldPoint
from .scene import SceneState
from .viewport import Viewport

BACKGROUND = (64, 64, 64)
GRID = (84, 84, 84)
AXES = (255, 255, 0)
CAMERA = (0, 255, 0)
LINK = (255, 255, 0)
ESTIMATE = (255, 140, 0)
COUNTER = (120, 180, 0)

# Beyond this a coordinate is not drawn at all.
MAX_PIXEL = 1e6


class FramePacer:
    """Fixed target frame interval with the measured remainder slept off."""

    def __init__(
        self,
        target_fps: float = RENDER["target_fps"],
        *,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = 1.0 / target_fps
        self._clock = clock
        self._sleep = sleep
        self._started = clock()

    def start(self) -> None:
        self._started = self._clock()

    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> float:
        return max(0.0, self.interval - self.elapsed())

    def sleep_remaining(self) -> float:
        remaining = self.remaining()
        if remaining > 0:
            self._sleep(remaining)
        return remaining


@dataclass
class FrameStats:
    """What the most recent frame drew."""

    drawn: bool = False
    full_redraw: bool = False
    cameras: int = 0
    trail_points: int = 0
    new_trail_points: int = 0
    estimate_glyph: Optional[str] = None
    link_lines: int = 0


@lru_cache(maxsize=512)
def trail_color(index: int, hue_step: float = RENDER["hue_step"]) -> Tuple[int, int, int]:
    hue = (index * hue_step) % 1.0
    return ImageColor.getrgb(f"hsv({hue * 360.0:.3f}, 50%, 100%)")


def _placeable(point: ScreenPoint) -> bool:
    return (
        math.isfinite(point.x)
        and math.isfinite(point.y)
        and abs(point.x) < MAX_PIXEL
        and abs(point.y) < MAX_PIXEL
    )


class RenderEngine:
    def __init__(
        self,
        scene: SceneState,
        viewport: Viewport,
        *,
        square_size: float = WORLD["square_size"],
        incremental: bool = True,
        settings: dict = RENDER,
    ):
        self.scene = scene
        self.viewport = viewport
        self.square_size = square_size
        self.incremental = incremental
        self.settings = settings
        self.stats = FrameStats()
        self._font = ImageFont.load_default()
        self._cache: Optional[Image.Image] = None
        self._cache_key: Optional[tuple] = None
        self._camera_key: Optional[Tuple[int, int]] = None
        self._cameras_drawn = 0
        self._trail_drawn = 0
        self._frame: Optional[Image.Image] = None
        self._frame_version = -1

    # -- frame ----------------------------------------------------------------

    def render(self, width: int, height: int) -> Image.Image:
        width, height = max(1, int(width)), max(1, int(height))
        view_key = (width, height, self.viewport.key())
        version = self.scene.version

        if (
            self._frame is not None
            and view_key == self._cache_key
            and version == self._frame_version
        ):
            self.stats.drawn = False
            return self._frame

        revision, cameras = self.scene.cameras()
        camera_key = (revision, len(cameras))
        full = (
            not self.incremental
            or self._cache is None
            or view_key != self._cache_key
            or camera_key != self._camera_key
        )

        stats = FrameStats(drawn=True, full_redraw=full)
        if full:
            self._cache = Image.new("RGB", (width, height), BACKGROUND)
            draw = ImageDraw.Draw(self._cache)
            self._draw_grid(draw, width, height)
            self._cameras_drawn = sum(
                self._draw_camera(draw, camera, width, height) for camera in cameras
            )
            self._trail_drawn = 0
            self._cache_key = view_key
            self._camera_key = camera_key
        else:
            draw = ImageDraw.Draw(self._cache)

        total, entries = self.scene.trail_since(self._trail_drawn)
        for offset, entry in enumerate(entries):
            self._draw_trail_point(draw, self._trail_drawn + offset, entry, width, height)
        stats.new_trail_points = len(entries)
        self._trail_drawn = total

        frame = self._cache.copy()
        self._draw_overlay(ImageDraw.Draw(frame), cameras, stats, width, height)

        stats.cameras = self._cameras_drawn
        stats.trail_points = self._trail_drawn
        self.stats = stats
        self._frame = frame
        self._frame_version = version
        return frame

    def run(
        self,
        present: Callable[[Image.Image], None],
        size: Callable[[], Tuple[int, int]],
        stop: threading.Event,
    ) -> None:
        """Headless frame loop: render, present, sleep the rest of the interval."""
        pacer = FramePacer(self.settings["target_fps"])
        while not stop.is_set():
            pacer.start()
            frame = self.render(*size())
            if self.stats.drawn:
                present(frame)
            pacer.sleep_remaining()

    # -- layers ---------------------------------------------------------------

    def _to_screen(self, x: float, y: float, width: int, height: int) -> ScreenPoint:
        return self.viewport.world_to_screen(WorldPoint(x, y), width, height)

    def _draw_grid(self, draw: ImageDraw.ImageDraw, width: int, height: int) -> None:
        k = self.viewport.pixels_per_unit(width, height)
        if k >= self.settings["min_grid_spacing_px"]:
            top_left = self.viewport.screen_to_world(ScreenPoint(0, 0), width, height)
            bottom_right = self.viewport.screen_to_world(
                ScreenPoint(width, height), width, height
            )
            for gx in range(math.floor(top_left.x), math.ceil(bottom_right.x) + 1):
                sx = self._to_screen(gx, 0.0, width, height).x
                draw.line([(sx, 0), (sx, height)], fill=GRID, width=1)
            for gy in range(math.floor(bottom_right.y), math.ceil(top_left.y) + 1):
                sy = self._to_screen(0.0, gy, width, height).y
                draw.line([(0, sy), (width, sy)], fill=GRID, width=1)

        origin = self._to_screen(0.0, 0.0, width, height)
        if _placeable(origin):
            draw.line([(0, origin.y), (width, origin.y)], fill=AXES, width=3)
            draw.line([(origin.x, 0), (origin.x, height)], fill=AXES, width=3)

        half = self.square_size / 2.0
        corner_a = self._to_screen(-half, half, width, height)
        corner_b = self._to_screen(half, -half, width, height)
        if _placeable(corner_a) and _placeable(corner_b):
            draw.rectangle(
                [(corner_a.x, corner_a.y), (corner_b.x, corner_b.y)],
                outline=AXES,
                width=3,
            )

    def _draw_camera(
        self, draw: ImageDraw.ImageDraw, camera: CameraPlacement, width: int, height: int
    ) -> int:
        center = self._to_screen(camera.x, camera.y, width, height)
        if not _placeable(center):
            return 0
        half = self.settings["cam_size_px"] / 2
        draw.rectangle(
            [(center.x - half, center.y - half), (center.x + half, center.y + half)],
            outline=CAMERA,
        )
        length = self.settings["ray_length"]
        for edge in (camera.rotation + camera.fov / 2, camera.rotation - camera.fov / 2):
            end = self._to_screen(
                camera.x + math.cos(edge) * length,
                camera.y + math.sin(edge) * length,
                width,
                height,
            )
            if _placeable(end):
                draw.line([(center.x, center.y), (end.x, end.y)], fill=CAMERA)
        draw.text(
            (center.x + self.settings["cam_size_px"], center.y),
            camera.host_id,
            fill=CAMERA,
            font=self._font,
        )
        return 1

    def _draw_trail_point(
        self,
        draw: ImageDraw.ImageDraw,
        index: int,
        entry: PositionEstimate,
        width: int,
        height: int,
    ) -> None:
        point = self._to_screen(entry.x, entry.y, width, height)
        if not _placeable(point):
            return
        half = self.settings["dot_size_px"] / 2
        draw.rectangle(
            [(point.x - half, point.y - half), (point.x + half, point.y + half)],
            fill=trail_color(index, self.settings["hue_step"]),
        )

    def _draw_overlay(
        self,
        draw: ImageDraw.ImageDraw,
        cameras: Sequence[CameraPlacement],
        stats: FrameStats,
        width: int,
        height: int,
    ) -> None:
        estimate = self.scene.estimate()
        target = None
        if estimate is not None:
            target = self._to_screen(estimate.x, estimate.y, width, height)
            if not _placeable(target):
                target = None

        if target is not None:
            for camera in cameras:
                origin = self._to_screen(camera.x, camera.y, width, height)
                if _placeable(origin):
                    draw.line([(origin.x, origin.y), (target.x, target.y)], fill=LINK)
                    stats.link_lines += 1
            stats.estimate_glyph = self._draw_estimate(draw, estimate, target)

        draw.text(
            (width - 150, height - 40),
            str(self._trail_drawn),
            fill=COUNTER,
            font=self._font,
        )

    def _draw_estimate(
        self, draw: ImageDraw.ImageDraw, estimate: PositionEstimate, at: ScreenPoint
    ) -> str:
        size = self.settings["estimate_size_px"]
        if not (estimate.heading_known and math.isfinite(estimate.heading)):
            r = size / 2
            draw.ellipse([(at.x - r, at.y - r), (at.x + r, at.y + r)], fill=ESTIMATE)
            return "dot"

        # screen Y grows downward, so the heading angle is mirrored
        angle = -estimate.heading
        points: List[Tuple[float, float]] = [
            (at.x + size * math.cos(angle), at.y + size * math.sin(angle)),
            (
                at.x + 0.6 * size * math.cos(angle + 2.4),
                at.y + 0.6 * size * math.sin(angle + 2.4),
            ),
            (
                at.x + 0.6 * size * math.cos(angle - 2.4),
                at.y + 0.6 * size * math.sin(angle - 2.4),
            ),
        ]
        draw.polygon(points, fill=ESTIMATE)
        return "triangle"
