"""
Shared visualization state.

One ``SceneState`` is created per visualizer and handed to both the ingestor
(the only writer) and the render engine (the only reader). The trail and the
camera set each have their own lock, held only while a list is mutated or
copied.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Tuple

from .models import CameraPlacement, CameraRemoval, PositionEstimate
from .protocol import Message


class SceneState:
    def __init__(self) -> None:
        self._trail_lock = threading.Lock()
        self._camera_lock = threading.Lock()
        self._trail: List[PositionEstimate] = []
        self._estimate: Optional[PositionEstimate] = None
        self._cameras: List[CameraPlacement] = []
        self._version = 0
        self._camera_revision = 0
        self.changed = threading.Event()

    @property
    def version(self) -> int:
        """Incremented on every applied mutation."""
        return self._version

    @property
    def camera_revision(self) -> int:
        """Incremented whenever a camera is removed."""
        return self._camera_revision

    def _bump(self) -> None:
        self._version += 1
        self.changed.set()

    # -- writer side ---------------------------------------------------------

    def add_position(self, estimate: PositionEstimate) -> None:
        with self._trail_lock:
            self._trail.append(estimate)
            self._estimate = estimate
        self._bump()

    def add_camera(self, camera: CameraPlacement) -> None:
        with self._camera_lock:
            self._cameras.append(camera)
        self._bump()

    def remove_camera(self, host_id: str) -> int:
        """Drop every placement for ``host_id``; returns how many were removed."""
        with self._camera_lock:
            kept = [c for c in self._cameras if c.host_id != host_id]
            removed = len(self._cameras) - len(kept)
            if removed:
                self._cameras = kept
                self._camera_revision += 1
        if removed:
            self._bump()
        return removed

    def apply(self, message: Message) -> None:
        if isinstance(message, PositionEstimate):
            self.add_position(message)
        elif isinstance(message, CameraPlacement):
            self.add_camera(message)
        elif isinstance(message, CameraRemoval):
            self.remove_camera(message.host_id)
        else:
            raise TypeError(f"unsupported message {message!r}")

    # -- reader side ---------------------------------------------------------

    def trail_length(self) -> int:
        with self._trail_lock:
            return len(self._trail)

    def trail_since(self, start: int) -> Tuple[int, List[PositionEstimate]]:
        """Return the trail length and a copy of the entries from ``start`` on."""
        with self._trail_lock:
            return len(self._trail), self._trail[start:]

    def estimate(self) -> Optional[PositionEstimate]:
        with self._trail_lock:
            return self._estimate

    def cameras(self) -> Tuple[int, List[CameraPlacement]]:
        """Return the camera revision and a copy of the active placements."""
        with self._camera_lock:
            return self._camera_revision, list(self._cameras)
