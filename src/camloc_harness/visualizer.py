"""
Tkinter window that presents the render engine's frames and routes pan/zoom
input to the viewport.
"""

from __future__ import annotations

import argparse
import sys
import tkinter as tk
from tkinter import ttk
from typing import Optional, Tuple

from PIL import ImageTk

from .config import RENDER, WORLD
from .ingest import StreamIngestor
from .models import ScreenPoint
from .render import FramePacer, RenderEngine
from .scene import SceneState
from .viewport import Viewport

SHIFT_MASK = 0x0001
CONTROL_MASK = 0x0004


def _modifier(event: tk.Event) -> bool:
    return bool(event.state & (SHIFT_MASK | CONTROL_MASK))


class VisualizerApp:
    """Live view of the camloc scene fed by a tagged stream."""

    def __init__(
        self,
        root: tk.Tk,
        scene: SceneState,
        ingestor: StreamIngestor,
        *,
        square_size: float = WORLD["square_size"],
        incremental: bool = True,
    ) -> None:
        self.root = root
        self.root.title("camloc")
        width, height = RENDER["window_size"]
        self.root.geometry(f"{width}x{height}")

        self.scene = scene
        self.ingestor = ingestor
        self.viewport = Viewport()
        self.engine = RenderEngine(
            scene, self.viewport, square_size=square_size, incremental=incremental
        )
        self.pacer = FramePacer(RENDER["target_fps"])

        self.canvas = tk.Canvas(self.root, bg="#404040", highlightthickness=0)
        self.canvas.pack(fill=tk.BOTH, expand=True)
        self._image_item = self.canvas.create_image(0, 0, anchor=tk.NW)
        self._photo: Optional[ImageTk.PhotoImage] = None

        self.status_var = tk.StringVar(value="Waiting for data...")
        ttk.Label(self.root, textvariable=self.status_var).pack(
            fill=tk.X, padx=10, pady=(2, 4)
        )

        self._drag_from: Optional[Tuple[int, int]] = None
        self.canvas.bind("<ButtonPress-1>", self._on_press)
        self.canvas.bind("<B1-Motion>", self._on_drag)
        self.canvas.bind("<ButtonRelease-1>", self._on_release)
        self.canvas.bind("<MouseWheel>", self._on_wheel)
        self.canvas.bind("<Button-4>", lambda e: self._zoom(e, 1.0))
        self.canvas.bind("<Button-5>", lambda e: self._zoom(e, -1.0))
        self.root.bind("<Key-r>", lambda e: self.viewport.reset())

        self._after_id: Optional[str] = None
        self.root.protocol("WM_DELETE_WINDOW", self.on_close)
        self._after_id = self.root.after(1, self._tick)

    def _canvas_size(self) -> Tuple[int, int]:
        return max(1, self.canvas.winfo_width()), max(1, self.canvas.winfo_height())

    # -- input ----------------------------------------------------------------

    def _on_press(self, event: tk.Event) -> None:
        self._drag_from = (event.x, event.y)

    def _on_drag(self, event: tk.Event) -> None:
        if self._drag_from is None:
            self._drag_from = (event.x, event.y)
            return
        last_x, last_y = self._drag_from
        self.viewport.drag(event.x - last_x, event.y - last_y, modifier=_modifier(event))
        self._drag_from = (event.x, event.y)

    def _on_release(self, event: tk.Event) -> None:
        self._drag_from = None

    def _on_wheel(self, event: tk.Event) -> None:
        self._zoom(event, event.delta / 120.0)

    def _zoom(self, event: tk.Event, notches: float) -> None:
        width, height = self._canvas_size()
        self.viewport.scroll(
            notches,
            ScreenPoint(event.x, event.y),
            width,
            height,
            modifier=_modifier(event),
        )

    # -- frame loop -------------------------------------------------------------

    def _update_status(self) -> None:
        _, cameras = self.scene.cameras()
        counts = f"trail {self.scene.trail_length()} | cameras {len(cameras)}"
        if self.ingestor.error is not None:
            self.status_var.set(f"Ingestion stopped: {self.ingestor.error} | {counts}")
        elif self.ingestor.finished:
            self.status_var.set(f"Stream ended | {counts}")
        else:
            self.status_var.set(f"Receiving ({self.ingestor.messages} messages) | {counts}")

    def _tick(self) -> None:
        self.pacer.start()
        if self.scene.changed.is_set():
            self.scene.changed.clear()
            self._update_status()

        frame = self.engine.render(*self._canvas_size())
        if self.engine.stats.drawn:
            self._photo = ImageTk.PhotoImage(frame)
            self.canvas.itemconfigure(self._image_item, image=self._photo)

        delay_ms = max(1, int(self.pacer.remaining() * 1000))
        self._after_id = self.root.after(delay_ms, self._tick)

    def on_close(self) -> None:
        if self._after_id is not None:
            self.root.after_cancel(self._after_id)
        self.root.destroy()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Render the camloc scene from a tagged stream (stdin by default)."
    )
    parser.add_argument(
        "--connect",
        metavar="HOST:PORT",
        default=None,
        help="Read the tagged stream from a TCP server instead of stdin",
    )
    parser.add_argument(
        "--no-heading",
        action="store_true",
        help="Position updates carry x, y only (legacy display variant)",
    )
    parser.add_argument(
        "--full-redraw",
        action="store_true",
        help="Redraw every changed frame from scratch",
    )
    parser.add_argument(
        "--square-size",
        type=float,
        default=WORLD["square_size"],
        help="World square size in world units",
    )
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    scene = SceneState()
    with_heading = not args.no_heading

    if args.connect:
        host, _, port = args.connect.rpartition(":")
        try:
            ingestor = StreamIngestor.connect(
                host or "127.0.0.1", int(port), scene, with_heading=with_heading
            )
        except (OSError, ValueError) as exc:
            print(f"[visualizer] Cannot connect to {args.connect}: {exc}", file=sys.stderr)
            sys.exit(1)
    else:
        ingestor = StreamIngestor(sys.stdin.buffer, scene, with_heading=with_heading)
    ingestor.start()

    root = tk.Tk()
    VisualizerApp(
        root,
        scene,
        ingestor,
        square_size=args.square_size,
        incremental=not args.full_redraw,
    )
    try:
        root.mainloop()
    except KeyboardInterrupt:
        print("\n[visualizer] Interrupted by user.")


if __name__ == "__main__":
    main()
