"""
Background thread that decodes the tagged stream into the shared scene.
"""

from __future__ import annotations

import socket
import sys
import threading
from typing import BinaryIO, Optional

from .protocol import ProtocolViolation, iter_messages
from .scene import SceneState


class StreamIngestor(threading.Thread):
    """
    Apply tagged messages to ``scene`` in arrival order until end of stream.

    A clean end of stream ends the thread normally. A protocol violation or a
    transport error ends it too, with the exception kept on ``error`` and a
    diagnostic printed.
    """

    def __init__(
        self,
        stream: BinaryIO,
        scene: SceneState,
        *,
        with_heading: bool = True,
        name: str = "stream-ingestor",
    ):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.scene = scene
        self.with_heading = with_heading
        self.messages = 0
        self.error: Optional[Exception] = None

    @classmethod
    def connect(
        cls, host: str, port: int, scene: SceneState, *, with_heading: bool = True
    ) -> StreamIngestor:
        sock = socket.create_connection((host, port), timeout=5)
        sock.settimeout(None)
        return cls(sock.makefile("rb"), scene, with_heading=with_heading)

    @property
    def finished(self) -> bool:
        return self.ident is not None and not self.is_alive()

    def run(self) -> None:
        try:
            for message in iter_messages(self.stream, with_heading=self.with_heading):
                self.scene.apply(message)
                self.messages += 1
        except ProtocolViolation as exc:
            self.error = exc
            print(
                f"[ingest] Protocol violation after {self.messages} messages: {exc}",
                file=sys.stderr,
            )
            return
        except OSError as exc:
            self.error = exc
            print(f"[ingest] Read error: {exc}", file=sys.stderr)
            return
        finally:
            self.scene.changed.set()
        print(f"[ingest] Stream ended after {self.messages} messages", file=sys.stderr)
