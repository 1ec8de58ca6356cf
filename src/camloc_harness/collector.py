"""
Test collector: receives client datagrams and forwards tagged messages.

Registrations become camera placements keyed by ``"ip:port"``, disconnects
become removals. Position estimation is not done here; an optional solver
callback receives the latest value of every registered host after each value
datagram and may return an estimate to forward.
"""

from __future__ import annotations

import argparse
import socket
import sys
import threading
from typing import BinaryIO, Callable, Dict, Optional, Tuple

from .config import NETWORK
from .models import CameraPlacement, CameraRemoval, PositionEstimate
from .protocol import (
    Message,
    ProtocolViolation,
    decode_registration,
    decode_value,
    encode_message,
    encode_stop,
    is_disconnect,
    is_registration,
)

Address = Tuple[str, int]
Solver = Callable[[Dict[str, float]], Optional[PositionEstimate]]


class Collector:
    """UDP listener that turns client traffic into a tagged stream."""

    def __init__(
        self,
        output: BinaryIO,
        host: str = "0.0.0.0",
        port: int = NETWORK["collector_port"],
        *,
        solver: Optional[Solver] = None,
        with_heading: bool = True,
        stop_after: Optional[int] = None,
    ):
        self.output = output
        self.host = host
        self.port = port
        self.solver = solver
        self.with_heading = with_heading
        self.stop_after = stop_after
        self.values_received = 0
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._clients: Dict[Address, CameraPlacement] = {}
        self._values: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def clients(self) -> Dict[Address, CameraPlacement]:
        with self._lock:
            return dict(self._clients)

    def start(self) -> bool:
        """Start the UDP listener."""
        if self._is_running:
            return True

        try:
            self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._socket.bind((self.host, self.port))
            self._socket.settimeout(1.0)
        except OSError as e:
            print(f"[collector] Failed to start: {e}", file=sys.stderr)
            return False

        self.port = self._socket.getsockname()[1]
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._thread.start()
        self._is_running = True
        print(f"[collector] Listening on {self.host}:{self.port}", file=sys.stderr)
        return True

    def stop(self) -> None:
        """Send stop datagrams to every client, forward removals, and shut down."""
        if not self._is_running:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)

        with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
            self._values.clear()
        for address, placement in clients:
            self._socket.sendto(encode_stop(), address)
            self._emit(CameraRemoval(placement.host_id))

        self._socket.close()
        self._is_running = False
        print(f"[collector] Stopped ({len(clients)} clients released)", file=sys.stderr)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the stop threshold is reached; returns whether it was."""
        return self._stop_event.wait(timeout)

    def _receive_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data, addr = self._socket.recvfrom(1024)
            except socket.timeout:
                continue
            except OSError as e:
                if not self._stop_event.is_set():
                    print(f"[collector] Receive error: {e}", file=sys.stderr)
                continue
            self._process_datagram(data, addr)

    def _process_datagram(self, data: bytes, addr: Address) -> None:
        host_id = f"{addr[0]}:{addr[1]}"

        if is_registration(data):
            x, y, rotation, fov = decode_registration(data)
            placement = CameraPlacement(host_id, x, y, rotation, fov)
            with self._lock:
                known = addr in self._clients
                self._clients[addr] = placement
            if known:
                self._emit(CameraRemoval(host_id))
            print(f"[collector] New camera connected from {host_id}", file=sys.stderr)
            self._emit(placement)
            return

        if is_disconnect(data):
            with self._lock:
                placement = self._clients.pop(addr, None)
                self._values.pop(host_id, None)
            if placement is not None:
                print(f"[collector] Camera disconnected from {host_id}", file=sys.stderr)
                self._emit(CameraRemoval(host_id))
            return

        with self._lock:
            registered = addr in self._clients
        if not registered:
            print(
                f"[collector] Ignoring {len(data)} bytes from unregistered {host_id}",
                file=sys.stderr,
            )
            return

        try:
            value = decode_value(data)
        except ProtocolViolation as e:
            print(f"[collector] Bad datagram from {host_id}: {e}", file=sys.stderr)
            return

        with self._lock:
            self._values[host_id] = value
            snapshot = dict(self._values)
        self.values_received += 1

        if self.solver is not None:
            estimate = self.solver(snapshot)
            if estimate is not None:
                self._emit(estimate)

        if self.stop_after is not None and self.values_received >= self.stop_after:
            self._stop_event.set()

    def _emit(self, message: Message) -> None:
        payload = encode_message(message, with_heading=self.with_heading)
        with self._output_lock:
            self.output.write(payload)
            self.output.flush()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect client datagrams and write the tagged stream to stdout."
    )
    parser.add_argument("--host", default="0.0.0.0", help="UDP host to bind")
    parser.add_argument(
        "--port", type=int, default=NETWORK["collector_port"], help="UDP port to bind"
    )
    parser.add_argument(
        "--stop-after",
        type=int,
        default=None,
        help="Send stop datagrams after this many values",
    )
    parser.add_argument(
        "--no-heading", action="store_true", help="Write x, y only position updates"
    )
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    collector = Collector(
        sys.stdout.buffer,
        args.host,
        args.port,
        with_heading=not args.no_heading,
        stop_after=args.stop_after,
    )
    if not collector.start():
        sys.exit(1)
    try:
        while not collector.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("\n[collector] Interrupted by user.", file=sys.stderr)
    finally:
        collector.stop()


if __name__ == "__main__":
    main()
