"""
Simulated camera client.

Projects a position source (or a recorded bearing dump) to bearings and
streams this client's axis to the collector over UDP, checking for the
collector's stop datagram once per tick. The legacy mode instead serves the
raw values to exactly one TCP connection.
"""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import CLIENT, WORLD, ClientConfig, ConfigurationError, load_client_config
from .models import BearingPair
from .protocol import encode_disconnect, encode_registration, encode_value, is_stop
from .sources import bearings_from_source, make_source, read_bearing_dump


@dataclass
class RunResult:
    sent: int
    stopped_by_collector: bool


class TelemetryClient:
    """UDP sender for one bearing axis."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        ack_timeout_s: float = CLIENT["ack_timeout_s"],
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config.validate()
        self.address = (config.host, config.port)
        self.ack_timeout_s = ack_timeout_s
        self._clock = clock
        self._socket: Optional[socket.socket] = None
        self._stop_event = threading.Event()

    def open(self) -> None:
        if self._socket is None:
            self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._socket.settimeout(self.ack_timeout_s)

    def close(self) -> None:
        if self._socket:
            self._socket.close()
            self._socket = None

    def stop(self) -> None:
        """Ask a running send loop to finish after the current tick."""
        self._stop_event.set()

    def register(self) -> None:
        cfg = self.config
        self._socket.sendto(
            encode_registration(cfg.x, cfg.y, cfg.rotation, cfg.fov), self.address
        )
        print(
            f"[client] Registered as {cfg.client_id} with {cfg.host}:{cfg.port}",
            file=sys.stderr,
        )

    def _stop_received(self) -> bool:
        try:
            data, _ = self._socket.recvfrom(64)
        except socket.timeout:
            return False
        except ConnectionError:
            # ICMP port unreachable surfaced on the next receive
            return False
        return is_stop(data)

    def run(self, bearings: Iterable[BearingPair]) -> RunResult:
        self.open()
        self.register()
        interval = self.config.tick_interval_s
        sent = 0

        for pair in bearings:
            started = self._clock()
            if self._stop_event.is_set():
                break
            if self._stop_received():
                print(f"[client] Stop received after {sent} values", file=sys.stderr)
                return RunResult(sent, True)

            value = pair.axis(self.config.client_id)
            self._socket.sendto(encode_value(value), self.address)
            print(f"[client] Sending pos #{sent} | {value}", file=sys.stderr)
            sent += 1

            remaining = interval - (self._clock() - started)
            if remaining > 0 and self._stop_event.wait(remaining):
                break

        self._socket.sendto(encode_disconnect(), self.address)
        return RunResult(sent, False)


class LegacyStreamServer:
    """Serve raw f64 values, one per tick, to exactly one TCP connection."""

    def __init__(
        self,
        values: Iterable[float],
        *,
        host: str = "0.0.0.0",
        port: int = 0,
        tick_interval_s: float = CLIENT["tick_interval_s"],
    ):
        self.values = values
        self.host = host
        self.port = port
        self.tick_interval_s = tick_interval_s
        self.sent = 0
        self.listening = asyncio.Event()
        self._claimed = False
        self._done = asyncio.Event()
        self._server: asyncio.AbstractServer | None = None

    async def serve(self) -> int:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        print(f"[legacy] Waiting for a connection on {self.host}:{self.port}", file=sys.stderr)
        self.listening.set()
        try:
            await self._done.wait()
        finally:
            self._server.close()
            await self._server.wait_closed()
        return self.sent

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if self._claimed:
            writer.close()
            await writer.wait_closed()
            return
        self._claimed = True
        self._server.close()
        peer = writer.get_extra_info("peername")
        print(f"[legacy] Client connected: {peer}", file=sys.stderr)
        try:
            for value in self.values:
                writer.write(encode_value(value))
                await writer.drain()
                print(f"[legacy] Sending pos #{self.sent} | {value}", file=sys.stderr)
                self.sent += 1
                await asyncio.sleep(self.tick_interval_s)
        except ConnectionError as exc:
            print(f"[legacy] Client dropped: {exc}", file=sys.stderr)
        finally:
            writer.close()
            await writer.wait_closed()
            self._done.set()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a simulated camloc camera client.")
    parser.add_argument("--config", type=Path, default=None, help="Binary client config file")
    parser.add_argument("--id", type=int, default=None, help="Client id: 0 sends b1, 1 sends b2")
    parser.add_argument("--host", default=None, help="Collector host")
    parser.add_argument("--port", type=int, default=None, help="Collector UDP port")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    parser.add_argument(
        "--source", choices=("arc", "wander"), default="arc", help="Position source"
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for the wander source")
    parser.add_argument("--dump", type=Path, default=None, help="Replay a bearing dump file")
    parser.add_argument(
        "--square-size", type=float, default=WORLD["square_size"], help="World square size"
    )
    parser.add_argument(
        "--legacy",
        action="store_true",
        help="Serve raw values to one TCP connection on legacy_base_port + id",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ClientConfig:
    if args.config is not None:
        config = load_client_config(args.config)
    elif args.id is not None:
        config = ClientConfig(client_id=args.id)
    else:
        raise ConfigurationError("either --config or --id is required")

    if args.id is not None:
        config.client_id = args.id
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.interval is not None:
        config.tick_interval_s = args.interval
    return config.validate()


def main() -> None:
    args = build_arg_parser().parse_args()
    try:
        config = config_from_args(args)
        if args.dump is not None:
            bearings: Iterable[BearingPair] = read_bearing_dump(args.dump)
        else:
            options = {"seed": args.seed} if args.source == "wander" else {}
            source = make_source(args.source, **options)
            bearings = bearings_from_source(source, args.square_size, config.fov)
    except ConfigurationError as exc:
        print(f"[client] Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    try:
        if args.legacy:
            server = LegacyStreamServer(
                (pair.axis(config.client_id) for pair in bearings),
                port=CLIENT["legacy_base_port"] + config.client_id,
                tick_interval_s=config.tick_interval_s,
            )
            asyncio.run(server.serve())
            return

        client = TelemetryClient(config)
        try:
            result = client.run(bearings)
        finally:
            client.close()
        print(
            f"[client] Done: {result.sent} values sent"
            + (" (stopped by collector)" if result.stopped_by_collector else ""),
            file=sys.stderr,
        )
    except KeyboardInterrupt:
        print("\n[client] Interrupted by user.", file=sys.stderr)


if __name__ == "__main__":
    main()
