"""
Tagged-stream feeder for the visualizer.

Announces the two virtual cameras, then emits one position update per point
of a position source at the tick interval, either to stdout (pipe it into
``camloc-visualizer``) or to every TCP client connected to the feed port.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import itertools
import math
import sys
import time
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Set

from .config import CLIENT, NETWORK, WORLD, ConfigurationError
from .models import CameraRemoval, PositionEstimate
from .projection import project, virtual_cameras
from .protocol import Message, encode_message
from .sources import PositionSource, make_source, write_bearing_dump


class TaggedFeed:
    """Turns a position source into tagged messages."""

    def __init__(
        self,
        source: PositionSource,
        *,
        square_size: float = WORLD["square_size"],
        fov: float = math.radians(WORLD["fov_deg"]),
        with_heading: bool = True,
        remove_after: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        self.source = source
        self.square_size = square_size
        self.fov = fov
        self.with_heading = with_heading
        self.remove_after = remove_after
        self.limit = limit
        self.cameras = virtual_cameras(square_size, fov)

    def announcements(self) -> List[Message]:
        return list(self.cameras)

    def messages(self) -> Iterator[Message]:
        """Position updates, heading taken from the direction of travel."""
        points = itertools.islice(self.source.produce(), self.limit)
        previous = None
        for index, point in enumerate(points):
            if self.remove_after is not None and index == self.remove_after:
                yield CameraRemoval(self.cameras[-1].host_id)
            heading = math.nan
            if previous is not None and (point.x, point.y) != (previous.x, previous.y):
                heading = math.atan2(point.y - previous.y, point.x - previous.x)
            previous = point
            yield PositionEstimate(point.x, point.y, heading if self.with_heading else None)

    def encode(self, message: Message) -> bytes:
        return encode_message(message, with_heading=self.with_heading)


def write_stream(feed: TaggedFeed, output: BinaryIO, tick_interval_s: float) -> int:
    """Write the whole feed to ``output``; returns the number of messages."""
    count = 0
    for message in feed.announcements():
        output.write(feed.encode(message))
        count += 1
    output.flush()

    for message in feed.messages():
        started = time.perf_counter()
        output.write(feed.encode(message))
        output.flush()
        count += 1
        if isinstance(message, PositionEstimate):
            remaining = tick_interval_s - (time.perf_counter() - started)
            if remaining > 0:
                time.sleep(remaining)
    return count


class FeedServer:
    """
    TCP broadcaster of the tagged feed.

    Any number of clients may connect; each one gets the camera announcements
    first and then every message broadcast after it joined. With
    ``wait_for_clients`` the broadcast holds until that many are connected.
    """

    def __init__(
        self,
        feed: TaggedFeed,
        *,
        host: str,
        port: int,
        tick_interval_s: float,
        wait_for_clients: int = 0,
    ):
        self.feed = feed
        self.host = host
        self.port = port
        self.tick_interval_s = tick_interval_s
        self.wait_for_clients = wait_for_clients
        self.listening = asyncio.Event()
        self._joined = asyncio.Event()
        self._clients: Set[asyncio.StreamWriter] = set()
        self._server: asyncio.AbstractServer | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        addr = ", ".join(str(sock.getsockname()) for sock in self._server.sockets)
        print(f"[feed] Serving tagged stream on {addr}", file=sys.stderr)
        self.listening.set()
        async with self._server:
            while len(self._clients) < self.wait_for_clients:
                self._joined.clear()
                await self._joined.wait()
            await self._broadcast_loop()
            for writer in list(self._clients):
                writer.close()
            self._clients.clear()

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        print(f"[feed] Client connected: {peer}", file=sys.stderr)
        for message in self.feed.announcements():
            writer.write(self.feed.encode(message))
        self._clients.add(writer)
        self._joined.set()
        try:
            while not reader.at_eof():
                await reader.read(1024)
        except ConnectionError as exc:
            print(f"[feed] Client {peer} reset: {exc}", file=sys.stderr)
        finally:
            print(f"[feed] Client disconnected: {peer}", file=sys.stderr)
            self._clients.discard(writer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def _broadcast_loop(self) -> None:
        for message in self.feed.messages():
            encoded = self.feed.encode(message)
            # handlers may drop clients while a drain is pending
            clients = list(self._clients)
            for writer in clients:
                writer.write(encoded)
            for writer in clients:
                try:
                    await writer.drain()
                except ConnectionError:
                    self._clients.discard(writer)
            if isinstance(message, PositionEstimate):
                await asyncio.sleep(self.tick_interval_s)
        print("[feed] Source exhausted, closing clients", file=sys.stderr)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Feed a tagged camloc stream from a synthetic position source."
    )
    parser.add_argument("--source", choices=("arc", "wander"), default="wander")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the wander source")
    parser.add_argument(
        "--interval",
        type=float,
        default=CLIENT["tick_interval_s"],
        help="Seconds between position updates",
    )
    parser.add_argument("--limit", type=int, default=None, help="Stop after N points")
    parser.add_argument(
        "--remove-after", type=int, default=None, help="Remove cam1 after N points"
    )
    parser.add_argument("--no-heading", action="store_true", help="Write x, y only")
    parser.add_argument(
        "--tcp",
        action="store_true",
        help=f"Serve on TCP port {NETWORK['feed_port']} instead of writing stdout",
    )
    parser.add_argument("--port", type=int, default=NETWORK["feed_port"])
    parser.add_argument(
        "--wait-clients",
        type=int,
        default=0,
        help="With --tcp, hold the stream until N clients are connected",
    )
    parser.add_argument(
        "--dump",
        type=Path,
        default=None,
        help="Write the projected bearings to a dump file and exit",
    )
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    options = {"seed": args.seed} if args.source == "wander" else {}
    feed = TaggedFeed(
        make_source(args.source, **options),
        with_heading=not args.no_heading,
        remove_after=args.remove_after,
        limit=args.limit,
    )

    try:
        if args.dump is not None:
            if args.source == "wander" and args.limit is None:
                raise ConfigurationError("--dump with the wander source needs --limit")
            points = itertools.islice(feed.source.produce(), args.limit)
            count = write_bearing_dump(
                args.dump, (project(p, feed.square_size, feed.fov) for p in points)
            )
            print(f"[feed] Wrote {count} bearing pairs to {args.dump}", file=sys.stderr)
        elif args.tcp:
            server = FeedServer(
                feed,
                host=NETWORK["host"],
                port=args.port,
                tick_interval_s=args.interval,
                wait_for_clients=args.wait_clients,
            )
            asyncio.run(server.start())
        else:
            count = write_stream(feed, sys.stdout.buffer, args.interval)
            print(f"[feed] Wrote {count} messages", file=sys.stderr)
    except ConfigurationError as exc:
        print(f"[feed] Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    except BrokenPipeError:
        print("[feed] Reader closed the stream", file=sys.stderr)
    except KeyboardInterrupt:
        print("\n[feed] Interrupted by user.", file=sys.stderr)


if __name__ == "__main__":
    main()
