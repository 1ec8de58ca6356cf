"""
Global configuration for the camloc test harness.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from pathlib import Path

# Shared world frame. The square is the physical extent the cameras cover.
WORLD = {
    "square_size": 3.0,
    "fov_deg": 62.2,
}

# Simulated camera client.
CLIENT = {
    "tick_interval_s": 0.1,
    "ack_timeout_s": 0.001,  # per-tick window for the stop datagram
    "legacy_base_port": 12340,
    "wander_step": 0.05,
    "wander_turn_deg": 20.0,
    "wander_threshold": 0.5,
    "arc_points": 7,
}

# Visualizer drawing parameters.
RENDER = {
    "target_fps": 60,
    "cam_size_px": 20,
    "dot_size_px": 6,
    "estimate_size_px": 10,
    "rect_percent": 0.35,  # world square width as a fraction of min(canvas w, h)
    "ray_length": 10.0,  # field-of-view edge rays, world units
    "hue_step": 0.01,
    "min_grid_spacing_px": 8,
    "window_size": (800, 800),
}

# Pan/zoom input handling.
VIEWPORT = {
    "zoom_sensitivity": 0.1,  # per wheel notch
    "drag_sensitivity": 0.01,  # world units per pixel at zoom 1
    "modifier_multiplier": 5.0,
    "min_zoom": 0.05,
    "max_zoom": 200.0,
}

# Networking options for client <-> collector <-> visualizer.
NETWORK = {
    "host": "127.0.0.1",
    "collector_port": 0xDDDD,
    "feed_port": 8766,
}

_CONFIG_HEAD = struct.Struct(">iH")
_CONFIG_TAIL = struct.Struct(">iddddq")


class ConfigurationError(ValueError):
    """Invalid client identity or unreadable configuration source."""


@dataclass
class ClientConfig:
    """Validated inputs of a simulated camera client."""

    client_id: int
    host: str = NETWORK["host"]
    port: int = NETWORK["collector_port"]
    tick_interval_s: float = CLIENT["tick_interval_s"]
    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0
    fov: float = math.radians(WORLD["fov_deg"])

    def validate(self) -> ClientConfig:
        if self.client_id not in (0, 1):
            raise ConfigurationError(
                f"client id must be 0 (b1 axis) or 1 (b2 axis), got {self.client_id}"
            )
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"port out of range: {self.port}")
        if not 0.0 < self.fov < math.pi:
            raise ConfigurationError(f"fov must be in (0, pi) radians, got {self.fov}")
        if self.tick_interval_s < 0:
            raise ConfigurationError("tick interval must not be negative")
        return self


def load_client_config(path: Path) -> ClientConfig:
    """
    Read a binary client configuration file.

    Layout (big-endian): i32 id, u16 address length, address bytes,
    i32 port, f64 x, y, rotation, fov, i64 tick milliseconds.
    """

    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigurationError(f"cannot read client config {path}: {exc}") from exc

    try:
        client_id, addr_len = _CONFIG_HEAD.unpack_from(data, 0)
        offset = _CONFIG_HEAD.size
        host = data[offset : offset + addr_len].decode("utf-8")
        if len(host.encode("utf-8")) != addr_len:
            raise ConfigurationError(f"truncated address in {path}")
        port, x, y, rotation, fov, tick_ms = _CONFIG_TAIL.unpack_from(
            data, offset + addr_len
        )
    except (struct.error, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"malformed client config {path}: {exc}") from exc

    return ClientConfig(
        client_id=client_id,
        host=host,
        port=port,
        tick_interval_s=tick_ms / 1000.0,
        x=x,
        y=y,
        rotation=rotation,
        fov=fov,
    ).validate()


def write_client_config(path: Path, config: ClientConfig) -> None:
    host = config.host.encode("utf-8")
    payload = (
        _CONFIG_HEAD.pack(config.client_id, len(host))
        + host
        + _CONFIG_TAIL.pack(
            config.port,
            config.x,
            config.y,
            config.rotation,
            config.fov,
            round(config.tick_interval_s * 1000),
        )
    )
    Path(path).write_bytes(payload)
