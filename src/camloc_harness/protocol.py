"""
Binary wire formats shared by clients, the collector and the visualizer.

Three profiles, all big-endian:

Tagged profile (collector -> visualizer, any ordered byte stream)::

    i32 kind
    kind 0: f64 x, f64 y[, f64 heading]      position update
    kind 1: u16 len, utf-8 host id, f64 x, f64 y, f64 rotation, f64 fov
    kind 2: u16 len, utf-8 host id            camera removal

Stream profile (legacy single-socket mode): raw f64 values, no tag.

Datagram profile (client <-> collector over UDP)::

    registration: u8 0xCC, f64 x, f64 y, f64 rotation, f64 fov
    value:        f64 bearing
    stop:         u8 0xCD + 3 padding bytes
    disconnect:   u8 0xDC
"""

from __future__ import annotations

import io
import math
import struct
from typing import BinaryIO, Iterator, List, Tuple, Union

from .models import CameraPlacement, CameraRemoval, PositionEstimate

KIND_POSITION = 0
KIND_PLACEMENT = 1
KIND_REMOVAL = 2

REGISTER_MAGIC = 0xCC
STOP_MAGIC = 0xCD
DISCONNECT_MAGIC = 0xDC

_KIND = struct.Struct(">i")
_STRLEN = struct.Struct(">H")
_DOUBLE = struct.Struct(">d")
_XY = struct.Struct(">dd")
_XYH = struct.Struct(">ddd")
_POSE = struct.Struct(">dddd")
_REGISTRATION = struct.Struct(">Bdddd")
_STOP = bytes((STOP_MAGIC, 0, 0, 0))

Message = Union[PositionEstimate, CameraPlacement, CameraRemoval]


class ProtocolViolation(ValueError):
    """Malformed tagged stream; fatal for the reader."""


class TruncatedMessage(ProtocolViolation):
    """End of stream in the middle of a message."""


class UnknownMessageKind(ProtocolViolation):
    def __init__(self, kind: int):
        super().__init__(f"unrecognized message kind {kind}")
        self.kind = kind


class StreamEnded(EOFError):
    """Clean end of stream at a message boundary."""


# ---------------------------------------------------------------- tagged ---


def _encode_str(value: str) -> bytes:
    raw = value.encode("utf-8")
    if len(raw) > 0xFFFF:
        raise ValueError(f"string too long for u16 length prefix: {len(raw)} bytes")
    return _STRLEN.pack(len(raw)) + raw


def encode_message(message: Message, *, with_heading: bool = True) -> bytes:
    if isinstance(message, PositionEstimate):
        if with_heading:
            heading = math.nan if message.heading is None else message.heading
            body = _XYH.pack(message.x, message.y, heading)
        else:
            body = _XY.pack(message.x, message.y)
        return _KIND.pack(KIND_POSITION) + body
    if isinstance(message, CameraPlacement):
        return (
            _KIND.pack(KIND_PLACEMENT)
            + _encode_str(message.host_id)
            + _POSE.pack(message.x, message.y, message.rotation, message.fov)
        )
    if isinstance(message, CameraRemoval):
        return _KIND.pack(KIND_REMOVAL) + _encode_str(message.host_id)
    raise TypeError(f"not a tagged message: {message!r}")


def _read_exact(stream: BinaryIO, size: int, *, boundary: bool = False) -> bytes:
    buf = b""
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            if boundary and not buf:
                raise StreamEnded()
            raise TruncatedMessage(
                f"stream ended after {len(buf)} of {size} bytes"
            )
        buf += chunk
    return buf


def _read_str(stream: BinaryIO) -> str:
    (length,) = _STRLEN.unpack(_read_exact(stream, _STRLEN.size))
    raw = _read_exact(stream, length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolViolation(f"host id is not valid utf-8: {exc}") from exc


def read_message(stream: BinaryIO, *, with_heading: bool = True) -> Message:
    """
    Read one tagged message.

    Raises ``StreamEnded`` when the stream is exhausted exactly at a message
    boundary, ``TruncatedMessage`` when it ends mid-message and
    ``UnknownMessageKind`` for any discriminator other than 0, 1 or 2.
    """

    (kind,) = _KIND.unpack(_read_exact(stream, _KIND.size, boundary=True))

    if kind == KIND_POSITION:
        if with_heading:
            x, y, heading = _XYH.unpack(_read_exact(stream, _XYH.size))
            return PositionEstimate(x, y, heading)
        x, y = _XY.unpack(_read_exact(stream, _XY.size))
        return PositionEstimate(x, y)

    if kind == KIND_PLACEMENT:
        host_id = _read_str(stream)
        x, y, rotation, fov = _POSE.unpack(_read_exact(stream, _POSE.size))
        return CameraPlacement(host_id, x, y, rotation, fov)

    if kind == KIND_REMOVAL:
        return CameraRemoval(_read_str(stream))

    raise UnknownMessageKind(kind)


def iter_messages(stream: BinaryIO, *, with_heading: bool = True) -> Iterator[Message]:
    while True:
        try:
            message = read_message(stream, with_heading=with_heading)
        except StreamEnded:
            return
        yield message


def decode_messages(data: bytes, *, with_heading: bool = True) -> List[Message]:
    return list(iter_messages(io.BytesIO(data), with_heading=with_heading))


# ---------------------------------------------------------------- stream ---


def encode_value(value: float) -> bytes:
    return _DOUBLE.pack(value)


def iter_values(stream: BinaryIO) -> Iterator[float]:
    while True:
        try:
            raw = _read_exact(stream, _DOUBLE.size, boundary=True)
        except StreamEnded:
            return
        yield _DOUBLE.unpack(raw)[0]


# -------------------------------------------------------------- datagram ---


def encode_registration(x: float, y: float, rotation: float, fov: float) -> bytes:
    return _REGISTRATION.pack(REGISTER_MAGIC, x, y, rotation, fov)


def decode_registration(data: bytes) -> Tuple[float, float, float, float]:
    if len(data) != _REGISTRATION.size or data[0] != REGISTER_MAGIC:
        raise ProtocolViolation(f"not a registration datagram ({len(data)} bytes)")
    _, x, y, rotation, fov = _REGISTRATION.unpack(data)
    return x, y, rotation, fov


def is_registration(data: bytes) -> bool:
    return len(data) == _REGISTRATION.size and data[0] == REGISTER_MAGIC


def decode_value(data: bytes) -> float:
    if len(data) != _DOUBLE.size:
        raise ProtocolViolation(f"value datagram must be 8 bytes, got {len(data)}")
    return _DOUBLE.unpack(data)[0]


def encode_stop() -> bytes:
    return _STOP


def is_stop(data: bytes) -> bool:
    return len(data) == len(_STOP) and data[0] == STOP_MAGIC


def encode_disconnect() -> bytes:
    return bytes((DISCONNECT_MAGIC,))


def is_disconnect(data: bytes) -> bool:
    return data == bytes((DISCONNECT_MAGIC,))
