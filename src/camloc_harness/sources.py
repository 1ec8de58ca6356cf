"""
Position sources that drive the simulated camera clients.

Each source exposes ``produce()`` which returns a fresh lazy sequence of
world points, so a source can be run more than once with the same result
(for ``WanderSource`` as long as it is seeded).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Iterable, Iterator, List, Optional, Union

import numpy as np

from .config import CLIENT, WORLD, ConfigurationError
from .models import BearingPair, WorldPoint
from .projection import project


@dataclass
class ArcSource:
    """Fixed parabolic arc used for repeatable tests."""

    kind: ClassVar[str] = "arc"

    density: int = 1
    length: int = CLIENT["arc_points"]

    def produce(self) -> Iterator[WorldPoint]:
        xs = (0.2 / self.density) * np.arange(self.length * self.density)
        ys = np.sqrt(xs) / 3.0
        for x, y in zip(xs, ys):
            yield WorldPoint(float(x), float(y))


@dataclass
class WanderSource:
    """
    Bounded random walk.

    Near the edge of the square (within ``threshold`` of half the square size
    on either axis) the heading is forced to turn by ``turn_factor`` every
    tick until the walker heads back inside; elsewhere the heading is
    perturbed by a clamped uniform draw.
    """

    kind: ClassVar[str] = "wander"

    square_size: float = WORLD["square_size"]
    step: float = CLIENT["wander_step"]
    turn_factor: float = math.radians(CLIENT["wander_turn_deg"])
    threshold: float = CLIENT["wander_threshold"]
    randomize_origin: bool = False
    heading: Optional[float] = None
    seed: Optional[int] = None

    def produce(self) -> Iterator[WorldPoint]:
        rng = np.random.default_rng(self.seed)
        if self.randomize_origin:
            x, y = (float(v) for v in rng.uniform(-1.0, 1.0, size=2))
        else:
            x, y = 0.0, 0.0
        angle = (
            self.heading
            if self.heading is not None
            else float(rng.uniform(0.0, 2.0 * math.pi))
        )
        limit = self.square_size / 2.0 - self.threshold

        while True:
            yield WorldPoint(x, y)
            if abs(x) > limit or abs(y) > limit:
                angle += self.turn_factor
            else:
                delta = rng.uniform(-2.0 * self.turn_factor, 2.0 * self.turn_factor)
                angle += float(np.clip(delta, -self.turn_factor, self.turn_factor))
            x += self.step * math.cos(angle)
            y += self.step * math.sin(angle)


PositionSource = Union[ArcSource, WanderSource]

_SOURCES = {cls.kind: cls for cls in (ArcSource, WanderSource)}


def make_source(kind: str, **options) -> PositionSource:
    try:
        cls = _SOURCES[kind]
    except KeyError:
        raise ConfigurationError(
            f"unknown position source {kind!r}, expected one of {sorted(_SOURCES)}"
        ) from None
    return cls(**options)


def bearings_from_source(
    source: PositionSource, square_size: float, fov: float
) -> Iterator[BearingPair]:
    for point in source.produce():
        yield project(point, square_size, fov)


def read_bearing_dump(path: Path) -> List[BearingPair]:
    """
    Load a flat file of big-endian f64 bearing pairs.

    A dangling value without its partner is ignored, matching a reader that
    stops at the first short read.
    """

    try:
        values = np.fromfile(path, dtype=">f8")
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"cannot read bearing dump {path}: {exc}") from exc
    usable = len(values) - len(values) % 2
    pairs = values[:usable].reshape(-1, 2)
    return [BearingPair(float(b1), float(b2)) for b1, b2 in pairs]


def write_bearing_dump(path: Path, pairs: Iterable[BearingPair]) -> int:
    data = np.array([(p.b1, p.b2) for p in pairs], dtype=">f8").reshape(-1, 2)
    data.tofile(path)
    return len(data)
