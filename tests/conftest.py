"""
Shared test fixtures for the camloc harness tests.
"""

import math
import sys
from pathlib import Path

import pytest

# Make the src layout importable without an install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from camloc_harness.models import CameraPlacement, PositionEstimate  # noqa: E402
from camloc_harness.protocol import encode_message  # noqa: E402


@pytest.fixture
def fov():
    return math.radians(62.2)


@pytest.fixture
def scenario_messages():
    """Two cameras around one position update with unknown heading."""
    return [
        CameraPlacement("camA", 0.0, 0.0, 0.0, 1.08),
        PositionEstimate(0.5, 0.5, math.nan),
        CameraPlacement("camB", 1.0, 0.0, 0.0, 1.08),
    ]


@pytest.fixture
def scenario_bytes(scenario_messages):
    return b"".join(encode_message(m) for m in scenario_messages)
