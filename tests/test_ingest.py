"""
Tests for the shared scene and the stream ingestor.
"""

import io
import math
import socket
import threading

from camloc_harness.ingest import StreamIngestor
from camloc_harness.models import CameraPlacement, CameraRemoval, PositionEstimate
from camloc_harness.protocol import TruncatedMessage, UnknownMessageKind, encode_message
from camloc_harness.scene import SceneState


def _ingest(data):
    scene = SceneState()
    ingestor = StreamIngestor(io.BytesIO(data), scene)
    ingestor.start()
    ingestor.join(timeout=5)
    assert ingestor.finished
    return scene, ingestor


class TestSceneState:
    def test_remove_unknown_host_is_noop(self):
        scene = SceneState()
        scene.add_camera(CameraPlacement("camA", 0.0, 0.0, 0.0, 1.0))
        version = scene.version

        assert scene.remove_camera("camZ") == 0
        assert scene.version == version
        revision, cameras = scene.cameras()
        assert revision == 0
        assert [c.host_id for c in cameras] == ["camA"]

    def test_remove_then_place_leaves_one(self):
        scene = SceneState()
        placement = CameraPlacement("camA", 0.0, 0.0, 0.0, 1.0)
        scene.apply(placement)
        scene.apply(CameraRemoval("camA"))
        scene.apply(placement)

        revision, cameras = scene.cameras()
        assert cameras == [placement]
        assert revision == 1

    def test_duplicate_placements_accumulate(self):
        scene = SceneState()
        scene.apply(CameraPlacement("camA", 0.0, 0.0, 0.0, 1.0))
        scene.apply(CameraPlacement("camA", 1.0, 0.0, 0.0, 1.0))
        assert len(scene.cameras()[1]) == 2
        assert scene.remove_camera("camA") == 2
        assert scene.cameras()[1] == []

    def test_trail_and_estimate(self):
        scene = SceneState()
        for i in range(5):
            scene.apply(PositionEstimate(float(i), 0.0))
        assert scene.trail_length() == 5
        assert scene.estimate() == PositionEstimate(4.0, 0.0)
        total, tail = scene.trail_since(3)
        assert total == 5
        assert [p.x for p in tail] == [3.0, 4.0]

    def test_mutation_signals_change(self):
        scene = SceneState()
        assert not scene.changed.is_set()
        scene.apply(PositionEstimate(0.0, 0.0))
        assert scene.changed.is_set()
        assert scene.version == 1


class TestStreamIngestor:
    def test_end_to_end_scenario(self, scenario_bytes):
        scene, ingestor = _ingest(scenario_bytes)

        assert ingestor.error is None
        assert ingestor.messages == 3
        _, cameras = scene.cameras()
        assert [c.host_id for c in cameras] == ["camA", "camB"]
        assert scene.trail_length() == 1
        estimate = scene.estimate()
        assert (estimate.x, estimate.y) == (0.5, 0.5)
        assert math.isnan(estimate.heading)
        assert not estimate.heading_known

    def test_arrival_order_preserved(self):
        data = b"".join(encode_message(PositionEstimate(float(i), 0.0)) for i in range(50))
        scene, _ = _ingest(data)
        _, trail = scene.trail_since(0)
        assert [p.x for p in trail] == [float(i) for i in range(50)]

    def test_unknown_kind_stops_ingestion(self, scenario_bytes):
        scene, ingestor = _ingest(scenario_bytes + b"\x00\x00\x00\x07" + b"\x00" * 16)
        assert isinstance(ingestor.error, UnknownMessageKind)
        assert ingestor.messages == 3
        assert len(scene.cameras()[1]) == 2

    def test_truncated_stream_is_an_error(self, scenario_bytes):
        _, ingestor = _ingest(scenario_bytes[:-3])
        assert isinstance(ingestor.error, TruncatedMessage)
        assert ingestor.messages == 2

    def test_without_heading(self):
        data = encode_message(PositionEstimate(1.0, 2.0, 3.0), with_heading=False)
        scene = SceneState()
        ingestor = StreamIngestor(io.BytesIO(data), scene, with_heading=False)
        ingestor.run()
        assert scene.estimate() == PositionEstimate(1.0, 2.0)

    def test_reads_from_socket_in_pieces(self, scenario_bytes):
        writer_sock, reader_sock = socket.socketpair()
        scene = SceneState()
        ingestor = StreamIngestor(reader_sock.makefile("rb"), scene)
        ingestor.start()

        def feed():
            for i in range(0, len(scenario_bytes), 3):
                writer_sock.sendall(scenario_bytes[i : i + 3])
            writer_sock.shutdown(socket.SHUT_WR)

        sender = threading.Thread(target=feed)
        sender.start()
        sender.join(timeout=5)
        ingestor.join(timeout=5)
        writer_sock.close()
        reader_sock.close()

        assert ingestor.error is None
        assert ingestor.messages == 3
        assert scene.trail_length() == 1
