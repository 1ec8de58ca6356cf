"""
Tests for the UDP test collector.
"""

import io
import socket
import threading
import time

import pytest

from camloc_harness.client import TelemetryClient
from camloc_harness.collector import Collector
from camloc_harness.config import ClientConfig
from camloc_harness.models import CameraPlacement, CameraRemoval, PositionEstimate
from camloc_harness.protocol import (
    decode_messages,
    encode_disconnect,
    encode_registration,
    encode_value,
    is_stop,
)
from camloc_harness.sources import WanderSource, bearings_from_source


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def output():
    return io.BytesIO()


@pytest.fixture
def collector(output):
    collector = Collector(output, "127.0.0.1", 0, with_heading=False)
    assert collector.start()
    yield collector
    collector.stop()


@pytest.fixture
def camera_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


def _host_id(sock):
    host, port = sock.getsockname()
    return f"{host}:{port}"


class TestCollector:
    def test_registration_and_disconnect(self, collector, output, camera_socket):
        target = ("127.0.0.1", collector.port)
        camera_socket.sendto(encode_registration(1.0, 2.0, 0.5, 1.08), target)
        camera_socket.sendto(encode_value(0.4), target)
        camera_socket.sendto(encode_disconnect(), target)

        host_id = _host_id(camera_socket)
        assert wait_for(
            lambda: len(decode_messages(output.getvalue(), with_heading=False)) == 2
        )
        assert decode_messages(output.getvalue(), with_heading=False) == [
            CameraPlacement(host_id, 1.0, 2.0, 0.5, 1.08),
            CameraRemoval(host_id),
        ]
        assert collector.values_received == 1
        assert collector.clients == {}

    def test_unregistered_values_ignored(self, collector, output, camera_socket):
        target = ("127.0.0.1", collector.port)
        camera_socket.sendto(encode_value(0.4), target)
        camera_socket.sendto(encode_registration(0.0, 0.0, 0.0, 1.0), target)

        assert wait_for(lambda: collector.clients)
        assert collector.values_received == 0

    def test_reregistration_replaces_placement(self, collector, output, camera_socket):
        target = ("127.0.0.1", collector.port)
        camera_socket.sendto(encode_registration(0.0, 0.0, 0.0, 1.0), target)
        camera_socket.sendto(encode_registration(3.0, 0.0, 0.0, 1.0), target)

        host_id = _host_id(camera_socket)
        assert wait_for(
            lambda: len(decode_messages(output.getvalue(), with_heading=False)) == 3
        )
        assert decode_messages(output.getvalue(), with_heading=False) == [
            CameraPlacement(host_id, 0.0, 0.0, 0.0, 1.0),
            CameraRemoval(host_id),
            CameraPlacement(host_id, 3.0, 0.0, 0.0, 1.0),
        ]

    def test_solver_estimates_forwarded(self, output, camera_socket):
        def solver(values):
            if len(values) == 1:
                (value,) = values.values()
                return PositionEstimate(value, 0.0)
            return None

        collector = Collector(output, "127.0.0.1", 0, solver=solver, with_heading=False)
        assert collector.start()
        try:
            target = ("127.0.0.1", collector.port)
            camera_socket.sendto(encode_registration(0.0, 0.0, 0.0, 1.0), target)
            camera_socket.sendto(encode_value(0.25), target)
            assert wait_for(lambda: collector.values_received == 1)
        finally:
            collector.stop()

        messages = decode_messages(output.getvalue(), with_heading=False)
        assert messages[1] == PositionEstimate(0.25, 0.0)
        assert isinstance(messages[-1], CameraRemoval)

    def test_stop_notifies_clients(self, output, camera_socket):
        collector = Collector(output, "127.0.0.1", 0, stop_after=2, with_heading=False)
        assert collector.start()
        target = ("127.0.0.1", collector.port)
        camera_socket.sendto(encode_registration(0.0, 0.0, 0.0, 1.0), target)
        camera_socket.sendto(encode_value(0.1), target)
        camera_socket.sendto(encode_value(0.2), target)

        assert collector.wait(3.0)
        collector.stop()

        data, _ = camera_socket.recvfrom(64)
        assert is_stop(data)
        messages = decode_messages(output.getvalue(), with_heading=False)
        assert messages[-1] == CameraRemoval(_host_id(camera_socket))
        assert not collector.is_running


class TestClientCollectorSession:
    def test_collector_stops_running_client(self, output):
        collector = Collector(output, "127.0.0.1", 0, stop_after=3)
        assert collector.start()

        config = ClientConfig(
            client_id=0, host="127.0.0.1", port=collector.port, tick_interval_s=0.01
        )
        client = TelemetryClient(config)
        results = []
        bearings = bearings_from_source(WanderSource(seed=4), 3.0, config.fov)
        thread = threading.Thread(target=lambda: results.append(client.run(bearings)))
        thread.start()

        try:
            assert collector.wait(5.0)
        finally:
            collector.stop()
        thread.join(timeout=5.0)
        client.close()

        assert results and results[0].stopped_by_collector
        assert results[0].sent >= 3
        kinds = [type(m) for m in decode_messages(output.getvalue())]
        assert kinds == [CameraPlacement, CameraRemoval]


class StallingOutput(io.BytesIO):
    """Output whose writes block until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def write(self, data):
        self.entered.set()
        self.release.wait(5.0)
        return super().write(data)


class TestOutputLocking:
    def test_client_table_readable_during_slow_write(self, camera_socket):
        output = StallingOutput()
        collector = Collector(output, "127.0.0.1", 0)
        assert collector.start()
        try:
            camera_socket.sendto(
                encode_registration(0.0, 0.0, 0.0, 1.0), ("127.0.0.1", collector.port)
            )
            assert output.entered.wait(3.0)

            snapshots = []
            reader = threading.Thread(target=lambda: snapshots.append(collector.clients))
            reader.start()
            reader.join(timeout=1.0)

            assert not reader.is_alive()
            assert len(snapshots[0]) == 1
        finally:
            output.release.set()
            collector.stop()
