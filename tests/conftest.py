"""Shared test fixtures for the controlcenter test suite.

Provides common fixtures used across unit and integration tests:
sample snapshots, an in-memory transport the tests drive by hand,
and fast timer settings.
"""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from controlcenter.config.settings import ConnectionConfig
from controlcenter.domain.models import (
    ConnectionEstablished,
    ConnectionLost,
    Endpoint,
    LineReceived,
)
from controlcenter.imaging.codec import encode_image_payload
from controlcenter.transport.base import LineTransport, TransportSink


# ---------------------------------------------------------------------------
# Image Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_image() -> np.ndarray:
    """A small BGR image with some structure so PNG output is non-trivial."""
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    image[:, :, 0] = np.arange(64, dtype=np.uint8)[None, :] * 4
    image[:, :, 1] = np.arange(48, dtype=np.uint8)[:, None] * 5
    cv2.rectangle(image, (10, 10), (40, 30), (0, 0, 255), -1)
    return image


@pytest.fixture
def sample_payload(sample_image: np.ndarray) -> str:
    """The sample image as base64 PNG text."""
    return encode_image_payload(sample_image, ".png")


@pytest.fixture
def sample_png_bytes(sample_image: np.ndarray) -> bytes:
    success, buffer = cv2.imencode(".png", sample_image)
    assert success
    return buffer.tobytes()


# ---------------------------------------------------------------------------
# Transport Fixtures
# ---------------------------------------------------------------------------


class FakeTransport(LineTransport):
    """In-memory transport driven by the test instead of a socket."""

    def __init__(self, sink: TransportSink) -> None:
        super().__init__(sink)
        self.sent: list[str] = []
        self.endpoint: Endpoint | None = None
        self.closed = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self, endpoint: Endpoint) -> None:
        self.endpoint = endpoint

    def send(self, line: str) -> None:
        if self._connected:
            self.sent.append(line)

    def close(self) -> None:
        self.closed = True
        self._connected = False

    def establish(self) -> None:
        self._connected = True
        self._emit(ConnectionEstablished())

    def receive(self, *lines: str) -> None:
        for line in lines:
            self._emit(LineReceived(line=line))

    def lose(self, reason: str = "connection reset") -> None:
        self._connected = False
        self._emit(ConnectionLost(reason=reason))


class FakeTransportFactory:
    """Creates FakeTransports and remembers every one it made."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []

    def __call__(self, sink: TransportSink) -> FakeTransport:
        transport = FakeTransport(sink)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def fast_config() -> ConnectionConfig:
    """Connection settings with timers short enough for tests."""
    return ConnectionConfig(
        host="127.0.0.1",
        port=8888,
        connect_timeout=1.0,
        read_timeout=0.2,
        reconnect_delay=0.05,
        heartbeat_interval=0.05,
        identify_delay=0.01,
        heartbeat_start_delay=0.02,
    )

