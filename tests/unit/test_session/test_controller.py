"""Tests for the session controller state machine and line routing."""

from __future__ import annotations

import asyncio

import pytest

from controlcenter.config.settings import ConnectionConfig
from controlcenter.domain.models import (
    CameraListChanged,
    ConnectionState,
    ConnectionStatusChanged,
    Endpoint,
    ImageDecoded,
    LimitReached,
    MessageReceived,
    PeerPresence,
    PeerStatusChanged,
    TransferComplete,
    TransferStarted,
    TransferState,
)
from controlcenter.imaging.codec import frame_payload
from controlcenter.session.controller import SessionController


@pytest.fixture
def controller(
    fast_config: ConnectionConfig, transport_factory
) -> SessionController:
    ctrl = SessionController(config=fast_config, transport_factory=transport_factory)
    yield ctrl
    ctrl.shutdown()


async def _connect(controller: SessionController, factory):
    controller.connect("127.0.0.1", 8888)
    transport = factory.latest
    transport.establish()
    await _settle()
    return transport


async def _settle(rounds: int = 5) -> None:
    """Let callbacks queued with call_soon_threadsafe run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def _drain_events(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


def _of(events: list, cls: type) -> list:
    return [e for e in events if isinstance(e, cls)]


def _states(events: list) -> list[ConnectionState]:
    return [e.state for e in _of(events, ConnectionStatusChanged)]


class TestConnect:
    @pytest.mark.asyncio
    async def test_connecting_emitted_before_socket_work(
        self, controller: SessionController, transport_factory
    ) -> None:
        controller.connect("10.0.0.2", 9000)
        events = _drain_events(controller.events)
        assert _states(events) == [ConnectionState.CONNECTING]
        assert controller.state is ConnectionState.CONNECTING
        assert transport_factory.latest.endpoint == Endpoint(host="10.0.0.2", port=9000)
        assert controller.endpoint == Endpoint(host="10.0.0.2", port=9000)

    @pytest.mark.asyncio
    async def test_established_identifies_then_heartbeats(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        assert controller.state is ConnectionState.CONNECTED
        assert controller.is_connected
        assert controller.heartbeat_active

        await asyncio.sleep(0.2)
        assert transport.sent[0] == "ID:CONTROL"
        assert transport.sent.count("PING") >= 2
        assert controller.state_history == [
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_connect_while_connected_is_ignored(
        self, controller: SessionController, transport_factory
    ) -> None:
        await _connect(controller, transport_factory)
        controller.connect("127.0.0.1", 8888)
        assert len(transport_factory.transports) == 1
        assert controller.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_while_connecting_replaces_attempt(
        self, controller: SessionController, transport_factory
    ) -> None:
        controller.connect("10.0.0.2", 9000)
        controller.connect("10.0.0.3", 9001)
        events = _drain_events(controller.events)
        assert _states(events) == [ConnectionState.CONNECTING, ConnectionState.CONNECTING]
        first, second = transport_factory.transports
        assert first.closed
        assert second.endpoint == Endpoint(host="10.0.0.3", port=9001)
        assert controller.state_history == [
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
        ]

        first.establish()
        await _settle()
        assert controller.state is ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_connect_after_shutdown_raises(self, controller: SessionController) -> None:
        controller.shutdown()
        with pytest.raises(RuntimeError):
            controller.connect("127.0.0.1", 8888)


class TestReconnect:
    @pytest.mark.asyncio
    async def test_lost_reports_peer_and_schedules_reconnect(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)

        transport.lose()
        await _settle()
        events = _drain_events(controller.events)
        assert _states(events) == [ConnectionState.LOST]
        (peer,) = _of(events, PeerStatusChanged)
        assert peer.presence is PeerPresence.DISCONNECTED
        assert not controller.heartbeat_active
        assert controller.reconnect_pending
        assert len(transport_factory.transports) == 1

        await asyncio.sleep(0.1)
        assert len(transport_factory.transports) == 2
        assert transport.closed
        assert controller.state is ConnectionState.CONNECTING
        assert transport_factory.latest.endpoint == Endpoint(host="127.0.0.1", port=8888)

    @pytest.mark.asyncio
    async def test_one_reconnect_per_loss(
        self, controller: SessionController, transport_factory
    ) -> None:
        await _connect(controller, transport_factory)
        losses = 3
        for _ in range(losses):
            transport_factory.latest.lose("connect failed: refused")
            await asyncio.sleep(0.12)
        await asyncio.sleep(0.15)
        assert len(transport_factory.transports) == losses + 1
        assert not controller.reconnect_pending

    @pytest.mark.asyncio
    async def test_heartbeat_only_while_connected(
        self, controller: SessionController, transport_factory
    ) -> None:
        trace: list[tuple[ConnectionState, bool]] = []

        def record() -> None:
            trace.append((controller.state, controller.heartbeat_active))

        controller.connect("127.0.0.1", 8888)
        record()
        transport_factory.latest.establish()
        await _settle()
        record()
        transport_factory.latest.lose()
        await _settle()
        record()
        await asyncio.sleep(0.1)
        record()
        transport_factory.latest.establish()
        await _settle()
        record()

        for state, heartbeat in trace:
            if heartbeat:
                assert state is ConnectionState.CONNECTED
        assert trace[-1] == (ConnectionState.CONNECTED, True)

    @pytest.mark.asyncio
    async def test_no_heartbeat_sent_after_loss(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        await asyncio.sleep(0.1)
        transport.lose()
        await _settle()
        sent_before = list(transport.sent)
        await asyncio.sleep(0.15)
        assert transport.sent == sent_before

    @pytest.mark.asyncio
    async def test_stale_attempt_events_dropped(
        self, controller: SessionController, transport_factory
    ) -> None:
        old = await _connect(controller, transport_factory)
        old.lose()
        await asyncio.sleep(0.1)
        _drain_events(controller.events)

        old.receive("late line from dead socket")
        old.establish()
        await _settle()
        assert _drain_events(controller.events) == []
        assert controller.state is ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_reconnect(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        transport.lose()
        await _settle()
        controller.shutdown()
        await asyncio.sleep(0.1)
        assert len(transport_factory.transports) == 1
        assert controller.state is ConnectionState.DISCONNECTED


class TestCommands:
    @pytest.mark.asyncio
    async def test_send_while_disconnected_is_noop(
        self, controller: SessionController, transport_factory
    ) -> None:
        assert controller.send_command("camList") is False
        controller.connect("127.0.0.1", 8888)
        assert controller.take_photo(0) is False
        assert transport_factory.latest.sent == []

    @pytest.mark.asyncio
    async def test_take_photo(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        assert controller.take_photo(3) is True
        assert "TAKE_PHOTO_3" in transport.sent

    @pytest.mark.asyncio
    async def test_request_cameras(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        assert controller.request_cameras() is True
        assert transport.sent[-1] == "camList"


class TestRouting:
    @pytest.mark.asyncio
    async def test_peer_connected_requests_cameras(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive("SERVER_STATUS: PEER_CONNECTED")
        await _settle()
        events = _drain_events(controller.events)
        (peer,) = _of(events, PeerStatusChanged)
        assert peer.presence is PeerPresence.CONNECTED
        assert controller.peer is PeerPresence.CONNECTED
        assert transport.sent[-1] == "camList"

    @pytest.mark.asyncio
    async def test_camera_registry_ignores_duplicates_and_malformed(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive(
            "0 -- Front",
            "3 -- Kitchen",
            "3 -- Kitchen",
            "3 -- Kitchen again",
            "x -- Garage",
        )
        await _settle()
        events = _drain_events(controller.events)
        changes = _of(events, CameraListChanged)
        assert len(changes) == 2
        assert changes[-1].camera_ids == [0, 3]
        assert [c.description for c in controller.cameras] == ["Front", "Kitchen"]
        assert _of(events, MessageReceived) == []

    @pytest.mark.asyncio
    async def test_peer_reconnect_clears_registry(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        transport.receive("SERVER_STATUS: PEER_CONNECTED", "1 -- Back")
        await _settle()
        _drain_events(controller.events)

        transport.receive("SERVER_STATUS: PEER_DISCONNECTED", "SERVER_STATUS: PEER_CONNECTED")
        await _settle()
        events = _drain_events(controller.events)
        assert [e.presence for e in _of(events, PeerStatusChanged)] == [
            PeerPresence.DISCONNECTED,
            PeerPresence.CONNECTED,
        ]
        (cleared,) = _of(events, CameraListChanged)
        assert cleared.cameras == []
        assert controller.cameras == []
        assert transport.sent.count("camList") == 2

    @pytest.mark.asyncio
    async def test_heartbeat_replies_not_surfaced(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive("PONG", "ping", "   ", "  Camera busy  ")
        await _settle()
        events = _drain_events(controller.events)
        assert [e.text for e in _of(events, MessageReceived)] == ["Camera busy"]

    @pytest.mark.asyncio
    async def test_limit_reached_leaves_state(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive("SERVER_ERROR: CONNECTION_LIMIT_REACHED")
        await _settle()
        events = _drain_events(controller.events)
        assert len(_of(events, LimitReached)) == 1
        assert _states(events) == []
        assert controller.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_snapshot_transfer(
        self,
        controller: SessionController,
        transport_factory,
        sample_payload: str,
        sample_png_bytes: bytes,
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive(*frame_payload(sample_payload, chunk_size=128))
        await _settle()
        await controller.decoder.drain()

        events = _drain_events(controller.events)
        assert len(_of(events, TransferStarted)) == 1
        (decoded,) = _of(events, ImageDecoded)
        assert decoded.data == sample_png_bytes
        assert isinstance(events[-1], TransferComplete)
        assert _of(events, MessageReceived) == []

    @pytest.mark.asyncio
    async def test_size_during_transfer_surfaces_as_message(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)
        transport.receive("SIZE:100", "AAAA", "SIZE:50")
        await _settle()
        events = _drain_events(controller.events)
        assert [e.text for e in _of(events, MessageReceived)] == ["SIZE:50"]
        assert controller.decoder.expected_chars == 100

    @pytest.mark.asyncio
    async def test_loss_aborts_transfer(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        transport.receive("SIZE:100", "AAAA")
        await _settle()
        _drain_events(controller.events)

        transport.lose()
        await _settle()
        events = _drain_events(controller.events)
        assert len(_of(events, TransferComplete)) == 1
        assert controller.decoder.state is TransferState.IDLE


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(
        self, controller: SessionController, transport_factory
    ) -> None:
        transport = await _connect(controller, transport_factory)
        _drain_events(controller.events)

        controller.shutdown()
        controller.shutdown()
        assert transport.closed
        assert controller.state is ConnectionState.DISCONNECTED
        assert not controller.heartbeat_active
        assert not controller.reconnect_pending
        assert _states(_drain_events(controller.events)) == [ConnectionState.DISCONNECTED]

        transport.receive("after shutdown")
        await _settle()
        assert _drain_events(controller.events) == []

    @pytest.mark.asyncio
    async def test_shutdown_without_connect(self, controller: SessionController) -> None:
        controller.shutdown()
        assert controller.state is ConnectionState.DISCONNECTED
        assert _drain_events(controller.events) == []

    @pytest.mark.asyncio
    async def test_async_context_manager(
        self, fast_config: ConnectionConfig, transport_factory
    ) -> None:
        async with SessionController(config=fast_config, transport_factory=transport_factory) as ctrl:
            ctrl.connect("127.0.0.1", 8888)
        assert ctrl.state is ConnectionState.DISCONNECTED
        assert transport_factory.latest.closed

    @pytest.mark.asyncio
    async def test_stream_yields_in_order(
        self, controller: SessionController, transport_factory
    ) -> None:
        await _connect(controller, transport_factory)
        stream = controller.stream()
        first = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        second = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        assert first.state is ConnectionState.CONNECTING
        assert second.state is ConnectionState.CONNECTED
        await stream.aclose()
