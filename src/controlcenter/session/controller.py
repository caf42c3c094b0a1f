"""Session controller: reconnect, heartbeat, peer tracking and routing.

The controller is the only component the outside world talks to. It
lives on the asyncio loop, which serializes every mutation of the
connection state, peer presence, camera registry and the snapshot
decoder. Transport events arrive from the socket worker thread through
``loop.call_soon_threadsafe`` and consumer-facing events leave through
one ``asyncio.Queue``.

State machine::

    DISCONNECTED --connect()------> CONNECTING
    CONNECTING   --established----> CONNECTED   (ID:CONTROL, then heartbeat)
    CONNECTING   --lost-----------> LOST        (connect failed)
    CONNECTED    --lost-----------> LOST        (peer reset, reconnect armed)
    LOST         --reconnect timer-> CONNECTING
    any          --shutdown()-----> DISCONNECTED
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import AsyncIterator, Callable

from controlcenter.config.settings import ConnectionConfig
from controlcenter.domain.models import (
    CameraEntry,
    CameraListChanged,
    ConnectionEstablished,
    ConnectionLost,
    ConnectionState,
    ConnectionStatusChanged,
    Endpoint,
    LimitReached,
    LineReceived,
    MessageReceived,
    PeerPresence,
    PeerStatusChanged,
    SessionEvent,
    TransportClosed,
    TransportEvent,
)
from controlcenter.imaging.decoder import ConsumeResult, ImageStreamDecoder
from controlcenter.imaging.wake_lock import WakeLock
from controlcenter.protocol import (
    CAMERA_LIST_COMMAND,
    HEARTBEAT_REQUEST,
    IDENTIFY_COMMAND,
    is_camera_line,
    is_heartbeat,
    is_limit_reached,
    is_peer_connected,
    is_peer_disconnected,
    parse_camera_line,
    take_photo_command,
)
from controlcenter.session.timers import Timer
from controlcenter.transport.base import LineTransport, TransportSink
from controlcenter.transport.tcp import TcpLineTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[TransportSink], LineTransport]


class SessionController:
    """Owns the transport and the snapshot decoder for one relay session.

    Must be created and used from a running asyncio loop.

    Example usage::

        async with SessionController(config) as session:
            session.connect("10.0.0.2", 8888)
            async for event in session.stream():
                if event.kind == "peer_status" and event.presence == "connected":
                    session.take_photo(0)
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        transport_factory: TransportFactory | None = None,
        wake_lock: WakeLock | None = None,
    ) -> None:
        self._config = config or ConnectionConfig()
        self._transport_factory = transport_factory or self._create_tcp_transport
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._decoder = ImageStreamDecoder(emit=self._emit, wake_lock=wake_lock)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._transport: LineTransport | None = None
        self._attempt = 0
        self._endpoint: Endpoint | None = None
        self._state = ConnectionState.DISCONNECTED
        self._peer = PeerPresence.UNKNOWN
        self._cameras: dict[int, str] = {}
        self._closed = False
        self.state_history: list[ConnectionState] = [self._state]

        self._reconnect_timer = Timer("reconnect")
        self._identify_timer = Timer("identify")
        self._heartbeat_start_timer = Timer("heartbeat-start")
        self._heartbeat_timer = Timer("heartbeat")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def peer(self) -> PeerPresence:
        return self._peer

    @property
    def endpoint(self) -> Endpoint | None:
        return self._endpoint

    @property
    def cameras(self) -> list[CameraEntry]:
        return [
            CameraEntry(camera_id=camera_id, description=description)
            for camera_id, description in self._cameras.items()
        ]

    @property
    def decoder(self) -> ImageStreamDecoder:
        return self._decoder

    @property
    def is_connected(self) -> bool:
        return (
            self._state is ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.is_connected
        )

    @property
    def heartbeat_active(self) -> bool:
        """Whether a heartbeat is running or scheduled to start."""
        return self._heartbeat_timer.active or self._heartbeat_start_timer.active

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer.active

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int) -> None:
        """Connect to the relay server at host:port.

        Does nothing if the current transport is connected. The
        ``connecting`` status is emitted before any socket work starts.

        Raises:
            RuntimeError: If the session was shut down.
        """
        if self._closed:
            raise RuntimeError("Session has been shut down")
        self._loop = asyncio.get_running_loop()
        self._endpoint = Endpoint(host=host, port=port)
        self._open_transport()

    def send_command(self, command: str) -> bool:
        """Send one protocol line. Silently dropped unless connected."""
        transport = self._transport
        if not self.is_connected or transport is None:
            logger.debug("Not connected, dropping command: %s", command)
            return False
        transport.send(command)
        logger.debug("Sent command: %s", command)
        return True

    def take_photo(self, camera_id: int) -> bool:
        return self.send_command(take_photo_command(camera_id))

    def request_cameras(self) -> bool:
        return self.send_command(CAMERA_LIST_COMMAND)

    def shutdown(self) -> None:
        """Cancel timers, close the transport and stop decoding. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel_all_timers()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self._decoder.abort()
        self._decoder.shutdown()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Session shut down")

    async def aclose(self) -> None:
        """Shut down and wait for cancelled decodes to settle."""
        self.shutdown()
        await self._decoder.drain()

    async def stream(self) -> AsyncIterator[SessionEvent]:
        """Yield session events in the order they were produced."""
        while True:
            yield await self.events.get()

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _open_transport(self) -> None:
        if self._endpoint is None:
            return
        if self._transport is not None and self._transport.is_connected:
            logger.debug("Already connected to %s, ignoring connect", self._endpoint)
            return
        if self._transport is not None:
            self._transport.close()

        self._reconnect_timer.cancel()
        if self._state is ConnectionState.CONNECTING:
            # A new attempt replaces one still in progress; announce it anyway.
            self._emit(ConnectionStatusChanged(state=ConnectionState.CONNECTING))
        else:
            self._set_state(ConnectionState.CONNECTING)

        self._attempt += 1
        sink = functools.partial(self._post, self._attempt)
        self._transport = self._transport_factory(sink)
        logger.info("Connecting to %s (attempt %d)", self._endpoint, self._attempt)
        self._transport.connect(self._endpoint)

    def _create_tcp_transport(self, sink: TransportSink) -> LineTransport:
        cfg = self._config
        return TcpLineTransport(
            sink,
            connect_timeout=cfg.connect_timeout,
            read_timeout=cfg.read_timeout,
            keepalive=cfg.keepalive,
            encoding=cfg.encoding,
        )

    def _post(
        self,
        attempt: int,
        event: TransportEvent,
    ) -> None:
        # Runs on the transport worker; never blocks.
        loop = self._loop
        if loop is None:
            return
        loop.call_soon_threadsafe(self._on_transport_event, attempt, event)

    def _on_transport_event(
        self,
        attempt: int,
        event: TransportEvent,
    ) -> None:
        if self._closed or attempt != self._attempt:
            logger.debug("Dropping %s event from stale attempt %d", event.kind, attempt)
            return
        if isinstance(event, LineReceived):
            self._on_line(event.line)
        elif isinstance(event, ConnectionEstablished):
            self._on_established()
        elif isinstance(event, ConnectionLost):
            self._on_lost(event.reason)
        elif isinstance(event, TransportClosed):
            logger.debug("Transport for attempt %d closed", attempt)
        else:
            logger.warning("Unknown transport event: %s", type(event))

    def _on_established(self) -> None:
        cfg = self._config
        self._set_state(ConnectionState.CONNECTED)
        self._reconnect_timer.cancel()
        self._identify_timer.start(
            cfg.identify_delay, lambda: self.send_command(IDENTIFY_COMMAND)
        )
        self._heartbeat_start_timer.start(cfg.heartbeat_start_delay, self._start_heartbeat)

    def _on_lost(self, reason: str) -> None:
        self._cancel_connected_timers()
        self._set_state(ConnectionState.LOST)
        # The relay is gone, so whatever we knew about the peer is stale.
        self._set_peer(PeerPresence.DISCONNECTED)
        self._decoder.abort()
        logger.info(
            "Connection lost (%s), reconnecting in %.1fs",
            reason or "no reason", self._config.reconnect_delay,
        )
        self._reconnect_timer.start(self._config.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        if self._closed or self._endpoint is None:
            return
        logger.info("Attempting automatic reconnect to %s", self._endpoint)
        self._open_transport()

    def _start_heartbeat(self) -> None:
        self._heartbeat_timer.start(
            0, self._send_heartbeat, interval=self._config.heartbeat_interval
        )

    def _send_heartbeat(self) -> None:
        self.send_command(HEARTBEAT_REQUEST)

    def _cancel_connected_timers(self) -> None:
        self._identify_timer.cancel()
        self._heartbeat_start_timer.cancel()
        self._heartbeat_timer.cancel()

    def _cancel_all_timers(self) -> None:
        self._cancel_connected_timers()
        self._reconnect_timer.cancel()

    # ------------------------------------------------------------------
    # Message routing
    # ------------------------------------------------------------------

    def _on_line(self, raw: str) -> None:
        line = raw.strip()
        if not line or is_heartbeat(line):
            return

        if is_peer_connected(line):
            self._on_peer_connected()
            return
        if is_peer_disconnected(line):
            self._set_peer(PeerPresence.DISCONNECTED)
            return
        if is_limit_reached(line):
            logger.warning("Relay server rejected the connection: client limit reached")
            self._emit(LimitReached())
            return

        if self._decoder.consume(line) is ConsumeResult.CONSUMED:
            return

        if is_camera_line(line):
            self._on_camera_line(line)
            return

        self._emit(MessageReceived(text=line))

    def _on_peer_connected(self) -> None:
        if self._cameras:
            self._cameras.clear()
            self._emit(CameraListChanged(cameras=[]))
        self._set_peer(PeerPresence.CONNECTED)
        self.request_cameras()

    def _on_camera_line(self, line: str) -> None:
        entry = parse_camera_line(line)
        if entry is None:
            logger.warning("Ignoring malformed camera line: %s", line[:60])
            return
        if entry.camera_id in self._cameras:
            logger.debug("Camera %d already registered, ignoring", entry.camera_id)
            return
        self._cameras[entry.camera_id] = entry.description
        logger.info("Camera %d registered: %s", entry.camera_id, entry.description)
        self._emit(CameraListChanged(cameras=self.cameras))

    # ------------------------------------------------------------------
    # State and event helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Connection state %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_history.append(state)
        self._emit(ConnectionStatusChanged(state=state))

    def _set_peer(self, presence: PeerPresence) -> None:
        self._peer = presence
        self._emit(PeerStatusChanged(presence=presence))

    def _emit(self, event: SessionEvent) -> None:
        self.events.put_nowait(event)
