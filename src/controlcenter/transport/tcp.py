"""TCP line transport.

Runs the blocking socket on a dedicated worker thread so neither the
asyncio loop nor the command-issuing caller ever waits on the network.
Writes go through a single-thread executor and are fire-and-forget.
"""

from __future__ import annotations

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor

from controlcenter.domain.models import (
    ConnectionEstablished,
    ConnectionLost,
    Endpoint,
    LineReceived,
    TransportClosed,
)
from controlcenter.transport.base import (
    LineFramer,
    LineTransport,
    TransportError,
    TransportSink,
)

logger = logging.getLogger(__name__)

RECV_SIZE = 65536


class TcpLineTransport(LineTransport):
    """Newline-delimited text over one TCP socket."""

    def __init__(
        self,
        sink: TransportSink,
        connect_timeout: float = 5.0,
        read_timeout: float = 5.0,
        keepalive: bool = True,
        encoding: str = "utf-8",
    ) -> None:
        super().__init__(sink)
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._keepalive = keepalive
        self._encoding = encoding
        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transport-send")
        self._running = False
        self._closing = False
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._sock is not None and not self._closing

    def connect(self, endpoint: Endpoint) -> None:
        """Start the worker thread that connects and reads."""
        with self._lock:
            if self._closing:
                raise TransportError("Transport is closed; create a new one to reconnect")
            if self._running:
                logger.debug("Transport already running, ignoring connect to %s", endpoint)
                return
            self._running = True
            self._thread = threading.Thread(
                target=self._run,
                args=(endpoint,),
                name=f"transport-{endpoint}",
                daemon=True,
            )
        self._thread.start()

    def send(self, line: str) -> None:
        if not self.is_connected:
            logger.debug("Not connected, dropping outgoing line: %s", line[:50])
            return
        try:
            self._sender.submit(self._write, line)
        except RuntimeError:
            logger.debug("Send executor stopped, dropping outgoing line: %s", line[:50])

    def close(self) -> None:
        with self._lock:
            already_closing = self._closing
            self._closing = True
            self._connected = False
            sock = self._sock
        if sock is not None:
            try:
                # Unblocks a recv() in progress on the worker thread.
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self._sender.shutdown(wait=False, cancel_futures=True)
        if not already_closing:
            logger.debug("Transport close requested")

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _run(self, endpoint: Endpoint) -> None:
        try:
            sock = socket.create_connection(
                (endpoint.host, endpoint.port), timeout=self._connect_timeout
            )
        except OSError as e:
            self._running = False
            if self._closing:
                self._emit(TransportClosed())
                return
            logger.warning("Connection to %s failed: %s", endpoint, e)
            self._emit(ConnectionLost(reason=f"connect failed: {e}"))
            return

        with self._lock:
            if self._closing:
                sock.close()
                self._running = False
                self._emit(TransportClosed())
                return
            self._sock = sock

        terminal: ConnectionLost | TransportClosed
        try:
            if self._keepalive:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            sock.settimeout(self._read_timeout)
            self._connected = True
            logger.info("Connected to %s", endpoint)
            self._emit(ConnectionEstablished())
            self._read_loop(sock)
            terminal = TransportClosed()
        except OSError as e:
            if self._closing:
                terminal = TransportClosed()
            else:
                logger.warning("Connection to %s lost: %s", endpoint, e)
                terminal = ConnectionLost(reason=str(e) or type(e).__name__)
        except Exception as e:
            logger.exception("Unexpected transport error on %s", endpoint)
            terminal = ConnectionLost(reason=f"unexpected error: {e}")
        finally:
            self._teardown()
        self._emit(terminal)

    def _read_loop(self, sock: socket.socket) -> None:
        framer = LineFramer(self._encoding)
        while not self._closing:
            try:
                data = sock.recv(RECV_SIZE)
            except socket.timeout:
                # No data within the read timeout; keep waiting.
                continue
            if not data:
                raise ConnectionError("Connection closed by server (EOF)")
            for line in framer.feed(data):
                if not line.strip():
                    continue
                logger.debug("Read line: %s", line[:60])
                self._emit(LineReceived(line=line))

    def _write(self, line: str) -> None:
        sock = self._sock
        if sock is None or not self.is_connected:
            return
        try:
            sock.sendall((line + "\n").encode(self._encoding))
        except OSError as e:
            logger.warning("Failed to send %r: %s", line[:50], e)

    def _teardown(self) -> None:
        with self._lock:
            sock = self._sock
            self._sock = None
            self._connected = False
            self._running = False
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.error("Error while closing socket: %s", e)
        logger.debug("Socket released")
