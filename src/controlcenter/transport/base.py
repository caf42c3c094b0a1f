"""Abstract base class for line transports.

A transport owns exactly one connection to the relay server, turns the
byte stream into discrete text lines, and reports its lifecycle to its
owner through a sink callable. It knows nothing about the protocol
carried on those lines.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from controlcenter.domain.models import Endpoint, TransportEvent

logger = logging.getLogger(__name__)

TransportSink = Callable[[TransportEvent], None]


class LineTransport(ABC):
    """Abstract interface for a line-oriented connection to one peer.

    Events for one transport instance are strictly ordered: ``established``,
    zero or more ``line`` events, then exactly one terminal ``lost`` or
    ``closed`` event. A failed connection attempt produces a single
    ``lost`` event and nothing else.

    The sink is called from the transport's own worker and must never
    block. The session controller passes a sink that hands the event to
    the asyncio loop with ``call_soon_threadsafe``.

    Example usage::

        transport = TcpLineTransport(sink=events.append)
        transport.connect(Endpoint(host="10.0.0.2", port=8888))
        transport.send("ID:CONTROL")
        transport.close()
    """

    def __init__(self, sink: TransportSink) -> None:
        self._sink = sink

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True between ``established`` and the terminal event."""
        ...

    @abstractmethod
    def connect(self, endpoint: Endpoint) -> None:
        """Start connecting to the endpoint without blocking the caller.

        Raises:
            TransportError: If the transport was already closed.
        """
        ...

    @abstractmethod
    def send(self, line: str) -> None:
        """Queue one line for sending. Failures are logged and dropped."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Stop the transport and release its resources.

        Safe to call multiple times and before connect().
        """
        ...

    def _emit(self, event: TransportEvent) -> None:
        try:
            self._sink(event)
        except RuntimeError as e:
            # The owning event loop is already closed.
            logger.debug("Dropping %s event: %s", event.kind, e)


class LineFramer:
    """Splits a byte stream into newline-terminated text lines.

    A trailing carriage return is removed from each line. Bytes after the
    last newline are kept until more data arrives.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[str]:
        """Append data and return every line it completed."""
        self._buffer.extend(data)
        lines: list[str] = []
        while True:
            index = self._buffer.find(b"\n")
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            lines.append(raw.decode(self._encoding, errors="replace"))
        return lines

    def reset(self) -> None:
        self._buffer.clear()


class TransportError(Exception):
    """Raised when a transport is used in an invalid way."""
