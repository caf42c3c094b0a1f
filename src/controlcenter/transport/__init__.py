"""Transport module for controlcenter.

Owns the single TCP connection to the relay server and converts its byte
stream into text lines. The abstract base class allows alternative
transports (e.g., an in-memory transport in tests) to be plugged into the
session controller.

Public API:
    LineTransport -- Abstract base class
    LineFramer -- Byte stream to line splitter
    TcpLineTransport -- Socket implementation
"""

from controlcenter.transport.base import (
    LineFramer,
    LineTransport,
    TransportError,
    TransportSink,
)
from controlcenter.transport.tcp import TcpLineTransport

__all__ = [
    "LineFramer",
    "LineTransport",
    "TcpLineTransport",
    "TransportError",
    "TransportSink",
]
