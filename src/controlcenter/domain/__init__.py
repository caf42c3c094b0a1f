"""Domain models for controlcenter.

This package contains the core data structures, enumerations, and event
types used throughout the system. All models use Pydantic v2 for
validation and serialization.
"""

from controlcenter.domain.models import (
    CameraEntry,
    CameraListChanged,
    ConnectionEstablished,
    ConnectionLost,
    ConnectionState,
    ConnectionStatusChanged,
    Endpoint,
    ImageDecoded,
    LimitReached,
    LineReceived,
    MessageReceived,
    PeerPresence,
    PeerStatusChanged,
    SessionEvent,
    TransferComplete,
    TransferFailed,
    TransferProgress,
    TransferStarted,
    TransferState,
    TransportClosed,
    TransportEvent,
)

__all__ = [
    "CameraEntry",
    "CameraListChanged",
    "ConnectionEstablished",
    "ConnectionLost",
    "ConnectionState",
    "ConnectionStatusChanged",
    "Endpoint",
    "ImageDecoded",
    "LimitReached",
    "LineReceived",
    "MessageReceived",
    "PeerPresence",
    "PeerStatusChanged",
    "SessionEvent",
    "TransferComplete",
    "TransferFailed",
    "TransferProgress",
    "TransferStarted",
    "TransferState",
    "TransportClosed",
    "TransportEvent",
]
