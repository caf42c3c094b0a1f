"""Core domain models for the controlcenter system.

These models represent the data flowing through the client: the relay
endpoint, connection and peer state, the camera registry, the events the
transport reports to the session controller, and the events the session
controller publishes to its consumers.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ConnectionState(str, enum.Enum):
    """State of the TCP link to the relay server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOST = "lost"


class PeerPresence(str, enum.Enum):
    """Whether the capture device is attached to the relay server."""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class TransferState(str, enum.Enum):
    """State of the snapshot stream decoder."""

    IDLE = "idle"
    RECEIVING = "receiving"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class Endpoint(BaseModel):
    """Address of the relay server."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1, description="Hostname or IP address")
    port: int = Field(ge=1, le=65535, description="TCP port")

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class CameraEntry(BaseModel):
    """One camera announced by the peer."""

    model_config = ConfigDict(frozen=True)

    camera_id: int = Field(description="Camera identifier used in TAKE_PHOTO commands")
    description: str = Field(description="Free-text description sent by the peer")


# ---------------------------------------------------------------------------
# Transport events (discriminated union)
# ---------------------------------------------------------------------------


class ConnectionEstablished(BaseModel):
    """The socket connected and the read loop is about to start."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["established"] = "established"


class LineReceived(BaseModel):
    """One complete, non-blank line read from the socket."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["line"] = "line"
    line: str = Field(description="Line text without its terminator")


class ConnectionLost(BaseModel):
    """The connection attempt or the read loop failed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["lost"] = "lost"
    reason: str = Field(default="", description="Diagnostic text for logging")


class TransportClosed(BaseModel):
    """The transport stopped because close() was called."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["closed"] = "closed"


TransportEvent = Annotated[
    Union[ConnectionEstablished, LineReceived, ConnectionLost, TransportClosed],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Session events (discriminated union)
# ---------------------------------------------------------------------------


class ConnectionStatusChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["connection_status"] = "connection_status"
    state: ConnectionState
    timestamp: datetime = Field(default_factory=datetime.now)


class PeerStatusChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["peer_status"] = "peer_status"
    presence: PeerPresence
    timestamp: datetime = Field(default_factory=datetime.now)


class LimitReached(BaseModel):
    """The relay server refused this client because it is full."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["limit_reached"] = "limit_reached"
    timestamp: datetime = Field(default_factory=datetime.now)


class MessageReceived(BaseModel):
    """A protocol line no other handler recognized."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    text: str


class CameraListChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["camera_list"] = "camera_list"
    cameras: list[CameraEntry] = Field(default_factory=list)

    @property
    def camera_ids(self) -> list[int]:
        return [c.camera_id for c in self.cameras]

    @property
    def descriptions(self) -> list[str]:
        return [c.description for c in self.cameras]


class TransferStarted(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["transfer_started"] = "transfer_started"
    expected_chars: int = Field(ge=0, description="Announced base64 payload length")
    size_kb: int = Field(ge=0, description="Estimated decoded size in kilobytes")
    size_text: str = Field(description="Human-readable size estimate")


class TransferProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["transfer_progress"] = "transfer_progress"
    percent: int = Field(ge=0, le=99)
    received_chars: int = Field(ge=0)
    expected_chars: int = Field(gt=0)


class ImageDecoded(BaseModel):
    """A snapshot payload decoded into an image."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["image_decoded"] = "image_decoded"
    image: np.ndarray = Field(description="Decoded image as a numpy array (OpenCV layout)")
    data: bytes = Field(description="Encoded image bytes as received")
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


class TransferFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["transfer_failed"] = "transfer_failed"
    message: str


class TransferComplete(BaseModel):
    """Emitted once per transfer after decoding succeeded, failed or was skipped."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["transfer_complete"] = "transfer_complete"


SessionEvent = Annotated[
    Union[
        ConnectionStatusChanged,
        PeerStatusChanged,
        LimitReached,
        MessageReceived,
        CameraListChanged,
        TransferStarted,
        TransferProgress,
        ImageDecoded,
        TransferFailed,
        TransferComplete,
    ],
    Field(discriminator="kind"),
]
