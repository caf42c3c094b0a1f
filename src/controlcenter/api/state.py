"""Last-value-wins view of a session, for display layers.

Folds the controller's event stream into the handful of values a user
interface shows: status texts, the camera list, transfer progress, the
latest snapshot, and whether a capture command may be sent right now.
"""

from __future__ import annotations

import logging
from collections import deque

import cv2
import numpy as np
from pydantic import BaseModel, Field

from controlcenter.domain.models import (
    CameraEntry,
    CameraListChanged,
    ConnectionState,
    ConnectionStatusChanged,
    ImageDecoded,
    LimitReached,
    MessageReceived,
    PeerPresence,
    PeerStatusChanged,
    SessionEvent,
    TransferComplete,
    TransferFailed,
    TransferProgress,
    TransferStarted,
)

logger = logging.getLogger(__name__)

CONNECTION_STATUS_TEXT = {
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.CONNECTED: "Connected",
    ConnectionState.LOST: "Connection lost",
}

PEER_STATUS_TEXT = {
    PeerPresence.UNKNOWN: "Unknown",
    PeerPresence.CONNECTED: "Peer connected",
    PeerPresence.DISCONNECTED: "Peer disconnected",
}

LIMIT_REACHED_TEXT = "Connection limit reached"


class SessionSnapshot(BaseModel):
    """Serializable copy of the view's current values."""

    connection_status: str
    peer_status: str
    send_enabled: bool
    is_loading: bool
    progress_indeterminate: bool
    progress: int = Field(ge=0, le=100)
    size_text: str
    last_message: str
    messages: list[str] = Field(default_factory=list)
    cameras: list[CameraEntry] = Field(default_factory=list)
    has_image: bool = False
    image_width: int | None = None
    image_height: int | None = None


class SessionView:
    """Consumes session events and keeps the latest value of each field."""

    def __init__(self, message_history: int = 50) -> None:
        self.connection_status = CONNECTION_STATUS_TEXT[ConnectionState.DISCONNECTED]
        self.peer_status = PEER_STATUS_TEXT[PeerPresence.UNKNOWN]
        self.peer_connected = False
        self.send_enabled = False
        self.is_loading = False
        self.progress_indeterminate = False
        self.progress = 0
        self.size_text = ""
        self.last_message = ""
        self.messages: deque[str] = deque(maxlen=message_history)
        self.cameras: list[CameraEntry] = []
        self.image: np.ndarray | None = None
        self.image_data: bytes | None = None

    def apply(self, event: SessionEvent) -> None:
        """Fold one event into the view."""
        if isinstance(event, ConnectionStatusChanged):
            self.connection_status = CONNECTION_STATUS_TEXT[event.state]
        elif isinstance(event, LimitReached):
            self.connection_status = LIMIT_REACHED_TEXT
        elif isinstance(event, PeerStatusChanged):
            self.peer_status = PEER_STATUS_TEXT[event.presence]
            self.peer_connected = event.presence is PeerPresence.CONNECTED
            self.send_enabled = self.peer_connected
        elif isinstance(event, MessageReceived):
            self._add_message(event.text)
        elif isinstance(event, CameraListChanged):
            self.cameras = list(event.cameras)
        elif isinstance(event, TransferStarted):
            self.is_loading = True
            self.progress_indeterminate = False
            self.size_text = event.size_text
        elif isinstance(event, TransferProgress):
            self.progress = event.percent
        elif isinstance(event, ImageDecoded):
            self.image = event.image
            self.image_data = event.data
            self.progress = 100
        elif isinstance(event, TransferFailed):
            self._add_message(event.message)
        elif isinstance(event, TransferComplete):
            self.is_loading = False
            self.progress_indeterminate = False
            self.send_enabled = self.peer_connected
        else:
            logger.debug("Unhandled event: %s", getattr(event, "kind", type(event)))

    async def run(self, events) -> None:
        """Apply every event from an async iterator (e.g. controller.stream())."""
        async for event in events:
            self.apply(event)

    def lock_before_request(self) -> None:
        """Disable sending and show an indeterminate spinner until the reply starts."""
        self.send_enabled = False
        self.is_loading = True
        self.progress_indeterminate = True
        self.reset_image()

    def reset_image(self) -> None:
        self.image = None
        self.image_data = None
        self.size_text = ""
        self.progress = 0

    def image_png(self) -> bytes | None:
        """The latest snapshot re-encoded as PNG, or None."""
        if self.image is None:
            return None
        success, buffer = cv2.imencode(".png", self.image)
        if not success:
            logger.error("Failed to encode snapshot to PNG")
            return None
        return buffer.tobytes()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            connection_status=self.connection_status,
            peer_status=self.peer_status,
            send_enabled=self.send_enabled,
            is_loading=self.is_loading,
            progress_indeterminate=self.progress_indeterminate,
            progress=self.progress,
            size_text=self.size_text,
            last_message=self.last_message,
            messages=list(self.messages),
            cameras=list(self.cameras),
            has_image=self.image is not None,
            image_width=int(self.image.shape[1]) if self.image is not None else None,
            image_height=int(self.image.shape[0]) if self.image is not None else None,
        )

    def _add_message(self, text: str) -> None:
        self.last_message = text
        self.messages.append(text)
