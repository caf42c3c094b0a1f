"""Wire tokens and line parsers for the relay protocol.

The protocol is newline-delimited text, one directive per line::

    ID:CONTROL                               -> identify as the control client
    PING / PONG                              <> liveness probe, never surfaced
    camList                                  -> request the camera registry
    TAKE_PHOTO_<id>                          -> capture from camera <id>
    SERVER_STATUS: PEER_CONNECTED            <- capture device attached
    SERVER_STATUS: PEER_DISCONNECTED         <- capture device gone
    SERVER_ERROR: CONNECTION_LIMIT_REACHED   <- relay refused this client
    <id> -- <description>                    <- one camera registry entry
    SIZE:<digits>                            <- base64 snapshot follows
    IMAGE                                    <- optional bootstrap line
    <base64 chunk> ... <chunk>END123         <- payload, then end marker
"""

from __future__ import annotations

import logging
import re

from controlcenter.domain.models import CameraEntry

logger = logging.getLogger(__name__)

IDENTIFY_COMMAND = "ID:CONTROL"
HEARTBEAT_REQUEST = "PING"
HEARTBEAT_REPLY = "PONG"
CAMERA_LIST_COMMAND = "camList"
TAKE_PHOTO_PREFIX = "TAKE_PHOTO_"

PEER_CONNECTED_PREFIX = "SERVER_STATUS: PEER_CONNECTED"
PEER_DISCONNECTED_PREFIX = "SERVER_STATUS: PEER_DISCONNECTED"
LIMIT_REACHED_PREFIX = "SERVER_ERROR: CONNECTION_LIMIT_REACHED"

CAMERA_DELIMITER = " -- "

SIZE_MARKER = "SIZE:"
BOOTSTRAP_TOKEN = "IMAGE"
END_MARKER = "END123"

_HEARTBEAT_TOKENS = frozenset({HEARTBEAT_REQUEST.lower(), HEARTBEAT_REPLY.lower()})
_NON_DIGITS = re.compile(r"[^0-9]")


def is_heartbeat(line: str) -> bool:
    """Whether the line is exactly PING or PONG, ignoring case."""
    return line.lower() in _HEARTBEAT_TOKENS


def is_peer_connected(line: str) -> bool:
    return line.startswith(PEER_CONNECTED_PREFIX)


def is_peer_disconnected(line: str) -> bool:
    return line.startswith(PEER_DISCONNECTED_PREFIX)


def is_limit_reached(line: str) -> bool:
    return line.startswith(LIMIT_REACHED_PREFIX)


def is_camera_line(line: str) -> bool:
    return CAMERA_DELIMITER in line


def parse_camera_line(line: str) -> CameraEntry | None:
    """Parse a ``<id> -- <description>`` line.

    Returns None when the line does not split into exactly two parts or
    the id is not an integer.
    """
    parts = line.split(CAMERA_DELIMITER)
    if len(parts) != 2:
        logger.debug("Camera line has %d parts: %r", len(parts), line)
        return None
    try:
        camera_id = int(parts[0].strip())
    except ValueError:
        logger.debug("Camera line has a non-integer id: %r", line)
        return None
    return CameraEntry(camera_id=camera_id, description=parts[1].strip())


def parse_size_announcement(line: str) -> int | None:
    """Extract the announced payload length from a ``SIZE:`` line.

    Anything that is not a digit is stripped from the text following the
    marker. Returns None when no digits remain.
    """
    index = line.find(SIZE_MARKER)
    if index < 0:
        return None
    digits = _NON_DIGITS.sub("", line[index + len(SIZE_MARKER):])
    if not digits:
        return None
    return int(digits)


def take_photo_command(camera_id: int) -> str:
    """Build the capture command for a camera."""
    return f"{TAKE_PHOTO_PREFIX}{camera_id}"
