"""Snapshot payload encoding and decoding.

The capture device sends an encoded image (JPEG or PNG) as base64 text
split over many lines. These helpers convert between that text and
numpy images, and build the exact line sequence the device emits.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path

import cv2
import numpy as np

from controlcenter.protocol import BOOTSTRAP_TOKEN, END_MARKER, SIZE_MARKER

logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """Raised when a snapshot payload cannot be turned into an image."""


def decode_image_payload(payload: str) -> tuple[np.ndarray, bytes]:
    """Decode base64 text into an image array and its encoded bytes.

    Characters outside the base64 alphabet (line breaks, stray spaces)
    are ignored, as the device's encoder may wrap its output.

    Raises:
        ImageDecodeError: If the text is not valid base64 or the bytes
            are not a recognizable image.
    """
    try:
        data = base64.b64decode(payload)
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeError(f"Invalid base64 payload: {e}") from e
    if not data:
        raise ImageDecodeError("Payload decoded to zero bytes")

    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ImageDecodeError(f"Could not decode image from {len(data)} bytes")
    return image, data


def encode_image_payload(image: np.ndarray, ext: str = ".png") -> str:
    """Encode an image array (OpenCV layout) to base64 text."""
    success, buffer = cv2.imencode(ext, image)
    if not success:
        raise ValueError(f"Failed to encode image to {ext}")
    return base64.b64encode(buffer.tobytes()).decode("ascii")


def chunk_payload(payload: str, chunk_size: int = 1024) -> list[str]:
    """Split base64 text into lines of at most chunk_size characters."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [payload[i : i + chunk_size] for i in range(0, len(payload), chunk_size)]


def frame_payload(
    payload: str,
    chunk_size: int = 1024,
    bootstrap: bool = True,
) -> list[str]:
    """Build the wire lines for one snapshot transfer.

    The last chunk carries the end marker on the same line, the way the
    capture device sends it. An empty payload produces a bare marker line.
    """
    lines = [f"{SIZE_MARKER}{len(payload)}"]
    if bootstrap:
        lines.append(BOOTSTRAP_TOKEN)
    chunks = chunk_payload(payload, chunk_size) if payload else []
    if chunks:
        lines.extend(chunks[:-1])
        lines.append(chunks[-1] + END_MARKER)
    else:
        lines.append(END_MARKER)
    return lines


def save_snapshot(image: np.ndarray, directory: Path | str, ext: str = ".png", stem: str = "snapshot") -> Path:
    """Write a decoded snapshot to disk and return its path."""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / f"{stem}{ext}"
    if not cv2.imwrite(str(path), image):
        raise ImageDecodeError(f"Failed to write snapshot to {path}")
    logger.info("Saved snapshot to %s (%dx%d)", path, image.shape[1], image.shape[0])
    return path
