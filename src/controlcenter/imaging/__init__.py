"""Snapshot stream decoding for controlcenter.

Reassembles the multi-line base64 snapshot stream into a decoded image,
reporting progress along the way.

Public API:
    ImageStreamDecoder -- Line-driven transfer state machine
    ConsumeResult -- Whether the decoder took a line
    WakeLock -- Optional suspend-inhibitor hook
    decode_image_payload / encode_image_payload / frame_payload -- Codec helpers
"""

from controlcenter.imaging.codec import (
    ImageDecodeError,
    chunk_payload,
    decode_image_payload,
    encode_image_payload,
    frame_payload,
    save_snapshot,
)
from controlcenter.imaging.decoder import ConsumeResult, ImageStreamDecoder
from controlcenter.imaging.wake_lock import WakeLock

__all__ = [
    "ConsumeResult",
    "ImageDecodeError",
    "ImageStreamDecoder",
    "WakeLock",
    "chunk_payload",
    "decode_image_payload",
    "encode_image_payload",
    "frame_payload",
    "save_snapshot",
]
