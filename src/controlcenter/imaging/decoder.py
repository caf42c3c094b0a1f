"""Incremental decoder for the base64 snapshot stream.

The capture device announces a snapshot with ``SIZE:<n>``, optionally
sends a lone ``IMAGE`` line, then streams base64 chunks and finishes
with a line containing ``END123``. The decoder is fed one protocol line
at a time from the asyncio loop and reports progress and the decoded
image through an emit callable.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Union

from controlcenter.domain.models import (
    ImageDecoded,
    TransferComplete,
    TransferFailed,
    TransferProgress,
    TransferStarted,
    TransferState,
)
from controlcenter.imaging.codec import ImageDecodeError, decode_image_payload
from controlcenter.imaging.wake_lock import WakeLock
from controlcenter.protocol import (
    BOOTSTRAP_TOKEN,
    END_MARKER,
    SIZE_MARKER,
    parse_size_announcement,
)

logger = logging.getLogger(__name__)

TransferEmitter = Callable[
    [Union[TransferStarted, TransferProgress, ImageDecoded, TransferFailed, TransferComplete]],
    None,
]


class ConsumeResult(str, enum.Enum):
    """Whether the decoder took ownership of a line."""

    NOT_CONSUMED = "not_consumed"
    CONSUMED = "consumed"


class ImageStreamDecoder:
    """Two-state (idle / receiving) reassembler for snapshot payloads.

    All methods except the decode step run on the asyncio loop. When the
    end marker arrives, the accumulated text is moved into a decode task
    running on a dedicated executor and the decoder immediately returns
    to idle with a fresh buffer, so the loop and the decode worker never
    share a buffer.

    A ``SIZE:`` line that arrives while a transfer is in progress is
    rejected: it is not consumed and the buffer is left untouched.

    A new transfer may start while the previous one is still decoding.
    The wake lock stays held and ``transfer_complete`` is emitted only
    once no transfer is receiving or decoding any more.
    """

    def __init__(
        self,
        emit: TransferEmitter,
        wake_lock: WakeLock | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._emit = emit
        self._wake_lock = wake_lock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="image-decode"
        )
        self._state = TransferState.IDLE
        self._buffer: list[str] = []
        self._expected = 0
        self._received = 0
        # Transfers started but not yet cleaned up (receiving or decoding)
        self._outstanding = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def is_receiving(self) -> bool:
        return self._state is TransferState.RECEIVING

    @property
    def expected_chars(self) -> int:
        return self._expected

    @property
    def received_chars(self) -> int:
        return self._received

    @property
    def buffered_chars(self) -> int:
        """Characters currently held in the accumulation buffer."""
        return sum(len(chunk) for chunk in self._buffer)

    @property
    def decode_pending(self) -> bool:
        return bool(self._tasks)

    @property
    def busy(self) -> bool:
        """True from a size announcement until its cleanup has run."""
        return self._outstanding > 0

    def consume(self, line: str) -> ConsumeResult:
        """Offer one protocol line to the decoder."""
        if not line:
            return ConsumeResult.NOT_CONSUMED

        if SIZE_MARKER in line:
            if self.is_receiving:
                logger.warning(
                    "Size announcement during a transfer (%d/%d chars), ignoring: %s",
                    self._received, self._expected, line[:60],
                )
                return ConsumeResult.NOT_CONSUMED
            return self._start(line)

        if not self.is_receiving:
            return ConsumeResult.NOT_CONSUMED

        if END_MARKER in line:
            tail = line[: line.index(END_MARKER)]
            if tail and tail != BOOTSTRAP_TOKEN:
                self._buffer.append(tail)
            self._finish()
            return ConsumeResult.CONSUMED

        if line == BOOTSTRAP_TOKEN:
            return ConsumeResult.CONSUMED

        self._buffer.append(line)
        self._received += len(line)
        if self._expected > 0:
            percent = min(99, self._received * 100 // self._expected)
            self._emit(
                TransferProgress(
                    percent=percent,
                    received_chars=self._received,
                    expected_chars=self._expected,
                )
            )
        return ConsumeResult.CONSUMED

    def abort(self) -> None:
        """Drop an in-progress transfer, e.g. when the connection is lost."""
        if not self.is_receiving:
            return
        logger.info(
            "Aborting snapshot transfer after %d/%d chars", self._received, self._expected
        )
        self._reset()
        self._complete()

    async def drain(self) -> None:
        """Wait until every pending decode has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self) -> None:
        """Cancel pending decodes and stop the decode executor."""
        if self._closed:
            return
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start(self, line: str) -> ConsumeResult:
        expected = parse_size_announcement(line)
        if expected is None:
            logger.warning("Could not parse size announcement: %s", line[:60])
            return ConsumeResult.NOT_CONSUMED

        self._reset()
        self._expected = expected
        self._outstanding += 1
        self._acquire_wake_lock()
        self._state = TransferState.RECEIVING

        # base64 inflates by 4/3, so 3/4 of the text length estimates the image size
        size_kb = int(expected * 0.75 / 1024)
        logger.info("Snapshot transfer started: %d chars (~%d KB)", expected, size_kb)
        self._emit(
            TransferStarted(
                expected_chars=expected,
                size_kb=size_kb,
                size_text=f"~{size_kb} KB",
            )
        )
        return ConsumeResult.CONSUMED

    def _finish(self) -> None:
        payload = "".join(self._buffer)
        self._reset()
        logger.debug("End marker found, %d chars buffered", len(payload))

        if not payload:
            self._complete()
            return

        task = asyncio.get_running_loop().create_task(self._decode(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _decode(self, payload: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            image, data = await loop.run_in_executor(
                self._executor, decode_image_payload, payload
            )
        except ImageDecodeError as e:
            logger.warning("Snapshot decode failed: %s", e)
            self._emit(TransferFailed(message=f"Could not decode image: {e}"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error while decoding snapshot")
            self._emit(TransferFailed(message=f"Decoding error: {e}"))
        else:
            logger.info(
                "Decoded snapshot %dx%d (%d bytes)", image.shape[1], image.shape[0], len(data)
            )
            self._emit(ImageDecoded(image=image, data=data))
        finally:
            self._complete()

    def _reset(self) -> None:
        self._buffer = []
        self._expected = 0
        self._received = 0
        self._state = TransferState.IDLE

    def _complete(self) -> None:
        self._outstanding = max(0, self._outstanding - 1)
        if self._outstanding:
            logger.debug("Transfer finished, %d still in flight", self._outstanding)
            return
        self._release_wake_lock()
        self._emit(TransferComplete())

    def _acquire_wake_lock(self) -> None:
        if self._wake_lock is not None and not self._wake_lock.is_held:
            self._wake_lock.acquire()

    def _release_wake_lock(self) -> None:
        if self._wake_lock is not None and self._wake_lock.is_held:
            self._wake_lock.release()
