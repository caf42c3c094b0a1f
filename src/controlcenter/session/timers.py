"""Cancellable timers on the asyncio loop.

Each Timer wraps ``loop.call_later`` and carries a generation token. Any
start() or cancel() bumps the generation, so a callback that was already
queued by the loop before the cancel still finds a stale token and does
nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Timer:
    """A one-shot or repeating callback owned by the session controller."""

    def __init__(self, name: str, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._name = name
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._generation = 0
        self._interval: float | None = None
        self._callback: Callable[[], None] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def repeating(self) -> bool:
        return self._interval is not None

    def start(
        self,
        delay: float,
        callback: Callable[[], None],
        interval: float | None = None,
    ) -> None:
        """Arm the timer, replacing any previous schedule.

        Args:
            delay: Seconds until the first call.
            callback: Called on the loop thread.
            interval: If set, repeat every ``interval`` seconds after the
                      first call until cancelled.
        """
        self.cancel()
        self._callback = callback
        self._interval = interval
        self._schedule(delay, self._generation)
        logger.debug("Timer %s armed (delay=%.3fs, interval=%s)", self._name, delay, interval)

    def cancel(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("Timer %s cancelled", self._name)
        self._callback = None
        self._interval = None

    def _schedule(self, delay: float, generation: int) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, generation)

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self._callback is None:
            return
        callback = self._callback
        if self._interval is not None:
            self._schedule(self._interval, generation)
        else:
            self._handle = None
            self._callback = None
        callback()
