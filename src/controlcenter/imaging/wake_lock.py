"""Hook for keeping the host awake during a snapshot transfer.

A transfer of a large snapshot can take a while on a slow link. Hosts
that suspend aggressively can plug in a lock that is held from the size
announcement until the transfer completes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class WakeLock(ABC):
    """Abstract interface for a suspend inhibitor."""

    @property
    @abstractmethod
    def is_held(self) -> bool:
        ...

    @abstractmethod
    def acquire(self) -> None:
        """Start inhibiting suspend."""
        ...

    @abstractmethod
    def release(self) -> None:
        """Stop inhibiting suspend."""
        ...
