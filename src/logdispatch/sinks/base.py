"""
Sink abstraction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from logdispatch.context import PlatformContext
from logdispatch.models import LogEntry


class Sink(ABC):
    """A destination that receives every dispatched entry.

    ``initialize`` may raise; the dispatcher then leaves the sink out.
    ``handle`` is fire-and-forget: it must not block on I/O and must not raise.
    """

    @abstractmethod
    def initialize(self, context: PlatformContext) -> None:
        """Resolve storage and start background work."""
        ...

    @abstractmethod
    def handle(self, entry: LogEntry) -> None:
        """Accept one entry."""
        ...

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued background work. Returns False on timeout."""
        return True

    def close(self, *, drain: bool = False, timeout: Optional[float] = None) -> None:
        """Stop background work, optionally waiting for it to finish."""

    @property
    def name(self) -> str:
        return type(self).__name__
