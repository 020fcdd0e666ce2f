"""
Core data model: severities and immutable log entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Callable, Optional


class Severity(IntEnum):
    """Ordered log severity.

    Values are the numeric priorities used for filtering, so comparisons
    such as ``Severity.WARN > Severity.INFO`` hold.
    """

    VERBOSE = 2
    DEBUG = 3
    INFO = 4
    WARN = 5
    ERROR = 6

    @property
    def priority(self) -> int:
        return int(self)


@dataclass(frozen=True)
class LogEntry:
    """A single log record as emitted by the caller.

    Entries are never persisted as objects; only their formatted
    projection reaches durable storage.
    """

    severity: Severity
    tag: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[BaseException] = None

    @classmethod
    def create(
        cls,
        severity: Severity,
        tag: str,
        message: str,
        error: Optional[BaseException] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "LogEntry":
        """Build an entry stamped with the current time from ``clock``."""
        return cls(
            severity=severity,
            tag=tag,
            message=message,
            timestamp=clock(),
            error=error,
        )
