"""
Console sink: pass-through to a text stream or to the system log.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from logdispatch.context import PlatformContext
from logdispatch.diagnostics import get_logger
from logdispatch.formatters import LogFormatter
from logdispatch.models import LogEntry, Severity

from .base import Sink

_LEVELS = {
    Severity.VERBOSE: logging.DEBUG,
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class ConsoleSink(Sink):
    """Writes entries synchronously; no buffering, no background work.

    With a formatter, the formatted text is written to ``stream``. Without one,
    the entry goes to a structlog logger named after its tag, at the mapped level.

    Args:
        formatter: Optional entry renderer
        stream: Output stream for formatted text (default: stdout)
    """

    def __init__(self, formatter: Optional[LogFormatter] = None, stream: Any = None):
        self._formatter = formatter
        self._stream = stream

    def initialize(self, context: PlatformContext) -> None:
        pass

    def handle(self, entry: LogEntry) -> None:
        if self._formatter is not None:
            stream = self._stream or sys.stdout
            stream.write(self._formatter.format(entry) + "\n")
            stream.flush()
            return

        get_logger(entry.tag).log(_LEVELS[entry.severity], entry.message, exc_info=entry.error)
