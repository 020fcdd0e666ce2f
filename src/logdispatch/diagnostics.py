"""
Diagnostic logging for the library itself.

Everything logdispatch reports about its own health (sinks failing to
initialize, writes failing, deliveries failing, lifecycle misuse) is emitted
through structlog here and never through the dispatcher, so a broken sink can
not recurse into itself.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

import structlog
from structlog.typing import EventDict, WrappedLogger

from .config import DiagnosticsSettings, settings
from .formatters import ConsoleFormatter, orjson_dumps


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(_name=name or "logdispatch")


# =============================================================================
# Structlog Processors
# =============================================================================


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_logger_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add logger name to log event."""
    event_dict["logger"] = event_dict.pop("_name", "logdispatch")
    return event_dict


class DiagnosticRenderer:
    """Final processor: render the event dict as a console line or JSON."""

    def __init__(self, fmt: str = "console", *, use_color: bool = False) -> None:
        self._fmt = fmt
        self._use_color = use_color

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> str:
        if self._fmt == "json":
            return orjson_dumps(event_dict, default=str)
        return ConsoleFormatter.format_event(event_dict, use_color=self._use_color)


# =============================================================================
# Configuration Logic
# =============================================================================


def configure_diagnostics(
    *,
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
    diagnostics: DiagnosticsSettings | None = None,
) -> None:
    """
    Configure where and how the library's own diagnostics are rendered.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Output format, "console" (aligned columns) or "json"
        stream: Output stream (default: stderr)
        diagnostics: Source of defaults for ``level`` and ``fmt``
            (default: ``settings.diagnostics``, i.e. LOGDISPATCH_DIAG_*)
    """
    cfg = diagnostics or settings.diagnostics
    level = level or cfg.level
    fmt = fmt or cfg.format.value
    output = stream or sys.stderr
    use_color = bool(getattr(output, "isatty", lambda: False)())

    processors: list[Any] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        DiagnosticRenderer(fmt.lower(), use_color=use_color),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=False,
    )
