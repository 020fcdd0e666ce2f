"""
Log formatters: LogEntry -> displayable text.

Formatters are pure and stateless; every sink takes one as a constructor
argument so rendering can be swapped without touching dispatch logic.
"""

from __future__ import annotations

import traceback
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import orjson
from structlog.typing import EventDict

from .models import LogEntry

# =============================================================================
# Helpers
# =============================================================================

COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "timestamp": "\033[90m",
    "logger": "\033[35m",
    "key": "\033[34m",
}


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    return f"{COLORS.get(color, '')}{text}{COLORS['reset']}"


def orjson_dumps(v: Any, *, default: Any = None) -> str:
    """Fast JSON serialization using orjson."""
    return orjson.dumps(v, default=default, option=orjson.OPT_UTC_Z | orjson.OPT_NAIVE_UTC).decode()


def format_error(error: Optional[BaseException]) -> str:
    """Render an exception and its traceback the way the interpreter prints it."""
    if error is None:
        return ""
    lines = traceback.format_exception(type(error), error, error.__traceback__)
    return "".join(lines).rstrip("\n")


# =============================================================================
# Formatter Abstraction (Strategy Pattern)
# =============================================================================


class LogFormatter(ABC):
    """Turns a LogEntry into the text a sink persists or displays."""

    @abstractmethod
    def format(self, entry: LogEntry) -> str: ...


class DefaultFormatter(LogFormatter):
    """``timestamp [SEVERITY] [tag]: message`` plus the error trace, if any."""

    TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

    def format(self, entry: LogEntry) -> str:
        timestamp = entry.timestamp.strftime(self.TIMESTAMP_FORMAT)
        millis = entry.timestamp.microsecond // 1000
        line = f"{timestamp}.{millis:03d} [{entry.severity.name}] [{entry.tag}]: {entry.message}"
        if entry.error is not None:
            return f"{line}\n{format_error(entry.error)}"
        return line


class JsonFormatter(LogFormatter):
    """One JSON object per entry, for machine parsing."""

    def format(self, entry: LogEntry) -> str:
        record: dict[str, Any] = {
            "timestamp": entry.timestamp.astimezone().isoformat(timespec="milliseconds"),
            "severity": entry.severity.name,
            "priority": entry.severity.priority,
            "tag": entry.tag,
            "message": entry.message,
        }
        if entry.error is not None:
            record["error"] = {
                "type": type(entry.error).__name__,
                "message": str(entry.error),
                "traceback": format_error(entry.error),
            }
        return orjson_dumps(record)


class ConsoleFormatter(LogFormatter):
    """Human-readable, fixed-width console rendering (right-aligned columns).

    Used both for LogEntry objects (console sink) and for the library's own
    structlog diagnostics (``format_event``).
    """

    _RESET = "\x1b[0m"
    _LEVEL_COLORS = {
        "VERBOSE": "\x1b[2m",
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARN": "\x1b[33m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[1;31m",
    }

    EXCLUDED_KEYS = {"level", "message", "event", "logger", "timestamp", "_name"}
    TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
    TIMESTAMP_WIDTH = 19
    LEVEL_WIDTH = 8
    LOGGER_WIDTH = 24
    SEPARATOR = " | "

    def __init__(self, *, use_color: bool = False) -> None:
        self.use_color = use_color

    @staticmethod
    def _fit_right(text: str, width: int) -> str:
        if width <= 0:
            return text
        if len(text) > width:
            if width <= 3:
                text = text[-width:]
            else:
                text = "..." + text[-(width - 3) :]
        return f"{text:>{width}}"

    @classmethod
    def _parse_timestamp(cls, raw_timestamp: str | None) -> str:
        if raw_timestamp:
            try:
                dt = datetime.fromisoformat(raw_timestamp.replace("Z", "+00:00"))
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=timezone.utc)
                return dt.astimezone().strftime(cls.TIMESTAMP_FORMAT)
            except (ValueError, TypeError):
                pass
        return datetime.now().strftime(cls.TIMESTAMP_FORMAT)

    @classmethod
    def _colorize_level(cls, text: str, level_upper: str, use_color: bool) -> str:
        color = cls._LEVEL_COLORS.get(level_upper) if use_color else None
        if not color:
            return text
        return f"{color}{text}{cls._RESET}"

    @staticmethod
    def _maybe_color(text: str, color: str, use_color: bool) -> str:
        if not use_color:
            return text
        return colorize(text, color)

    @classmethod
    def _render(
        cls,
        *,
        timestamp: str,
        level: str,
        logger_name: str,
        message: str,
        use_color: bool,
    ) -> str:
        level_upper = level.upper()
        return "".join(
            [
                cls._maybe_color(cls._fit_right(timestamp, cls.TIMESTAMP_WIDTH), "timestamp", use_color),
                cls.SEPARATOR,
                cls._colorize_level(cls._fit_right(level_upper, cls.LEVEL_WIDTH), level_upper, use_color),
                cls.SEPARATOR,
                cls._maybe_color(cls._fit_right(logger_name, cls.LOGGER_WIDTH), "logger", use_color),
                cls.SEPARATOR,
                message,
            ]
        )

    def format(self, entry: LogEntry) -> str:
        message = entry.message
        if entry.error is not None:
            message = f"{message}\n{format_error(entry.error)}"
        return self._render(
            timestamp=entry.timestamp.strftime(self.TIMESTAMP_FORMAT),
            level=entry.severity.name,
            logger_name=entry.tag,
            message=message,
            use_color=self.use_color,
        )

    @classmethod
    def format_event(cls, event_dict: EventDict, *, use_color: bool = True) -> str:
        """Format a structlog event dict into an aligned string."""
        message = str(event_dict.get("message", event_dict.get("event", "")))

        extras = []
        for k, v in event_dict.items():
            if k in cls.EXCLUDED_KEYS or k == "exception":
                continue
            extras.append(f"{cls._maybe_color(k, 'key', use_color)}={cls._maybe_color(str(v), 'dim', use_color)}")
        if extras:
            message = f"{message} " + " ".join(extras)
        if "exception" in event_dict:
            message = f"{message}\n{event_dict['exception']}"

        return cls._render(
            timestamp=cls._parse_timestamp(event_dict.get("timestamp")),
            level=str(event_dict.get("level", "info")),
            logger_name=str(event_dict.get("logger", "logdispatch")),
            message=message,
            use_color=use_color,
        )
