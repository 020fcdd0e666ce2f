"""
logdispatch: pluggable log dispatch.

Application code logs once through a :class:`LogDispatcher`; the dispatcher
fans each entry out to the configured sinks:

- FileSink: append to a log file, optionally reset once per session
- BatchingMailSink: buffer entries and mail them as one digest
- ConsoleSink: print or forward to structlog

Design Pattern: Strategy Pattern for sinks, formatters and storage backends.
Library: structlog + orjson for diagnostics, pydantic-settings for config.
"""

from .context import PlatformContext
from .diagnostics import configure_diagnostics, get_logger
from .dispatcher import LogDispatcher, TaggedLogger
from .exceptions import (
    ConfigurationMisuse,
    DeliveryFailure,
    InitializationFailure,
    LogDispatchError,
    WriteFailure,
)
from .formatters import ConsoleFormatter, DefaultFormatter, JsonFormatter, LogFormatter
from .models import LogEntry, Severity
from .sinks import BatchingMailSink, ConsoleSink, CounterThreshold, FileSink, Sink, TimerThreshold

__all__ = [
    "LogDispatcher",
    "TaggedLogger",
    "PlatformContext",
    "LogEntry",
    "Severity",
    "Sink",
    "FileSink",
    "BatchingMailSink",
    "ConsoleSink",
    "CounterThreshold",
    "TimerThreshold",
    "LogFormatter",
    "DefaultFormatter",
    "JsonFormatter",
    "ConsoleFormatter",
    "LogDispatchError",
    "InitializationFailure",
    "WriteFailure",
    "DeliveryFailure",
    "ConfigurationMisuse",
    "configure_diagnostics",
    "get_logger",
]
