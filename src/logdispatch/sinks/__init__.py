"""Sink implementations."""

from .base import Sink
from .console import ConsoleSink
from .file import FileSink
from .mail import (
    BatchingMailSink,
    BufferState,
    CounterThreshold,
    MailSinkState,
    ThresholdPolicy,
    TimerThreshold,
    threshold_from_settings,
)
from .worker import SerialWorker

__all__ = [
    "Sink",
    "ConsoleSink",
    "FileSink",
    "BatchingMailSink",
    "BufferState",
    "CounterThreshold",
    "TimerThreshold",
    "ThresholdPolicy",
    "MailSinkState",
    "SerialWorker",
    "threshold_from_settings",
]
