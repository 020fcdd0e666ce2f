import threading
import typing as t
from datetime import datetime

import pytest

from logdispatch.context import PlatformContext
from logdispatch.models import LogEntry, Severity
from logdispatch.sinks.base import Sink
from logdispatch.storage import MemoryStorageBackend
from logdispatch.transport import MailMessage, MailTransport, SendResult


class RecordingTransport(MailTransport):
    """Mail transport that records messages instead of sending them."""

    def __init__(self, *, fail_with: str | None = None, raises: Exception | None = None):
        self.messages: list[MailMessage] = []
        self.fail_with = fail_with
        self.raises = raises
        self._lock = threading.Lock()

    def send(self, message: MailMessage) -> SendResult:
        with self._lock:
            self.messages.append(message)
        if self.raises is not None:
            raise self.raises
        if self.fail_with is not None:
            return SendResult.failure(self.fail_with)
        return SendResult.success()


class CountingBackend(MemoryStorageBackend):
    """In-memory backend that counts destructive operations."""

    def __init__(self) -> None:
        super().__init__()
        self.delete_calls = 0
        self.clear_calls = 0
        self._count_lock = threading.Lock()

    def delete(self, blob_id: str) -> bool:
        with self._count_lock:
            self.delete_calls += 1
        return super().delete(blob_id)

    def clear(self, blob_id: str) -> None:
        with self._count_lock:
            self.clear_calls += 1
        super().clear(blob_id)


class RecordingSink(Sink):
    """Sink that keeps every entry it receives."""

    def __init__(self, journal: list | None = None, label: str = "recording"):
        self.entries: list[LogEntry] = []
        self.journal = journal
        self.label = label
        self.initialized_with: PlatformContext | None = None
        self.close_calls: list[dict[str, t.Any]] = []

    def initialize(self, context: PlatformContext) -> None:
        self.initialized_with = context

    def handle(self, entry: LogEntry) -> None:
        self.entries.append(entry)
        if self.journal is not None:
            self.journal.append((self.label, entry.message))

    def close(self, *, drain: bool = False, timeout: float | None = None) -> None:
        self.close_calls.append({"drain": drain, "timeout": timeout})


class FakeClock:
    """Manually advanced seconds clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep host LOGDISPATCH_* variables out of settings models."""
    import os

    for key in list(os.environ):
        if key.startswith("LOGDISPATCH_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def platform_context(tmp_path) -> PlatformContext:
    return PlatformContext.for_directory(tmp_path)


@pytest.fixture
def make_entry():
    """Factory for entries with a fixed timestamp."""

    def _make(
        message: str = "hello",
        *,
        severity: Severity = Severity.INFO,
        tag: str = "T",
        error: BaseException | None = None,
    ) -> LogEntry:
        return LogEntry(
            severity=severity,
            tag=tag,
            message=message,
            timestamp=datetime(2024, 1, 2, 3, 4, 5, 678000),
            error=error,
        )

    return _make


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(fail_with="535 authentication failed")


@pytest.fixture
def transport_factory() -> type[RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def counting_backend() -> CountingBackend:
    return CountingBackend()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sink_factory() -> type[RecordingSink]:
    return RecordingSink
