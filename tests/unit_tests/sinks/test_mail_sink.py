"""
BatchingMailSink unit tests.

Most tests run the sink with ``background=False`` so every buffer write and
delivery completes before ``handle`` returns; the single-flight and drain tests
use the real worker threads.
"""

from __future__ import annotations

import threading

import pytest
from structlog.testing import capture_logs

from logdispatch.config import MailSinkSettings, SmtpSettings, ThresholdType
from logdispatch.dispatcher import LogDispatcher
from logdispatch.exceptions import InitializationFailure
from logdispatch.sinks.mail import (
    BatchingMailSink,
    CounterThreshold,
    MailSinkState,
    TimerThreshold,
    threshold_from_settings,
)
from logdispatch.storage import CatalogStorageBackend, MemoryStorageBackend, PathStorageBackend
from logdispatch.transport import MailTransport, SendResult, SmtpMailTransport


@pytest.fixture
def smtp_settings() -> SmtpSettings:
    return SmtpSettings(sender_address="app@example.com", recipient_address="ops@example.com")


@pytest.fixture
def make_sink(platform_context, smtp_settings):
    """Build and initialize an inline mail sink."""
    created: list[BatchingMailSink] = []

    def _make(transport, *, threshold=None, settings=None, backend=None, clock=None, background=False):
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        sink = BatchingMailSink(
            settings or MailSinkSettings(),
            smtp=smtp_settings,
            transport=transport,
            backend=backend if backend is not None else MemoryStorageBackend(),
            threshold=threshold,
            background=background,
            **kwargs,
        )
        sink.initialize(platform_context)
        created.append(sink)
        return sink

    yield _make
    for sink in created:
        sink.close(drain=True, timeout=5)


def _lines(sink: BatchingMailSink) -> list[str]:
    assert sink.backend is not None
    return sink.backend.read(sink.blob_name).decode().splitlines()


class TestCounterThreshold:
    def test_digest_is_sent_when_count_is_reached(self, make_sink, transport, make_entry) -> None:
        sink = make_sink(transport, threshold=CounterThreshold(3))

        for i in range(3):
            sink.handle(make_entry(f"m{i}"))

        assert len(transport.messages) == 1
        attachment = transport.messages[0].attachment.decode().splitlines()
        assert [line.rsplit(": ", 1)[1] for line in attachment] == ["m0", "m1", "m2"]
        assert _lines(sink) == []
        assert sink.snapshot().pending_count == 0
        assert sink.snapshot().delivered_batches == 1

    def test_nothing_is_sent_below_the_count(self, make_sink, transport, make_entry) -> None:
        sink = make_sink(transport, threshold=CounterThreshold(3))

        sink.handle(make_entry("a"))
        sink.handle(make_entry("b"))

        assert transport.messages == []
        assert len(_lines(sink)) == 2
        assert sink.snapshot().pending_count == 2

    def test_counting_restarts_after_delivery(self, make_sink, transport, make_entry) -> None:
        sink = make_sink(transport, threshold=CounterThreshold(2))

        for i in range(5):
            sink.handle(make_entry(f"m{i}"))

        assert len(transport.messages) == 2
        assert len(_lines(sink)) == 1

    def test_failed_delivery_keeps_buffer_and_retries_on_next_entry(
        self, make_sink, failing_transport, make_entry
    ) -> None:
        sink = make_sink(failing_transport, threshold=CounterThreshold(3))

        with capture_logs() as logs:
            for i in range(5):
                sink.handle(make_entry(f"m{i}"))

        assert len(failing_transport.messages) == 3
        assert len(_lines(sink)) == 5
        assert len(failing_transport.messages[-1].attachment.decode().splitlines()) == 5

        state = sink.snapshot()
        assert state.failed_attempts == 3
        assert state.delivered_batches == 0
        assert state.pending_count == 5

        failures = [log for log in logs if log["event"] == "mail_delivery_failed"]
        assert len(failures) == 3
        assert failures[0]["code"] == "MAIL_DELIVERY_FAILED"
        assert failures[0]["reason"] == "535 authentication failed"

    def test_threshold_crossed_once_by_failing_burst(self, make_sink, failing_transport, fake_clock, make_entry) -> None:
        fake_clock.advance(42)
        sink = make_sink(failing_transport, threshold=CounterThreshold(3), clock=fake_clock)

        for i in range(3):
            sink.handle(make_entry(f"m{i}"))

        assert len(failing_transport.messages) == 1
        assert len(_lines(sink)) == 3
        state = sink.snapshot()
        assert state.failed_attempts == 1
        assert state.last_failure_at == 42
        assert state.pending_count == 3

    def test_raising_transport_is_treated_as_failure(self, make_sink, transport_factory, make_entry) -> None:
        transport = transport_factory(raises=ConnectionError("network down"))
        sink = make_sink(transport, threshold=CounterThreshold(1))

        with capture_logs() as logs:
            sink.handle(make_entry("a"))

        assert len(_lines(sink)) == 1
        failure = next(log for log in logs if log["event"] == "mail_delivery_failed")
        assert failure["reason"] == "ConnectionError: network down"

    def test_cooldown_applies_only_when_enabled(self, make_sink, failing_transport, fake_clock, make_entry) -> None:
        settings = MailSinkSettings(retry_cooldown_seconds=300)
        sink = make_sink(
            failing_transport,
            threshold=CounterThreshold(1, respects_cooldown=True),
            settings=settings,
            clock=fake_clock,
        )

        sink.handle(make_entry("a"))
        assert len(failing_transport.messages) == 1
        assert sink.state is MailSinkState.COOLDOWN

        fake_clock.advance(100)
        sink.handle(make_entry("b"))
        assert len(failing_transport.messages) == 1

        fake_clock.advance(200)
        sink.handle(make_entry("c"))
        assert len(failing_transport.messages) == 2

    def test_invalid_count(self) -> None:
        with pytest.raises(ValueError):
            CounterThreshold(0)


class TestTimerThreshold:
    def test_flushes_once_interval_has_elapsed(self, make_sink, transport, fake_clock, make_entry) -> None:
        sink = make_sink(transport, threshold=TimerThreshold(60), clock=fake_clock)

        fake_clock.advance(10)
        sink.handle(make_entry("early"))
        assert transport.messages == []

        fake_clock.advance(50)
        sink.handle(make_entry("on time"))
        assert len(transport.messages) == 1
        assert len(transport.messages[0].attachment.decode().splitlines()) == 2

        fake_clock.advance(10)
        sink.handle(make_entry("after"))
        assert len(transport.messages) == 1

    def test_failure_blocks_retries_until_cooldown(self, make_sink, failing_transport, fake_clock, make_entry) -> None:
        settings = MailSinkSettings(retry_cooldown_seconds=100)
        sink = make_sink(failing_transport, threshold=TimerThreshold(60), settings=settings, clock=fake_clock)

        fake_clock.advance(60)
        sink.handle(make_entry("a"))
        assert len(failing_transport.messages) == 1
        assert sink.state is MailSinkState.COOLDOWN

        fake_clock.advance(60)
        sink.handle(make_entry("b"))
        assert len(failing_transport.messages) == 1

        fake_clock.advance(40)
        sink.handle(make_entry("c"))
        assert len(failing_transport.messages) == 2
        assert len(failing_transport.messages[-1].attachment.decode().splitlines()) == 3

    def test_baseline_is_construction_time(self, make_sink, transport, fake_clock, make_entry) -> None:
        fake_clock.advance(1000)
        sink = make_sink(transport, threshold=TimerThreshold(60), clock=fake_clock)

        sink.handle(make_entry("a"))
        assert transport.messages == []


class BlockingTransport(MailTransport):
    """Succeeds, but only once the test sets ``release``."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.started = threading.Event()
        self.release = threading.Event()

    def send(self, message):
        self.sent.append(message.attachment)
        self.started.set()
        self.release.wait(5)
        return SendResult.success()


class EmptyReadBackend(MemoryStorageBackend):
    def read(self, blob_id: str) -> bytes:
        return b""


class TestFlushGuards:
    def test_empty_buffer_is_not_sent(self, make_sink, transport, make_entry) -> None:
        sink = make_sink(transport, threshold=CounterThreshold(1), backend=EmptyReadBackend())

        with capture_logs() as logs:
            sink.handle(make_entry("a"))

        assert transport.messages == []
        skipped = [log for log in logs if log["event"] == "mail_flush_skipped"]
        assert skipped[0]["reason"] == "log buffer empty"
        assert sink.state is MailSinkState.IDLE

    def test_only_one_delivery_in_flight(self, make_sink, make_entry) -> None:
        transport = BlockingTransport()
        sink = make_sink(transport, threshold=CounterThreshold(1), background=True)

        sink.handle(make_entry("first"))
        assert transport.started.wait(5)
        assert sink.state is MailSinkState.SENDING

        for i in range(3):
            sink.handle(make_entry(f"during {i}"))
        assert sink.flush(timeout=0.2) is False
        assert len(transport.sent) == 1

        transport.release.set()
        assert sink.flush(timeout=5) is True

        # Entries buffered during the send survive the post-delivery discard.
        assert [line.rsplit(": ", 1)[1] for line in _lines(sink)] == ["during 0", "during 1", "during 2"]
        assert len(transport.sent[0].decode().splitlines()) == 1


class TestInitialization:
    def test_default_transport_requires_smtp_addresses(self, platform_context) -> None:
        sink = BatchingMailSink(MailSinkSettings(), smtp=SmtpSettings(), background=False)

        with pytest.raises(InitializationFailure) as excinfo:
            sink.initialize(platform_context)
        assert excinfo.value.details["sink"] == "BatchingMailSink"
        assert sink.is_initialized is False

    def test_default_transport_and_backend(self, platform_context, smtp_settings) -> None:
        sink = BatchingMailSink(smtp=smtp_settings, background=False)
        sink.initialize(platform_context)

        assert isinstance(sink._transport, SmtpMailTransport)
        assert isinstance(sink.backend, PathStorageBackend)
        assert sink.backend.root == platform_context.data_dir
        assert platform_context.data_dir.is_dir()

    def test_handle_before_initialize_is_dropped(self, smtp_settings, transport, make_entry) -> None:
        sink = BatchingMailSink(smtp=smtp_settings, transport=transport, background=False)

        with capture_logs() as logs:
            sink.handle(make_entry())

        assert logs[0]["event"] == "mail_sink_not_initialized"
        assert transport.messages == []


class TestComposition:
    def test_message_uses_smtp_settings(self, make_sink, transport, make_entry) -> None:
        sink = make_sink(transport, threshold=CounterThreshold(1))
        sink.handle(make_entry("hello"))

        message = transport.messages[0]
        assert message.sender == "app@example.com"
        assert message.recipient == "ops@example.com"
        assert message.subject == "App Logs"
        assert message.body_text == "Attached is the latest log file."
        assert message.attachment_name == "logs.txt"
        assert message.attachment == b"2024-01-02 03:04:05.678 [INFO] [T]: hello\n"


class TestThresholdFromSettings:
    def test_counter(self) -> None:
        policy = threshold_from_settings(MailSinkSettings(log_count_threshold=7))
        assert policy == CounterThreshold(7)

    def test_timer(self) -> None:
        policy = threshold_from_settings(
            MailSinkSettings(threshold_type=ThresholdType.TIMER, time_threshold_seconds=42)
        )
        assert policy == TimerThreshold(42)


class TestShutdown:
    def test_shutdown_during_send_leaves_no_worker_threads(self, platform_context, smtp_settings, make_entry) -> None:
        before = set(threading.enumerate())
        transport = BlockingTransport()
        sink = BatchingMailSink(
            smtp=smtp_settings,
            transport=transport,
            backend=MemoryStorageBackend(),
            threshold=CounterThreshold(1),
        )
        dispatcher = LogDispatcher()
        dispatcher.configure(platform_context, sink)
        dispatcher.info("T", "hello")
        assert transport.started.wait(5)

        with capture_logs() as logs:
            dispatcher.shutdown()
            transport.release.set()
            spawned = [thread for thread in threading.enumerate() if thread not in before]
            for thread in spawned:
                thread.join(5)

        assert {thread.name for thread in spawned} == {"logdispatch-mail-buffer", "logdispatch-mail-sender"}
        assert [thread.name for thread in spawned if thread.is_alive()] == []
        assert sink.state is MailSinkState.IDLE
        assert any(log["event"] == "worker_job_dropped" and log["reason"] == "stopped" for log in logs)

    def test_close_without_drain_releases_backend(self, tmp_path, platform_context, smtp_settings, transport) -> None:
        backend = CatalogStorageBackend(tmp_path / "catalog", "buffer/")
        sink = BatchingMailSink(smtp=smtp_settings, transport=transport, backend=backend)
        sink.initialize(platform_context)
        assert backend.is_open is True

        sink.close()
        for thread in threading.enumerate():
            if thread.name == "logdispatch-mail-buffer":
                thread.join(5)

        assert backend.is_open is False
