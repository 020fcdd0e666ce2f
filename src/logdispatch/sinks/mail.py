"""
Batching mail sink: buffer entries durably, ship the buffer as one email.

State machine per sink::

    IDLE --threshold crossed--> SENDING --delivered--> IDLE
                                        --failed-----> IDLE (+ cooldown stamp)

A failure stamp blocks timer-triggered flushes until the retry cooldown has
elapsed (reported as COOLDOWN). Counter-triggered flushes ignore the cooldown
unless the counter policy opts in.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from logdispatch.config import MailSinkSettings, SmtpSettings, ThresholdType
from logdispatch.context import PlatformContext
from logdispatch.diagnostics import get_logger
from logdispatch.exceptions import DeliveryFailure, InitializationFailure, WriteFailure
from logdispatch.formatters import DefaultFormatter, LogFormatter
from logdispatch.models import LogEntry
from logdispatch.storage import PathStorageBackend, StorageBackend
from logdispatch.transport import MailMessage, MailTransport, SendResult, SmtpMailTransport

from .base import Sink
from .worker import SerialWorker

logger = get_logger("logdispatch.sinks.mail")


class MailSinkState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    COOLDOWN = "cooldown"


@dataclass
class BufferState:
    """Transient bookkeeping of one mail sink. Never shared outward."""

    last_attempt_at: float
    pending_count: int = 0
    last_failure_at: Optional[float] = None
    failed_attempts: int = 0
    delivered_batches: int = 0


def cooldown_elapsed(state: BufferState, now: float, cooldown: float) -> bool:
    return state.last_failure_at is None or now - state.last_failure_at >= cooldown


# =============================================================================
# Threshold Policies
# =============================================================================


class ThresholdPolicy(ABC):
    """Decides when the accumulated buffer should be shipped."""

    @abstractmethod
    def should_flush(self, state: BufferState, now: float, cooldown: float) -> bool: ...

    def on_delivered(self, state: BufferState, now: float, sent_count: int) -> None:
        """Update the baseline after a successful delivery of ``sent_count`` entries."""
        state.pending_count = max(0, state.pending_count - sent_count)


@dataclass(frozen=True)
class CounterThreshold(ThresholdPolicy):
    """Flush once ``count`` entries have accumulated."""

    count: int
    respects_cooldown: bool = False

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise ValueError("count must be positive")

    def should_flush(self, state: BufferState, now: float, cooldown: float) -> bool:
        if state.pending_count < self.count:
            return False
        return not self.respects_cooldown or cooldown_elapsed(state, now, cooldown)


@dataclass(frozen=True)
class TimerThreshold(ThresholdPolicy):
    """Flush once ``interval`` seconds have passed since the last delivery."""

    interval: float

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be non-negative")

    def should_flush(self, state: BufferState, now: float, cooldown: float) -> bool:
        return now - state.last_attempt_at >= self.interval and cooldown_elapsed(state, now, cooldown)

    def on_delivered(self, state: BufferState, now: float, sent_count: int) -> None:
        super().on_delivered(state, now, sent_count)
        state.last_attempt_at = now


def threshold_from_settings(settings: MailSinkSettings) -> ThresholdPolicy:
    if settings.threshold_type == ThresholdType.TIMER:
        return TimerThreshold(settings.time_threshold_seconds)
    return CounterThreshold(settings.log_count_threshold, respects_cooldown=settings.counter_respects_cooldown)


# =============================================================================
# Sink
# =============================================================================


class BatchingMailSink(Sink):
    """Accumulates entries in a buffer blob and mails it when a threshold is met.

    Buffer appends run on one worker and deliveries on another, so a slow SMTP
    server delays digests but never buffer writes. Only one delivery is in
    flight at a time; triggers that arrive meanwhile are dropped and the next
    entry re-evaluates the threshold. A failed delivery keeps the buffer intact.
    After a successful delivery only the bytes that were sent are discarded, so
    entries buffered during the send survive into the next digest.

    Args:
        settings: Threshold, cooldown and buffer naming
        smtp: SMTP endpoint, used to build the default transport and the envelope
        transport: Explicit transport (default: :class:`SmtpMailTransport`)
        backend: Explicit buffer storage (default: files in ``context.data_dir``)
        threshold: Explicit policy overriding ``settings``
        formatter: Entry renderer (default: :class:`DefaultFormatter`)
        clock: Seconds source for timer and cooldown checks
        line_separator: Appended after every formatted entry
        background: Run storage and delivery on worker threads
    """

    def __init__(
        self,
        settings: Optional[MailSinkSettings] = None,
        *,
        smtp: Optional[SmtpSettings] = None,
        transport: Optional[MailTransport] = None,
        backend: Optional[StorageBackend] = None,
        threshold: Optional[ThresholdPolicy] = None,
        formatter: Optional[LogFormatter] = None,
        clock: Callable[[], float] = time.monotonic,
        line_separator: str = "\n",
        background: bool = True,
    ):
        self._settings = settings or MailSinkSettings()
        self._smtp = smtp or SmtpSettings()
        self._explicit_transport = transport
        self._explicit_backend = backend
        self._transport: Optional[MailTransport] = None
        self._backend: Optional[StorageBackend] = None
        self._threshold = threshold or threshold_from_settings(self._settings)
        self._cooldown = self._settings.retry_cooldown_seconds
        self._formatter = formatter or DefaultFormatter()
        self._clock = clock
        self._line_separator = line_separator

        self._state = BufferState(last_attempt_at=clock())
        self._state_lock = threading.Lock()
        # Single-flight guard: acquire(blocking=False) is the atomic check-and-set.
        self._sending = threading.Lock()

        self._buffer_worker = SerialWorker("mail-buffer", background=background)
        self._sender_worker = SerialWorker("mail-sender", background=background)

    @property
    def threshold(self) -> ThresholdPolicy:
        return self._threshold

    @property
    def backend(self) -> Optional[StorageBackend]:
        return self._backend

    @property
    def blob_name(self) -> str:
        return self._settings.blob_name

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None and self._transport is not None

    @property
    def state(self) -> MailSinkState:
        if self._sending.locked():
            return MailSinkState.SENDING
        with self._state_lock:
            in_cooldown = not cooldown_elapsed(self._state, self._clock(), self._cooldown)
        return MailSinkState.COOLDOWN if in_cooldown else MailSinkState.IDLE

    def snapshot(self) -> BufferState:
        """Copy of the current bookkeeping."""
        with self._state_lock:
            return dataclasses.replace(self._state)

    # =========================================================================
    # Sink interface
    # =========================================================================

    def initialize(self, context: PlatformContext) -> None:
        transport = self._explicit_transport
        if transport is None:
            if not self._smtp.is_complete:
                raise InitializationFailure(sink=self.name, reason="SMTP sender and recipient must be configured")
            transport = SmtpMailTransport(self._smtp)

        backend = self._explicit_backend or PathStorageBackend(context.data_dir)
        try:
            backend.prepare()
        except WriteFailure as exc:
            raise InitializationFailure(sink=self.name, reason=str(exc)) from exc

        self._transport = transport
        self._backend = backend
        self._buffer_worker.start()
        self._sender_worker.start()
        logger.info(
            "mail_sink_initialized",
            buffer=backend.describe(self.blob_name),
            threshold=repr(self._threshold),
        )

    def handle(self, entry: LogEntry) -> None:
        if not self.is_initialized:
            logger.error("mail_sink_not_initialized", tag=entry.tag)
            return

        data = (self._formatter.format(entry) + self._line_separator).encode("utf-8")
        self._buffer_worker.submit(self._record, data)

    def flush(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout

        def remaining() -> Optional[float]:
            return None if deadline is None else max(0.0, deadline - time.monotonic())

        # Deliveries schedule buffer work and vice versa; settle until both are quiet.
        while True:
            if not self._buffer_worker.wait_idle(remaining()):
                return False
            if not self._sender_worker.wait_idle(remaining()):
                return False
            if self._buffer_worker.pending == 0 and self._sender_worker.pending == 0:
                return True

    def close(self, *, drain: bool = False, timeout: Optional[float] = None) -> None:
        if drain:
            self.flush(timeout)
        # Deliveries only touch the transport; the buffer worker owns the backend.
        backend = self._backend
        self._buffer_worker.stop(wait=drain, timeout=timeout, finalizer=backend.close if backend is not None else None)
        self._sender_worker.stop(wait=drain, timeout=timeout)

    # =========================================================================
    # Buffer worker
    # =========================================================================

    def _record(self, data: bytes) -> None:
        assert self._backend is not None
        try:
            self._backend.append(self.blob_name, data)
        except WriteFailure as exc:
            logger.error("mail_buffer_write_failed", code=exc.code, **exc.details)
            return

        now = self._clock()
        with self._state_lock:
            self._state.pending_count += 1
            triggered = self._threshold.should_flush(self._state, now, self._cooldown)
        if triggered:
            self._begin_flush()

    def _begin_flush(self) -> None:
        assert self._backend is not None
        if not self._sending.acquire(blocking=False):
            logger.debug("mail_flush_skipped", reason="send in progress")
            return

        try:
            payload = self._backend.read(self.blob_name)
        except WriteFailure as exc:
            self._sending.release()
            logger.error("mail_buffer_read_failed", code=exc.code, **exc.details)
            return

        if not payload:
            self._sending.release()
            logger.warning("mail_flush_skipped", reason="log buffer empty")
            return

        with self._state_lock:
            batch_count = self._state.pending_count
        if not self._sender_worker.submit(self._deliver, payload, batch_count):
            self._sending.release()

    def _finish_delivery(self, sent_bytes: int, sent_count: int, delivered_at: float) -> None:
        try:
            self._discard_sent(sent_bytes)
        except WriteFailure as exc:
            logger.error("mail_buffer_clear_failed", code=exc.code, **exc.details)
        finally:
            with self._state_lock:
                self._threshold.on_delivered(self._state, delivered_at, sent_count)
                self._state.delivered_batches += 1
            self._sending.release()
        logger.info("mail_digest_sent", entries=sent_count, bytes=sent_bytes)

    def _discard_sent(self, sent_bytes: int) -> None:
        assert self._backend is not None
        blob = self.blob_name
        if self._backend.size(blob) <= sent_bytes:
            self._backend.clear(blob)
            return
        remainder = self._backend.read(blob)[sent_bytes:]
        self._backend.clear(blob)
        self._backend.append(blob, remainder)

    # =========================================================================
    # Sender worker
    # =========================================================================

    def _compose(self, payload: bytes) -> MailMessage:
        return MailMessage(
            sender=self._smtp.sender_address,
            recipient=self._smtp.recipient_address,
            subject=self._smtp.subject,
            body_text=self._smtp.body_text,
            attachment=payload,
            attachment_name=self._settings.attachment_name,
        )

    def _deliver(self, payload: bytes, batch_count: int) -> None:
        assert self._transport is not None
        try:
            result = self._transport.send(self._compose(payload))
        except Exception as exc:
            result = SendResult.failure(f"{type(exc).__name__}: {exc}")

        now = self._clock()
        if result.ok:
            if not self._buffer_worker.submit(self._finish_delivery, len(payload), batch_count, now):
                self._sending.release()
            return

        with self._state_lock:
            self._state.last_failure_at = now
            self._state.failed_attempts += 1
        self._sending.release()

        failure = DeliveryFailure(reason=result.reason or "unknown", recipient=self._smtp.recipient_address or None)
        logger.error("mail_delivery_failed", code=failure.code, buffered_bytes=len(payload), **failure.details)
