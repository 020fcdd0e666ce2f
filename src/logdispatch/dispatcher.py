"""
Dispatcher: the registry that fans every entry out to the active sinks.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from .context import PlatformContext
from .diagnostics import get_logger
from .exceptions import ConfigurationMisuse
from .models import LogEntry, Severity
from .sinks.base import Sink

logger = get_logger("logdispatch.dispatcher")


class LogDispatcher:
    """Owns the configure/log/shutdown lifecycle of a set of sinks.

    Callers hold a reference to a dispatcher instead of relying on process-wide
    state; create one per application (or per test).

    Lifecycle: unconfigured -> ``configure`` -> configured -> ``shutdown`` ->
    unconfigured. ``log`` while unconfigured drops the entry with a diagnostic.

    Args:
        min_severity: Entries below this severity are dropped before fan-out
        strict: Raise :class:`ConfigurationMisuse` instead of only logging it
        clock: Timestamp source for new entries
    """

    def __init__(
        self,
        *,
        min_severity: Severity = Severity.VERBOSE,
        strict: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._min_severity = min_severity
        self._strict = strict
        self._clock = clock
        self._lock = threading.RLock()
        self._sinks: tuple[Sink, ...] = ()
        self._configured = False

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def sinks(self) -> tuple[Sink, ...]:
        """Active sinks in registration order."""
        return self._sinks

    def _misuse(self, operation: str, reason: str) -> None:
        if self._strict:
            raise ConfigurationMisuse(operation=operation, reason=reason)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def configure(self, context: PlatformContext, *sinks: Sink) -> None:
        """Initialize ``sinks`` and make the survivors active.

        A sink whose ``initialize`` raises is logged and left out; the others
        are still activated. Calling this again while configured is a no-op.
        """
        with self._lock:
            if self._configured:
                logger.warning("dispatcher_already_configured", active_sinks=len(self._sinks))
                self._misuse("configure", "dispatcher is already configured; call shutdown() first")
                return

            active: list[Sink] = []
            for sink in sinks:
                try:
                    sink.initialize(context)
                except Exception as exc:
                    logger.error(
                        "sink_initialization_failed",
                        sink=type(sink).__name__,
                        code=getattr(exc, "code", "SINK_INIT_FAILED"),
                        error=str(exc),
                        exc_info=True,
                    )
                    continue
                active.append(sink)

            self._sinks = tuple(active)
            self._configured = True

        logger.info("dispatcher_configured", active_sinks=len(active), requested_sinks=len(sinks))

    def shutdown(self, *, drain: bool = False, timeout: Optional[float] = 5.0) -> None:
        """Deactivate every sink and return to the unconfigured state.

        Args:
            drain: Wait (up to ``timeout`` per sink) for queued writes and
                deliveries to finish. Without it, background work continues
                on its own and is not awaited.
            timeout: Upper bound per sink when draining
        """
        with self._lock:
            sinks, self._sinks = self._sinks, ()
            self._configured = False

        for sink in sinks:
            try:
                sink.close(drain=drain, timeout=timeout)
            except Exception:
                logger.exception("sink_close_failed", sink=type(sink).__name__)

        logger.info("dispatcher_shutdown", closed_sinks=len(sinks), drained=drain)

    # =========================================================================
    # Logging
    # =========================================================================

    def log(
        self,
        severity: Severity,
        tag: str,
        message: str,
        error: Optional[BaseException] = None,
    ) -> None:
        """Deliver one entry to every active sink, in registration order.

        Never raises to the caller (unless the dispatcher is strict and unconfigured).
        """
        with self._lock:
            configured, sinks = self._configured, self._sinks
        if not configured:
            logger.error("dispatcher_not_configured", tag=tag, severity=severity.name)
            self._misuse("log", "dispatcher is not configured; call configure() first")
            return

        if severity < self._min_severity:
            return

        entry = LogEntry.create(severity, tag, message, error, clock=self._clock)
        for sink in sinks:
            try:
                sink.handle(entry)
            except Exception:
                logger.exception("sink_handle_failed", sink=type(sink).__name__, tag=tag)

    def verbose(self, tag: str, message: str, error: Optional[BaseException] = None) -> None:
        self.log(Severity.VERBOSE, tag, message, error)

    def debug(self, tag: str, message: str, error: Optional[BaseException] = None) -> None:
        self.log(Severity.DEBUG, tag, message, error)

    def info(self, tag: str, message: str, error: Optional[BaseException] = None) -> None:
        self.log(Severity.INFO, tag, message, error)

    def warn(self, tag: str, message: str, error: Optional[BaseException] = None) -> None:
        self.log(Severity.WARN, tag, message, error)

    def error(self, tag: str, message: str, error: Optional[BaseException] = None) -> None:
        self.log(Severity.ERROR, tag, message, error)

    def bind(self, tag: str) -> "TaggedLogger":
        """Convenience façade that fills in ``tag`` for every call."""
        return TaggedLogger(tag, self)


class TaggedLogger:
    """Convenience façade bound to a specific tag."""

    def __init__(self, tag: str, dispatcher: LogDispatcher):
        self._tag = tag
        self._dispatcher = dispatcher

    @property
    def tag(self) -> str:
        return self._tag

    def verbose(self, message: str, error: Optional[BaseException] = None) -> None:
        self._dispatcher.log(Severity.VERBOSE, self._tag, message, error)

    def debug(self, message: str, error: Optional[BaseException] = None) -> None:
        self._dispatcher.log(Severity.DEBUG, self._tag, message, error)

    def info(self, message: str, error: Optional[BaseException] = None) -> None:
        self._dispatcher.log(Severity.INFO, self._tag, message, error)

    def warn(self, message: str, error: Optional[BaseException] = None) -> None:
        self._dispatcher.log(Severity.WARN, self._tag, message, error)

    def error(self, message: str, error: Optional[BaseException] = None) -> None:
        self._dispatcher.log(Severity.ERROR, self._tag, message, error)
