"""
File sink: append every formatted entry to durable shared storage.
"""

from __future__ import annotations

import threading
from typing import Optional

from logdispatch.config import FileSinkSettings
from logdispatch.context import PlatformContext
from logdispatch.diagnostics import get_logger
from logdispatch.exceptions import InitializationFailure, WriteFailure
from logdispatch.formatters import DefaultFormatter, LogFormatter
from logdispatch.models import LogEntry
from logdispatch.storage import StorageBackend, select_backend

from .base import Sink
from .worker import SerialWorker

logger = get_logger("logdispatch.sinks.file")


class FileSink(Sink):
    """Appends formatted entries to a log file, optionally reset once per session.

    The storage strategy (direct path or indexed catalog) is chosen once in
    :meth:`initialize` from the platform context; afterwards the sink only talks
    to the :class:`StorageBackend` interface.

    With ``clear_file_when_app_launched`` the existing file is deleted before the
    first write of this sink's lifetime. The check-and-set of the cleared flag is
    guarded by its own lock, so exactly one writer performs the reset even when
    many entries race at startup; appends are serialized by a separate lock.

    Args:
        settings: File location and session behaviour
        formatter: Entry renderer (default: :class:`DefaultFormatter`)
        backend: Explicit storage backend, bypassing platform selection
        line_separator: Appended after every formatted entry
        background: Run storage I/O on a dedicated worker thread
    """

    def __init__(
        self,
        settings: Optional[FileSinkSettings] = None,
        *,
        formatter: Optional[LogFormatter] = None,
        backend: Optional[StorageBackend] = None,
        line_separator: str = "\n",
        background: bool = True,
    ):
        self._settings = settings or FileSinkSettings()
        self._formatter = formatter or DefaultFormatter()
        self._explicit_backend = backend
        self._backend: Optional[StorageBackend] = None
        self._line_separator = line_separator
        self._worker = SerialWorker("file-sink", background=background)

        self._clear_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._cleared_this_session = False

    @property
    def settings(self) -> FileSinkSettings:
        return self._settings

    @property
    def formatter(self) -> LogFormatter:
        return self._formatter

    @property
    def backend(self) -> Optional[StorageBackend]:
        return self._backend

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None

    @property
    def cleared_this_session(self) -> bool:
        with self._clear_lock:
            return self._cleared_this_session

    # =========================================================================
    # Sink interface
    # =========================================================================

    def initialize(self, context: PlatformContext) -> None:
        backend = self._explicit_backend
        if backend is None:
            if not context.public_storage_writable:
                raise InitializationFailure(sink=self.name, reason="shared storage is not writable")
            backend = select_backend(context, self._settings.relative_directory)

        try:
            backend.prepare()
        except WriteFailure as exc:
            raise InitializationFailure(sink=self.name, reason=str(exc)) from exc

        self._backend = backend
        self._worker.start()
        logger.info(
            "file_sink_initialized",
            location=backend.describe(self._settings.file_name),
            clear_on_launch=self._settings.clear_file_when_app_launched,
        )

    def handle(self, entry: LogEntry) -> None:
        backend = self._backend
        if backend is None:
            logger.error("file_sink_not_initialized", tag=entry.tag)
            return

        data = (self._formatter.format(entry) + self._line_separator).encode("utf-8")
        self._worker.submit(self._write, backend, data)

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self._worker.wait_idle(timeout)

    def close(self, *, drain: bool = False, timeout: Optional[float] = None) -> None:
        backend = self._backend
        self._worker.stop(wait=drain, timeout=timeout, finalizer=backend.close if backend is not None else None)

    # =========================================================================
    # Storage I/O (worker thread)
    # =========================================================================

    def _write(self, backend: StorageBackend, data: bytes) -> None:
        file_name = self._settings.file_name
        if self._settings.clear_file_when_app_launched:
            self._clear_once(backend)

        try:
            with self._write_lock:
                backend.append(file_name, data)
        except WriteFailure as exc:
            logger.error("file_sink_write_failed", code=exc.code, **exc.details)

    def _clear_once(self, backend: StorageBackend) -> None:
        with self._clear_lock:
            if self._cleared_this_session:
                return
            file_name = self._settings.file_name
            try:
                deleted = backend.delete(file_name)
                logger.debug("file_sink_cleared", location=backend.describe(file_name), deleted=deleted)
            except WriteFailure as exc:
                logger.error("file_sink_clear_failed", code=exc.code, **exc.details)
            self._cleared_this_session = True
