"""
Per-sink background execution.

Each stateful sink owns one :class:`SerialWorker` per I/O concern. A worker is
a daemon thread draining a bounded queue, so jobs run one at a time and in
submission order; the caller only pays for a ``put_nowait``.
"""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable, Optional, Union

from logdispatch.diagnostics import get_logger

logger = get_logger("logdispatch.sinks.worker")

_Job = tuple[Callable[..., Any], tuple[Any, ...]]


class _Stop:
    """Queue sentinel. ``finalizer`` runs on the worker after every earlier job."""

    __slots__ = ("finalizer",)

    def __init__(self, finalizer: Optional[Callable[[], Any]] = None) -> None:
        self.finalizer = finalizer


_Item = Union[_Job, _Stop]


class SerialWorker:
    """Runs submitted jobs sequentially on a dedicated thread.

    Jobs are accepted only between :meth:`start` and :meth:`stop`; anything
    submitted outside that window is dropped with a diagnostic.

    With ``background=False`` jobs run immediately on the submitting thread;
    sinks then rely on their own locks for serialization.
    """

    def __init__(self, name: str, *, background: bool = True, maxsize: int = 1000) -> None:
        self._name = name
        self._background = background
        self._maxsize = maxsize

        self._queue: queue.Queue[_Item] | None = None
        self._thread: threading.Thread | None = None
        self._retired: threading.Thread | None = None
        self._closed = True

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def background(self) -> bool:
        return self._background

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Accept jobs again, starting the worker thread if needed."""
        with self._lock:
            self._closed = False
            if not self._background:
                return
            if self._thread is not None and self._thread.is_alive():
                return
            retired, self._retired = self._retired, None

        # A stopping predecessor must finish its queue first so jobs never overlap.
        if retired is not None and retired.is_alive():
            retired.join()

        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            work_queue: queue.Queue[_Item] = queue.Queue(maxsize=self._maxsize)
            thread = threading.Thread(
                target=self._run,
                args=(work_queue,),
                name=f"logdispatch-{self._name}",
                daemon=True,
            )
            self._queue = work_queue
            self._thread = thread
            thread.start()

    def stop(
        self,
        *,
        wait: bool = False,
        timeout: Optional[float] = None,
        finalizer: Optional[Callable[[], Any]] = None,
    ) -> bool:
        """Stop accepting jobs; already queued jobs still run, then ``finalizer``.

        Without a worker thread the finalizer runs on the calling thread.

        Returns:
            True if the thread finished (or there was none), False if ``wait``
            timed out or was not requested while jobs remain.
        """
        with self._lock:
            work_queue, thread = self._queue, self._thread
            self._queue = None
            self._thread = None
            self._retired = thread
            self._closed = True
        if work_queue is None or thread is None:
            if finalizer is not None:
                self._execute(finalizer, ())
            return True

        work_queue.put(_Stop(finalizer))
        if wait:
            thread.join(timeout)
        return not thread.is_alive()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(self, fn: Callable[..., Any], *args: Any) -> bool:
        """Schedule ``fn(*args)``. Never blocks; returns False if the job was dropped."""
        with self._lock:
            if self._closed:
                logger.warning("worker_job_dropped", worker=self._name, reason="stopped")
                return False
            if self._background:
                work_queue = self._queue
                if work_queue is None:
                    logger.warning("worker_job_dropped", worker=self._name, reason="stopped")
                    return False
                try:
                    work_queue.put_nowait((fn, args))
                except queue.Full:
                    logger.warning("worker_job_dropped", worker=self._name, reason="queue full", maxsize=self._maxsize)
                    return False
                self._pending += 1
                return True

        self._execute(fn, args)
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted job has finished."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    # =========================================================================
    # Worker Loop
    # =========================================================================

    def _run(self, work_queue: "queue.Queue[_Item]") -> None:
        while True:
            item = work_queue.get()
            try:
                if isinstance(item, _Stop):
                    if item.finalizer is not None:
                        self._execute(item.finalizer, ())
                    break
                fn, args = item
                self._execute(fn, args)
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()
            finally:
                work_queue.task_done()

    def _execute(self, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("worker_job_failed", worker=self._name, job=getattr(fn, "__qualname__", repr(fn)))
