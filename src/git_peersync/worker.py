"""Serialized per-peer execution.

Each peer of a source gets one `PeerWorker`: a FIFO queue drained by a single
thread, so at most one git operation runs against that peer at a time while
workers for other peers proceed in parallel.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, TypeVar

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")

_STOP = object()


class WorkerStoppedError(RuntimeError):
    """Raised when a task is submitted to a worker that has been stopped."""


class PeerWorker:
    """A single-threaded task queue bound to one (source, peer) pair.

    Tasks run strictly one at a time in submission order. An exception raised
    by a task is logged and stored on its future; the worker keeps going.

    Attributes:
        name (str): Label used for the thread and in log lines, e.g. 'dotfiles@desktop'.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._stopped = threading.Event()
        self._submit_lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._loop, name=f"peer-{name}", daemon=True
        )
        self._thread.start()

    def __repr__(self) -> str:
        return f"PeerWorker({self.name!r})"

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """Queues a callable behind every previously submitted task.

        Returns:
            Future: Resolved with the callable's result or exception.

        Raises:
            WorkerStoppedError: If `stop` has already been called.
        """
        future: Future[T] = Future()
        with self._submit_lock:
            if self._stopped.is_set():
                raise WorkerStoppedError(f"Worker {self.name} is stopped")
            self._queue.put((future, fn, args, kwargs))
        return future

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                future, fn, args, kwargs = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    result = fn(*args, **kwargs)
                except Exception as e:
                    logger.exception(f"TASK ERROR {self.name}: {e}")
                    future.set_exception(e)
                else:
                    future.set_result(result)
            finally:
                self._queue.task_done()

    def drain(self) -> None:
        """Blocks until every task submitted so far has finished."""
        self._queue.join()

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Refuses new tasks, lets queued ones finish, then ends the thread.

        Args:
            wait (bool, optional): Join the thread before returning.
            timeout (float | None, optional): Join timeout in seconds.
        """
        with self._submit_lock:
            if not self._stopped.is_set():
                self._stopped.set()
                self._queue.put(_STOP)
        if wait and self._thread is not threading.current_thread():
            self._thread.join(timeout)
