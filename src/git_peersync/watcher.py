import logging
import threading
from collections.abc import Callable
from pathlib import Path

from watchfiles import Change, watch

from .constants import APP_NAME
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def _ignore_lock_files(_change: Change, path: str) -> bool:
    return not path.endswith(".lock")


class RefWatcher:
    """Calls `on_change` whenever the branch refs of a repository change.

    The callback receives no arguments and may fire more than once for a single
    logical update; it must be idempotent.
    """

    def __init__(
        self,
        repo: GitRepo,
        on_change: Callable[[], None],
        debounce_ms: int = 1600,
    ):
        self.repo = repo
        self.on_change = on_change
        self.debounce_ms = debounce_ms
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def refs_dir(self) -> Path:
        return self.repo.git_dir / "refs" / "heads"

    def start(self) -> None:
        """Starts watching in a background thread. Subsequent calls are no-ops."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            daemon=True,
            name=f"watch-{self.repo.path.name}",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signals the watch loop to exit and waits for it."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _watch_loop(self) -> None:
        try:
            for _changes in watch(
                self.refs_dir,
                watch_filter=_ignore_lock_files,
                debounce=self.debounce_ms,
                stop_event=self._stop_event,
            ):
                try:
                    self.on_change()
                except Exception as e:
                    logger.error(f"WATCH ERROR {self.repo.path}: {e}", exc_info=True)
        except FileNotFoundError:
            logger.error(f"WATCH ERROR {self.repo.path}: {self.refs_dir} is missing.")
