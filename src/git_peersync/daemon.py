import atexit
import functools
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from types import FrameType

from rich.console import Console

from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .engine import PushTask, SyncEngine
from .registry import SourceRegistry
from .source import Source
from .watcher import RefWatcher

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

console = Console()


def setup_logging(interactive: bool, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating file.
        max_log_size (int, optional): Bytes before the log file rotates.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Background runs log to stderr for the supervisor; interactive runs to stdout.
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def write_pid_file() -> None:
    """Records this process in PID_FILE and removes it again at exit."""
    try:
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


class Daemon:
    """Keeps every registered source pushed to its peers until stopped.

    Pushes are triggered by ref changes (one RefWatcher per source) and by a
    periodic re-check of every source.
    """

    def __init__(self, config: Config, registry: SourceRegistry | None = None):
        self.config = config
        self.registry = registry or SourceRegistry.from_config(config)
        self.engine = SyncEngine.from_config(config)
        self._watchers: dict[str, tuple[Source, RefWatcher]] = {}
        self._stop_event = threading.Event()
        self._reload_requested = threading.Event()

    def sweep(self) -> list[PushTask]:
        """Notifies the engine about every source, pushing anything out of date."""
        submitted = []
        for source in self.registry:
            submitted.extend(self.engine.notify_changed(source))
        return submitted

    def _on_change(self, source: Source) -> None:
        self.engine.notify_changed(source)

    def _sync_watchers(self) -> None:
        for name, (source, watcher) in list(self._watchers.items()):
            if name not in self.registry or self.registry.get(name) is not source:
                watcher.stop()
                del self._watchers[name]

        for source in self.registry:
            if source.name in self._watchers:
                continue
            if not source.repo.exists():
                logger.error(
                    f"SKIPPED {source.name}: no repository at {source.repo.path}."
                )
                continue
            watcher = RefWatcher(
                source.repo, functools.partial(self._on_change, source)
            )
            watcher.start()
            self._watchers[source.name] = (source, watcher)
            logger.info(f"WATCHING {source.name}: {source.repo.git_dir}")

    def start(self) -> None:
        """Starts watchers and queues an initial push round for every source."""
        self._sync_watchers()
        self.sweep()

    def reload(self) -> None:
        """Re-reads the configuration and applies peer and source changes."""
        logger.info("RELOAD: re-reading configuration.")
        self.config = Config.load()
        self.engine = SyncEngine.from_config(self.config)
        self.registry.apply(self.config)
        self._sync_watchers()
        self.sweep()

    def request_reload(self) -> None:
        self._reload_requested.set()
        self._stop_event.set()

    def request_stop(self) -> None:
        self._stop_event.set()

    def run_forever(self) -> None:
        """Blocks, re-checking periodically, until `request_stop` is called."""
        interval = self.config.daemon.recheck_interval or None
        while True:
            if self._stop_event.wait(timeout=interval):
                if not self._reload_requested.is_set():
                    return
                self._reload_requested.clear()
                self._stop_event.clear()
                self.reload()
                interval = self.config.daemon.recheck_interval or None
                continue
            self.sweep()

    def shutdown(self) -> None:
        """Stops watchers, then lets every worker finish its queue."""
        for _source, watcher in self._watchers.values():
            watcher.stop()
        self._watchers.clear()
        self.registry.shutdown(timeout=self.config.limits.git_timeout)


def main(interactive: bool = False) -> None:
    """The main daemon entry point.

    Args:
        interactive (bool, optional): Log to stdout instead of the log file.
                                      Defaults to False.
    """
    config = Config.load()
    setup_logging(interactive, config.limits.max_log_size)

    if not config.sources:
        if interactive:
            console.print(
                "[yellow]No sources configured. Run 'git-peersync config' "
                "to add one.[/yellow]"
            )
        logger.warning("No sources configured; nothing to do.")
        return

    if not interactive:
        write_pid_file()

    daemon = Daemon(config)

    def stop_handler(_signum: int, _frame: FrameType | None) -> None:
        daemon.request_stop()

    def reload_handler(_signum: int, _frame: FrameType | None) -> None:
        daemon.request_reload()

    signal.signal(signal.SIGTERM, stop_handler)
    signal.signal(signal.SIGINT, stop_handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, reload_handler)

    logger.info(
        f"START {config.core.host}: {len(daemon.registry)} source(s) "
        f"({', '.join(daemon.registry.names()) or 'none'})."
    )
    try:
        daemon.start()
        daemon.run_forever()
    finally:
        daemon.shutdown()
        logger.info("STOP: all peer queues drained.")


if __name__ == "__main__":
    main()
