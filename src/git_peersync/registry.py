import logging
from collections.abc import Callable, Iterator
from pathlib import Path

from .config import Config, ConfigError
from .constants import APP_NAME
from .git_wrapper import GitRepo
from .source import Source

logger = logging.getLogger(APP_NAME)

RepoFactory = Callable[[Path, float], GitRepo]


class SourceRegistry:
    """The set of sources this host takes part in, looked up by name.

    Built once from configuration and handed to every entry point (daemon,
    watchers, CLI) that needs it.
    """

    def __init__(self, local_host: str, repo_factory: RepoFactory = GitRepo):
        self.local_host = local_host
        self.repo_factory = repo_factory
        self._sources: dict[str, Source] = {}

    @classmethod
    def from_config(
        cls, config: Config, repo_factory: RepoFactory = GitRepo
    ) -> "SourceRegistry":
        """Creates a source for each configured source that lists this host."""
        registry = cls(config.core.host, repo_factory)
        registry.apply(config)
        return registry

    def __iter__(self) -> Iterator[Source]:
        return iter(list(self._sources.values()))

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def names(self) -> list[str]:
        return list(self._sources)

    def get(self, name: str) -> Source:
        """Returns the named source.

        Raises:
            ConfigError: If the source is not configured for this host.
        """
        try:
            return self._sources[name]
        except KeyError:
            raise ConfigError(
                f"Source '{name}' is not configured for host '{self.local_host}'"
            ) from None

    def apply(self, config: Config) -> None:
        """Brings the registry in line with `config`.

        New sources are created, vanished ones shut down, and within existing
        sources peers are added, re-pathed or removed.
        """
        timeout = config.limits.git_timeout
        wanted = {}
        for name, host_paths in config.sources.items():
            if self.local_host not in host_paths:
                logger.debug(f"SKIPPED {name}: not configured for {self.local_host}.")
                continue
            wanted[name] = host_paths

        for name in [n for n in self._sources if n not in wanted]:
            logger.info(f"SOURCE REMOVED {name}")
            self._sources.pop(name).shutdown()

        for name, host_paths in wanted.items():
            source = self._sources.get(name)
            if source is not None and source.local_path != Path(
                host_paths[self.local_host]
            ):
                logger.info(f"SOURCE MOVED {name}: rebuilding.")
                self._sources.pop(name).shutdown()
                source = None

            if source is None:
                repo = self.repo_factory(Path(host_paths[self.local_host]), timeout)
                self._sources[name] = Source.create(
                    name, self.local_host, host_paths, repo
                )
                logger.info(f"SOURCE ADDED {name}: {len(host_paths) - 1} peer(s)")
                continue

            for host in [h for h in source.peer_hosts() if h not in host_paths]:
                source.remove_peer(host)
            for host, path in host_paths.items():
                source.add_peer(host, path)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stops every source's workers after their queues drain."""
        for source in self:
            source.shutdown(timeout)
