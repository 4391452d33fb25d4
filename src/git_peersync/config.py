import logging
import re
import socket
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_CONFLICT_TEMPLATE,
    DEFAULT_REMOTE_TEMPLATE,
)

logger = logging.getLogger(APP_NAME)


class ConfigError(ValueError):
    """Raised when the configuration cannot satisfy a request (e.g. unknown source)."""


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        host (str): Identifier of this machine, as used in the sources tables.
        remote_template (str): Format string building a peer's git remote from
                               `host` and `path`.
        conflict_template (str): Format string naming a displaced divergent
                                 branch from `branch` and `host`.
    """

    host: str = field(default_factory=socket.gethostname)
    remote_template: str = DEFAULT_REMOTE_TEMPLATE
    conflict_template: str = DEFAULT_CONFLICT_TEMPLATE


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        git_timeout (int): Seconds before a git subprocess is abandoned.
    """

    max_log_size: int = 5 * 1024 * 1024
    git_timeout: int = 120


@dataclass
class DaemonConfig:
    """Daemon operational settings.

    Attributes:
        recheck_interval (int): Seconds between forced re-checks of every source
                                (0 disables; watchers still trigger pushes).
    """

    recheck_interval: int = 900


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        limits (LimitsConfig): Resource limits.
        daemon (DaemonConfig): Daemon behavior settings.
        sources (dict[str, dict[str, str]]): Source name -> {host: path}.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Args:
            path (Path | None): The TOML file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The populated configuration object.
        """
        instance = cls()
        path = path or CONFIG_FILE
        if path.exists():
            instance._merge_from_file(path)
        return instance

    def host_paths(self, source_name: str) -> dict[str, str]:
        """Returns the host map of a configured source.

        Raises:
            ConfigError: If no source of that name is configured.
        """
        try:
            return dict(self.sources[source_name])
        except KeyError:
            raise ConfigError(f"Unknown source '{source_name}'") from None

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "daemon" in data:
                self.daemon = self._update_dataclass(
                    "daemon", self.daemon, data["daemon"]
                )
            if "sources" in data:
                self.sources.update(self._parse_sources(data["sources"]))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _parse_sources(raw: dict) -> dict[str, dict[str, str]]:
        """Validates the [sources.<name>] tables, dropping malformed entries."""
        sources = {}
        for name, hosts in raw.items():
            if not isinstance(hosts, dict):
                logger.warning(f"Config error in [sources].{name}: expected a table.")
                continue
            paths = {}
            for host, host_path in hosts.items():
                if not isinstance(host_path, str) or not host_path:
                    logger.warning(
                        f"Config error in [sources.{name}].{host}: "
                        "path must be a non-empty string. Ignoring."
                    )
                    continue
                paths[host] = host_path
            sources[name] = paths
        return sources

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["git_timeout", "recheck_interval"]:
                    filtered_updates[k] = parse_time(v)
                elif isinstance(getattr(instance, k), str) and not isinstance(v, str):
                    raise ValueError(f"expected a string, got {v!r}")
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
