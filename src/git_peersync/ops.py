"""Operations behind the one-shot CLI commands.

These run in the foreground against the same engine the daemon uses, but wait
for the peer queues to drain before returning so results can be reported.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .config import Config, ConfigError
from .constants import APP_NAME
from .engine import ConflictResolver, PushTask, SyncEngine
from .git_wrapper import GitRepo
from .registry import SourceRegistry
from .source import Source

logger = logging.getLogger(APP_NAME)


@dataclass
class SyncReport:
    """The state of one pushed branch after a one-shot sync.

    Attributes:
        task (PushTask): The push that was queued.
        pushed (bool): True if the peer confirmed the push.
    """

    task: PushTask
    pushed: bool


@dataclass
class ConflictBranch:
    """A local branch holding history displaced by another host's push.

    Attributes:
        name (str): The branch name (e.g. 'main_peersync_desktop').
        branch (str): The branch it was displaced from (e.g. 'main').
        host (str): The host whose push displaced it.
        sha (str): The commit it points to.
    """

    name: str
    branch: str
    host: str
    sha: str


def sync_once(config: Config, names: list[str] | None = None) -> list[SyncReport]:
    """Pushes every out-of-date branch of the given sources and waits for the result.

    Args:
        config (Config): The loaded configuration.
        names (list[str] | None, optional): Sources to sync. Defaults to all
                                            sources configured for this host.

    Returns:
        list[SyncReport]: One entry per push that was queued.

    Raises:
        ConfigError: If a named source is not configured for this host.
    """
    registry = SourceRegistry.from_config(config)
    engine = SyncEngine.from_config(config)
    try:
        sources = [registry.get(n) for n in names] if names else list(registry)
        submitted: list[tuple[Source, PushTask]] = []
        for source in sources:
            submitted.extend((source, t) for t in engine.notify_changed(source))
        for source in sources:
            source.drain()

        reports = []
        for source, task in submitted:
            with source.lock:
                cached = source.branch_hashes.get((task.peer_host, task.branch))
            reports.append(SyncReport(task, cached == task.hash))
        return reports
    finally:
        registry.shutdown()


def local_repo(config: Config, name: str) -> GitRepo:
    """Returns access to this host's copy of a source.

    Raises:
        ConfigError: If the source is unknown or does not list this host.
    """
    path = config.host_paths(name).get(config.core.host)
    if path is None:
        raise ConfigError(
            f"Source '{name}' is not configured for host '{config.core.host}'"
        )
    return GitRepo(Path(path), config.limits.git_timeout)


def list_conflicts(repo: GitRepo, resolver: ConflictResolver) -> list[ConflictBranch]:
    """Lists local branches created by conflict resolution on this host."""
    try:
        branches = repo.snapshot_local_branches()
    except Exception as e:
        logger.warning(f"Could not list branches in {repo.path}: {e}")
        return []

    conflicts = []
    for name, sha in sorted(branches.items()):
        parsed = resolver.parse_alternate(name)
        if parsed:
            conflicts.append(ConflictBranch(name, parsed[0], parsed[1], sha))
    return conflicts


def drop_conflict(repo: GitRepo, resolver: ConflictResolver, name: str) -> bool:
    """Force-deletes a conflict branch once its history is no longer wanted.

    Returns:
        bool: True if the branch is gone afterwards.
    """
    if resolver.parse_alternate(name) is None:
        logger.error(f"Refusing to delete {name}: not a conflict branch.")
        return False
    repo.delete_branch(name, force=True)
    return name not in repo.snapshot_local_branches()


def adopt_conflict(repo: GitRepo, resolver: ConflictResolver, name: str) -> bool:
    """Makes a conflict branch's history the current state of its original branch.

    The conflict branch replaces the original branch and is removed. When the
    original branch is checked out the working area must be clean, and the
    switch is done with a hard reset.

    Returns:
        bool: True on success.
    """
    parsed = resolver.parse_alternate(name)
    if parsed is None:
        logger.error(f"Refusing to adopt {name}: not a conflict branch.")
        return False
    original = parsed[0]

    if repo.checked_out_branch() == original:
        if not repo.working_area_clean():
            logger.error(f"Refusing to adopt {name}: working area is not clean.")
            return False
        if repo.hard_reset(name) != 0:
            logger.error(f"Hard reset of {original} to {name} failed.")
            return False
        repo.delete_branch(name, force=True)
    elif repo.rename_branch(name, original, allow_overwrite=True) != 0:
        logger.error(f"Renaming {name} to {original} failed.")
        return False

    logger.info(f"ADOPTED {repo.path.name}: {original} now points at {name}'s history.")
    return True
