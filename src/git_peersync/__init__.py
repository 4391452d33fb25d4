"""git-peersync: Keep one git repository's branches pushed to every host holding it.

This package provides the command-line interface, background daemon, and the
synchronization engine that pushes changed branches to each peer over a
serialized per-peer queue, preserving divergent history on conflict.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    engine,
    git_wrapper,
    ops,
    registry,
    source,
    watcher,
    worker,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "engine",
    "git_wrapper",
    "ops",
    "registry",
    "source",
    "watcher",
    "worker",
]
