import os
from pathlib import Path

"""Global constants and configuration path definitions for git-peersync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
the application identifier, and the default templates used to reach peers and to
name branches displaced by a conflicting push.
"""

# --- Identity ---
APP_NAME = "git-peersync"
"""str: The human-readable application name, also the logger name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-peersync"
"""Path: The directory for runtime state data (logs, pid file)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
_CONFIG_OVERRIDE = os.environ.get("GIT_PEERSYNC_CONFIG")

CONFIG_DIR: Path = Path.home() / ".config/git-peersync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = (
    Path(_CONFIG_OVERRIDE) if _CONFIG_OVERRIDE else CONFIG_DIR / "config.toml"
)
"""Path: The main configuration file path."""

# --- Git / Sync Constants ---
DEFAULT_REMOTE_TEMPLATE = "ssh://{host}{path}"
"""str: How a peer's repository is addressed, formatted with `host` and `path`."""

DEFAULT_CONFLICT_TEMPLATE = "{branch}_peersync_{host}"
"""
str: Name given to a peer's divergent branch when a push displaces it.
Formatted with `branch` and the displacing (local) `host`.
"""

STASH_REF_PREFIX = "refs/peersync"
"""str: Private ref namespace holding divergent tips fetched from peers."""

NON_FAST_FORWARD_MARKERS = ("non-fast-forward", "fetch first")
"""tuple[str, ...]: git push stderr fragments that identify a rejected non-ff push."""

TIMEOUT_EXIT_CODE = 124
"""int: Exit status reported when a git subprocess exceeds its timeout."""
