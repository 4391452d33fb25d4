"""End-to-end tests of the sync operations against real git repositories."""

from collections.abc import Callable
from pathlib import Path

import pytest

from git_peersync import ops
from git_peersync.config import Config, ConfigError
from git_peersync.engine import ConflictResolver, SyncEngine
from git_peersync.git_wrapper import GitRepo
from git_peersync.source import Source

Git = Callable[..., str]
Commit = Callable[[Path, str], str]


@pytest.fixture
def local(tmp_path: Path, git: Git, make_commit: Commit) -> Path:
    """A work tree on branch 'main' with one commit."""
    path = tmp_path / "local"
    GitRepo(path).init()
    git(path, "checkout", "-q", "-b", "main")
    make_commit(path, "base")
    return path


@pytest.fixture
def peer(tmp_path: Path, local: Path, git: Git) -> Path:
    """A bare clone of `local`, standing in for another host's copy."""
    path = tmp_path / "peer.git"
    git(tmp_path, "clone", "-q", "--bare", str(local), str(path))
    return path


def _config(local: Path, peer: Path) -> Config:
    conf = Config()
    conf.core.host = "here"
    conf.core.remote_template = "{path}"
    conf.sources = {"proj": {"here": str(local), "peer": str(peer)}}
    return conf


def test_conflict_preserves_divergent_history(
    tmp_path: Path, local: Path, peer: Path, git: Git, make_commit: Commit
) -> None:
    """Verifies the divergence scenario: the peer ends with b = Y and the alternate at X."""
    # The peer gains commit X on main through another clone.
    other = tmp_path / "other"
    git(tmp_path, "clone", "-q", str(peer), str(other))
    x = make_commit(other, "from the peer")
    git(other, "push", "-q", "origin", "main")

    # Locally, main diverges with commit Y.
    y = make_commit(local, "from here")

    source = Source.create(
        "proj", "here", {"here": str(local), "peer": str(peer)}, GitRepo(local)
    )
    engine = SyncEngine(remote_template="{path}")
    try:
        tasks = engine.notify_changed(source)
        source.drain()
    finally:
        source.shutdown(timeout=30)

    assert [(t.branch, t.hash) for t in tasks] == [("main", y)]
    assert git(peer, "rev-parse", "refs/heads/main") == y
    assert git(peer, "rev-parse", "refs/heads/main_peersync_here") == x
    assert source.branch_hashes[("peer", "main")] == y


def test_failed_push_to_missing_peer(
    tmp_path: Path, local: Path, git: Git
) -> None:
    """Verifies that an unreachable peer leaves the cache empty."""
    missing = tmp_path / "nowhere"
    source = Source.create(
        "proj", "here", {"here": str(local), "gone": str(missing)}, GitRepo(local)
    )
    engine = SyncEngine(remote_template="{path}")
    try:
        assert len(engine.notify_changed(source)) == 1
        source.drain()
    finally:
        source.shutdown(timeout=30)

    assert source.branch_hashes == {}


def test_sync_once_reports_pushes(
    local: Path, peer: Path, git: Git, make_commit: Commit
) -> None:
    """Verifies that a one-shot sync pushes new commits and reports them."""
    head = make_commit(local, "new work")
    git(local, "branch", "topic")

    reports = ops.sync_once(_config(local, peer))

    assert sorted((r.task.branch, r.pushed) for r in reports) == [
        ("main", True),
        ("topic", True),
    ]
    assert git(peer, "rev-parse", "refs/heads/main") == head
    assert git(peer, "rev-parse", "refs/heads/topic") == head


def test_sync_once_unknown_source(local: Path, peer: Path) -> None:
    """Verifies that naming a source this host does not hold raises ConfigError."""
    with pytest.raises(ConfigError):
        ops.sync_once(_config(local, peer), ["music"])


def test_local_repo_requires_local_host(local: Path, peer: Path) -> None:
    """Verifies that a source without this host cannot be opened locally."""
    conf = _config(local, peer)

    assert ops.local_repo(conf, "proj").path == local

    conf.core.host = "elsewhere"
    with pytest.raises(ConfigError, match="not configured for host 'elsewhere'"):
        ops.local_repo(conf, "proj")


def test_list_and_drop_conflicts(local: Path, git: Git) -> None:
    """Verifies that conflict branches are listed and can be deleted."""
    git(local, "branch", "main_peersync_desktop")
    git(local, "branch", "unrelated")
    repo = GitRepo(local)
    resolver = ConflictResolver()

    conflicts = ops.list_conflicts(repo, resolver)

    assert [(c.name, c.branch, c.host) for c in conflicts] == [
        ("main_peersync_desktop", "main", "desktop")
    ]
    assert not ops.drop_conflict(repo, resolver, "unrelated")
    assert ops.drop_conflict(repo, resolver, "main_peersync_desktop")
    assert ops.list_conflicts(repo, resolver) == []


def test_adopt_checked_out_branch(
    local: Path, git: Git, make_commit: Commit
) -> None:
    """Verifies that adopting resets the checked-out branch to the conflict branch."""
    old = git(local, "rev-parse", "HEAD")
    git(local, "branch", "main_peersync_desktop")
    make_commit(local, "newer")
    repo = GitRepo(local)

    assert ops.adopt_conflict(repo, ConflictResolver(), "main_peersync_desktop")

    assert git(local, "rev-parse", "main") == old
    assert "main_peersync_desktop" not in repo.snapshot_local_branches()


def test_adopt_refuses_dirty_working_area(local: Path, git: Git) -> None:
    """Verifies that local edits are never discarded by an adopt."""
    git(local, "branch", "main_peersync_desktop")
    (local / "file.txt").write_text("unsaved")

    assert not ops.adopt_conflict(
        GitRepo(local), ConflictResolver(), "main_peersync_desktop"
    )
    assert (local / "file.txt").read_text() == "unsaved"


def test_adopt_other_branch_renames(local: Path, git: Git, make_commit: Commit) -> None:
    """Verifies that a branch that is not checked out is replaced by renaming."""
    git(local, "branch", "topic")
    git(local, "checkout", "-q", "-b", "side")
    side = make_commit(local, "side work")
    git(local, "branch", "topic_peersync_desktop")
    git(local, "checkout", "-q", "main")
    repo = GitRepo(local)

    assert ops.adopt_conflict(repo, ConflictResolver(), "topic_peersync_desktop")

    branches = repo.snapshot_local_branches()
    assert branches["topic"] == side
    assert "topic_peersync_desktop" not in branches
