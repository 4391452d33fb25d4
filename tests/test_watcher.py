"""Tests for the branch ref watcher."""

from pathlib import Path
from unittest.mock import MagicMock

from watchfiles import Change

from git_peersync.git_wrapper import GitRepo
from git_peersync.watcher import RefWatcher, _ignore_lock_files


def _repo(mocker: MagicMock, tmp_path: Path) -> MagicMock:
    repo = mocker.MagicMock(spec=GitRepo)
    repo.path = tmp_path
    repo.git_dir = tmp_path / ".git"
    return repo


def test_lock_files_are_ignored() -> None:
    """Verifies that git's transient lock files do not count as ref changes."""
    assert _ignore_lock_files(Change.modified, "/r/.git/refs/heads/main")
    assert not _ignore_lock_files(Change.added, "/r/.git/refs/heads/main.lock")


def test_watch_loop_calls_back_per_batch(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that each batch of changes triggers one callback."""
    batches = [
        {(Change.modified, "/r/.git/refs/heads/main")},
        {(Change.added, "/r/.git/refs/heads/topic")},
    ]
    mock_watch = mocker.patch("git_peersync.watcher.watch", return_value=iter(batches))
    on_change = mocker.MagicMock()
    watcher = RefWatcher(_repo(mocker, tmp_path), on_change, debounce_ms=50)

    watcher._watch_loop()

    assert on_change.call_count == 2
    args, kwargs = mock_watch.call_args
    assert args == (tmp_path / ".git" / "refs" / "heads",)
    assert kwargs["debounce"] == 50
    assert kwargs["stop_event"] is watcher._stop_event


def test_watch_loop_survives_callback_errors(
    mocker: MagicMock, caplog: MagicMock, tmp_path: Path
) -> None:
    """Verifies that a failing callback is logged and watching continues."""
    batches = [{(Change.modified, "a")}, {(Change.modified, "b")}]
    mocker.patch("git_peersync.watcher.watch", return_value=iter(batches))
    on_change = mocker.MagicMock(side_effect=[RuntimeError("boom"), None])

    RefWatcher(_repo(mocker, tmp_path), on_change)._watch_loop()

    assert on_change.call_count == 2
    assert "WATCH ERROR" in caplog.text


def test_watch_loop_reports_missing_refs_dir(
    mocker: MagicMock, caplog: MagicMock, tmp_path: Path
) -> None:
    """Verifies that a repository without a refs directory is reported, not raised."""
    mocker.patch(
        "git_peersync.watcher.watch", side_effect=FileNotFoundError("no such dir")
    )

    RefWatcher(_repo(mocker, tmp_path), mocker.MagicMock())._watch_loop()

    assert "is missing" in caplog.text


def test_start_and_stop(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that the watch thread ends once stop is requested."""

    def fake_watch(*_args, stop_event, **_kwargs):
        stop_event.wait(5)
        return iter(())

    mocker.patch("git_peersync.watcher.watch", side_effect=fake_watch)
    watcher = RefWatcher(_repo(mocker, tmp_path), mocker.MagicMock())

    watcher.start()
    watcher.stop(timeout=5)

    assert watcher._thread is not None
    assert not watcher._thread.is_alive()
