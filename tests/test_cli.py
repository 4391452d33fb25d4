"""Tests for the Command Line Interface (CLI) module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from git_peersync import cli
from git_peersync.config import Config, ConfigError
from git_peersync.engine import PushTask
from git_peersync.ops import ConflictBranch, SyncReport


@pytest.fixture(autouse=True)
def wide_console(mocker: MagicMock) -> None:
    """Keeps rich from wrapping table cells in captured output."""
    mocker.patch("git_peersync.cli.console", Console(width=200))


@pytest.fixture
def conf() -> Config:
    c = Config(sources={"notes": {"here": "/n", "box": "/srv/n"}})
    c.core.host = "here"
    return c


@pytest.fixture
def mock_main_deps(mocker: MagicMock, conf: Config) -> Config:
    """Stubs logging setup and config loading for `cli.main`."""
    mocker.patch("git_peersync.cli.daemon.setup_logging")
    mocker.patch("git_peersync.cli.Config.load", return_value=conf)
    return conf


def _report(branch: str, pushed: bool) -> SyncReport:
    task = PushTask("notes", "box", branch, "0123456789abcdef", "/srv/n", branch)
    return SyncReport(task, pushed)


def test_run_sync_reports_results(
    mocker: MagicMock, conf: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that failed pushes are shown and turn into a non-zero status."""
    mocker.patch(
        "git_peersync.cli.ops.sync_once",
        return_value=[_report("main", True), _report("dev", False)],
    )

    assert cli.run_sync(conf, []) == 1

    out = capsys.readouterr().out
    assert "Pushed" in out
    assert "Failed" in out
    assert "0123456789" in out
    assert "1 push(es) failed" in out


def test_run_sync_nothing_to_do(
    mocker: MagicMock, conf: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that an up-to-date sync succeeds quietly."""
    sync = mocker.patch("git_peersync.cli.ops.sync_once", return_value=[])

    assert cli.run_sync(conf, ["notes"]) == 0

    sync.assert_called_once_with(conf, ["notes"])
    assert "Everything up to date" in capsys.readouterr().out


def test_show_status_lists_sources(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that status shows each source's local state."""
    conf = Config(
        sources={
            "notes": {"here": str(tmp_path), "box": "/srv/n"},
            "music": {"box": "/srv/m"},
        }
    )
    conf.core.host = "here"
    mocker.patch("git_peersync.cli._daemon_running", return_value=True)
    mock_cls = mocker.patch("git_peersync.cli.GitRepo")
    repo = mock_cls.return_value
    repo.exists.return_value = True
    repo.checked_out_branch.return_value = "main"
    repo.working_area_clean.return_value = False

    cli.show_status(conf)

    out = capsys.readouterr().out
    assert "Running" in out
    assert "notes" in out
    assert "main" in out
    assert "Dirty" in out
    assert "not on this host" in out


def test_list_sources_empty(capsys: pytest.CaptureFixture) -> None:
    """Verifies the hint shown when nothing is configured."""
    cli.list_sources(Config())

    assert "No sources configured" in capsys.readouterr().out


def test_show_conflicts_table(
    mocker: MagicMock, conf: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that conflict branches are listed with their origin."""
    repo = mocker.patch("git_peersync.cli.ops.local_repo").return_value
    repo.get_last_commit_time.return_value = "2 hours ago"
    mocker.patch(
        "git_peersync.cli.ops.list_conflicts",
        return_value=[ConflictBranch("main_peersync_box", "main", "box", "abc")],
    )

    cli.show_conflicts(conf, "notes")

    out = capsys.readouterr().out
    assert "main_peersync_box" in out
    assert "2 hours ago" in out


def test_main_sync_exit_code(mocker: MagicMock, mock_main_deps: Config) -> None:
    """Verifies that `sync` exits with the status of the push round."""
    mocker.patch("sys.argv", ["git-peersync", "sync", "notes"])
    run_sync = mocker.patch("git_peersync.cli.run_sync", return_value=1)

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 1
    run_sync.assert_called_once_with(mock_main_deps, ["notes"])


def test_main_reports_config_errors(
    mocker: MagicMock, mock_main_deps: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that configuration errors become a readable message and exit 1."""
    mocker.patch("sys.argv", ["git-peersync", "adopt", "music", "main_peersync_box"])
    mocker.patch(
        "git_peersync.cli.ops.local_repo",
        side_effect=ConfigError("Source 'music' is not configured for host 'here'"),
    )

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 1
    assert "not configured" in capsys.readouterr().out


def test_main_drop_success(
    mocker: MagicMock, mock_main_deps: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that `drop` deletes the named branch in the local repository."""
    mocker.patch("sys.argv", ["git-peersync", "drop", "notes", "main_peersync_box"])
    repo = mocker.patch("git_peersync.cli.ops.local_repo").return_value
    drop = mocker.patch("git_peersync.cli.ops.drop_conflict", return_value=True)

    cli.main()

    assert drop.call_args.args[0] is repo
    assert drop.call_args.args[2] == "main_peersync_box"
    assert "Deleted" in capsys.readouterr().out


def test_main_init_bare(mocker: MagicMock, mock_main_deps: Config) -> None:
    """Verifies that `init --bare` creates a bare repository."""
    mocker.patch("sys.argv", ["git-peersync", "init", "notes", "--bare"])
    repo = mocker.patch("git_peersync.cli.ops.local_repo").return_value

    cli.main()

    repo.init.assert_called_once_with(bare=True)


def test_main_run_starts_daemon(mocker: MagicMock) -> None:
    """Verifies that `run` starts the daemon in the foreground."""
    mocker.patch("sys.argv", ["git-peersync", "run"])
    mock_daemon = mocker.patch("git_peersync.cli.daemon.main")

    cli.main()

    mock_daemon.assert_called_once_with(interactive=True)
