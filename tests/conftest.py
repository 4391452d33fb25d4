"""Shared fixtures for tests that drive a real git executable."""

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

GitRunner = Callable[..., str]


@pytest.fixture
def git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> GitRunner:
    """Returns a helper running git in a directory with an isolated identity.

    Skips the test when git is not installed.
    """
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    config = tmp_path / "gitconfig"
    config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Peersync Test")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "test@example.com")

    def run(cwd: Path, *args: str) -> str:
        res = subprocess.run(
            ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
        )
        return res.stdout.strip()

    return run


@pytest.fixture
def make_commit(git: GitRunner) -> Callable[[Path, str], str]:
    """Returns a helper that commits one file change and returns the new hash."""

    def commit(repo: Path, content: str) -> str:
        (repo / "file.txt").write_text(content)
        git(repo, "add", "file.txt")
        git(repo, "commit", "-q", "-m", content)
        return git(repo, "rev-parse", "HEAD")

    return commit
