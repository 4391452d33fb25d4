import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, TIMEOUT_EXIT_CODE

logger = logging.getLogger(APP_NAME)

DEFAULT_TIMEOUT = 120.0


class GitError(RuntimeError):
    """Raised by the helpers that treat a non-zero git exit as exceptional."""


@dataclass(frozen=True)
class GitResult:
    """The outcome of a single git invocation.

    Attributes:
        exit (int): The process exit status (0 for success).
        out (str): Captured stdout, stripped.
        err (str): Captured stderr, stripped.
    """

    exit: int
    out: str = ""
    err: str = ""

    @property
    def ok(self) -> bool:
        return self.exit == 0


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Operations that can fail for ordinary reasons (a rejected push, a missing
    branch) report a `GitResult` or an exit status instead of raising, so callers
    branch on status rather than catching exceptions. Only the `_run` helper and
    the queries built on it raise `GitError`.

    Attributes:
        path (Path): The file system path to the repository (work tree or bare dir).
        timeout (float | None): Seconds before a git subprocess is abandoned.
    """

    def __init__(self, path: Path, timeout: float | None = DEFAULT_TIMEOUT):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root or bare directory.
                         It does not need to exist yet (see `init`).
            timeout (float | None, optional): Per-command timeout in seconds.
                                              Defaults to DEFAULT_TIMEOUT.
        """
        self.path = Path(path)
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GitRepo({str(self.path)!r})"

    @property
    def git_dir(self) -> Path:
        """The directory holding refs and objects."""
        dot_git = self.path / ".git"
        return dot_git if dot_git.exists() else self.path

    @property
    def is_bare(self) -> bool:
        return not (self.path / ".git").exists() and (self.path / "HEAD").exists()

    def exists(self) -> bool:
        """Returns True if the path already holds a work tree or bare repository."""
        if (self.path / ".git").exists():
            return True
        return (self.path / "HEAD").is_file() and (self.path / "objects").is_dir()

    def _invoke(
        self, args: list[str], env: dict | None = None, cwd: Path | None = None
    ) -> GitResult:
        """Executes a Git command and reports its status without raising.

        Args:
            args (list[str]): Arguments to pass to the git command.
            env (Optional[dict], optional): Environment for the subprocess.
            cwd (Optional[Path], optional): Working directory. Defaults to the
                                            repository path.

        Returns:
            GitResult: Exit status and captured output. A timeout is reported as
                       TIMEOUT_EXIT_CODE and a missing executable or directory
                       as 127.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=cwd or self.path,
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return GitResult(
                TIMEOUT_EXIT_CODE,
                err=f"git {args[0]} timed out after {self.timeout}s",
            )
        except OSError as e:
            return GitResult(127, err=str(e))

        result = GitResult(res.returncode, res.stdout.strip(), res.stderr.strip())
        if not result.ok:
            logger.debug(
                f"git {' '.join(args)} in {self.path} exited {result.exit}: {result.err}"
            )
        return result

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command, returning stdout.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        result = self._invoke(args, env=env)
        if not result.ok:
            raise GitError(f"Git error: {result.err or result.exit}")
        return result.out

    @staticmethod
    def _transport_env() -> dict[str, str]:
        env = os.environ.copy()
        env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
        return env

    def init(self, bare: bool = False) -> "GitRepo":
        """Creates the repository if it does not already exist.

        Non-bare repositories are configured with
        `receive.denyCurrentBranch=updateInstead` so a peer may push to the
        checked-out branch while the working tree is clean.

        Args:
            bare (bool, optional): Create a bare repository. Defaults to False.

        Returns:
            GitRepo: self, for chaining.

        Raises:
            GitError: If `git init` fails.
        """
        if self.exists():
            return self

        self.path.parent.mkdir(parents=True, exist_ok=True)
        args = ["init", *(["--bare"] if bare else []), str(self.path.resolve())]
        result = self._invoke(args, cwd=self.path.parent)
        if not result.ok:
            raise GitError(f"git init failed for {self.path}: {result.err}")

        if not bare:
            self._run(["config", "receive.denyCurrentBranch", "updateInstead"])
        logger.info(f"INIT {self.path}: {'bare' if bare else 'work tree'} created.")
        return self

    def working_area_clean(self) -> bool:
        """Returns True if there are no untracked, unstaged or uncommitted changes.

        Bare repositories are always clean.
        """
        if self.is_bare:
            return True
        status = self._invoke(["status", "--porcelain"])
        return status.ok and status.out == ""

    def checked_out_branch(self) -> str | None:
        """Retrieves the name of the checked-out local branch.

        Returns:
            Optional[str]: The branch name, or None for a detached HEAD, an unborn
                           branch, or a failed query.
        """
        result = self._invoke(["rev-parse", "--symbolic-full-name", "HEAD"])
        prefix = "refs/heads/"
        if not result.ok or not result.out.startswith(prefix):
            return None
        return result.out[len(prefix) :]

    def snapshot_local_branches(self) -> dict[str, str]:
        """Maps every local branch name to the hash it currently points to.

        Raises:
            GitError: If the refs cannot be listed.
        """
        output = self._run(
            ["for-each-ref", "--format=%(objectname) %(refname)", "refs/heads"]
        )
        branches = {}
        for line in output.splitlines():
            sha, _, ref = line.partition(" ")
            if ref.startswith("refs/heads/"):
                branches[ref[len("refs/heads/") :]] = sha
        return branches

    def delete_branch(self, name: str, force: bool = False) -> None:
        """Deletes a local branch. Failure is logged, never raised.

        Args:
            name (str): The branch to delete.
            force (bool, optional): Use `-D`, deleting even unmerged branches.
        """
        result = self._invoke(["branch", "-D" if force else "-d", name])
        if not result.ok:
            logger.warning(f"Failed to delete branch {name} in {self.path}: {result.err}")

    def hard_reset(self, ref: str) -> int:
        """Performs `git reset --hard ref`. Returns the exit status."""
        return self._invoke(["reset", "--hard", ref]).exit

    def rename_branch(self, from_branch: str, to_branch: str, allow_overwrite: bool) -> int:
        """Renames a local branch (`-M` when overwriting). Returns the exit status."""
        flag = "-M" if allow_overwrite else "-m"
        return self._invoke(["branch", flag, from_branch, to_branch]).exit

    def push_to_branch(
        self,
        remote: str,
        local_ref: str,
        remote_branch: str,
        allow_non_ff: bool,
        expect: str | None = None,
    ) -> GitResult:
        """Pushes `local_ref` to `refs/heads/<remote_branch>` on `remote`.

        Args:
            remote (str): The peer URL or path.
            local_ref (str): A local ref or commit hash.
            remote_branch (str): The branch name on the peer.
            allow_non_ff (bool): Force the update (`-f`).
            expect (str | None, optional): Replace the remote branch only if it
                still points at this hash (`--force-with-lease`).

        Returns:
            GitResult: The push result; stderr carries git's rejection reason.
        """
        target = f"refs/heads/{remote_branch}"
        args = ["push", remote, f"{local_ref}:{target}"]
        if allow_non_ff:
            args.append("-f")
        if expect:
            args.append(f"--force-with-lease={target}:{expect}")
        return self._invoke(args, env=self._transport_env())

    def copy_remote_branch(
        self,
        remote: str,
        from_branch: str,
        to_branch: str,
        allow_overwrite: bool,
        stash_ref: str,
    ) -> GitResult:
        """Copies a branch on a peer to a new name using only the git transport.

        The peer's tip is fetched into the local `stash_ref`, then pushed back
        under `to_branch` (forced when `allow_overwrite`).

        Returns:
            GitResult: The first failing step, or the final push on success.
        """
        env = self._transport_env()
        steps = [
            ["fetch", remote, f"+refs/heads/{from_branch}:{stash_ref}"],
            [
                "push",
                remote,
                f"{stash_ref}:refs/heads/{to_branch}",
                *(["-f"] if allow_overwrite else []),
            ],
        ]
        result = GitResult(0)
        for args in steps:
            result = self._invoke(args, env=env)
            if not result.ok:
                return result
        return result

    def get_last_commit_time(self, branch: str) -> str:
        """Gets the relative time since the last commit on a specified branch.

        Raises:
            GitError: If the branch does not exist or the command fails.
        """
        return self._run(["log", "-1", "--format=%cr", branch])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash, or None if it cannot."""
        try:
            return self._run(["rev-parse", rev])
        except Exception as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None
