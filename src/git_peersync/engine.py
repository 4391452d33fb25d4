"""Decides what to push where, and carries out each push on the peer's worker.

A change notification snapshots the local branches and, for every configured
peer, queues one push per branch whose hash differs from what that peer was
last confirmed to hold. Pushes rejected as non-fast-forward are handed to the
`ConflictResolver`, which moves the peer's divergent branch aside and retries.
"""

import enum
import logging
import re
import string
from collections.abc import Mapping
from dataclasses import dataclass

from .config import Config
from .constants import (
    APP_NAME,
    DEFAULT_CONFLICT_TEMPLATE,
    DEFAULT_REMOTE_TEMPLATE,
    NON_FAST_FORWARD_MARKERS,
    STASH_REF_PREFIX,
)
from .git_wrapper import GitResult
from .source import Source
from .worker import WorkerStoppedError

logger = logging.getLogger(APP_NAME)


class PushOutcome(enum.Enum):
    """Terminal state of a push task."""

    SUCCESS = "success"
    CONFLICT_RESOLVED = "conflict-resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class PushTask:
    """One branch push queued for one peer.

    Attributes:
        source_name (str): The source the branch belongs to.
        peer_host (str): The host being pushed to.
        branch (str): The local branch name.
        hash (str): The branch hash at submission time; this exact commit is pushed.
        remote_path (str): The repository path on the peer.
        remote_branch (str): The branch name to update on the peer.
    """

    source_name: str
    peer_host: str
    branch: str
    hash: str
    remote_path: str
    remote_branch: str


def is_non_fast_forward(result: GitResult) -> bool:
    """Returns True if a failed push was rejected because the peer has diverged."""
    if result.ok:
        return False
    return any(marker in result.err for marker in NON_FAST_FORWARD_MARKERS)


class ConflictResolver:
    """Preserves a peer's divergent branch by renaming it, then retries the push."""

    def __init__(self, conflict_template: str = DEFAULT_CONFLICT_TEMPLATE):
        self.conflict_template = conflict_template

    def alternate_name(self, branch: str, host: str) -> str:
        """The name a divergent `branch` is moved to when `host` displaces it."""
        return self.conflict_template.format(branch=branch, host=host)

    def parse_alternate(self, name: str) -> tuple[str, str] | None:
        """Inverts `alternate_name`.

        Returns:
            tuple[str, str] | None: (branch, host) if `name` follows the
                                    template, otherwise None.
        """
        pattern = ""
        for literal, field_name, _spec, _conv in string.Formatter().parse(
            self.conflict_template
        ):
            pattern += re.escape(literal)
            if field_name == "branch":
                pattern += "(?P<branch>.+?)"
            elif field_name == "host":
                pattern += "(?P<host>[^/]+)"
            elif field_name is not None:
                return None
        match = re.fullmatch(pattern, name)
        if not match or "branch" not in match.groupdict():
            return None
        return match.group("branch"), match.groupdict().get("host") or ""

    def resolve(self, source: Source, task: PushTask, remote: str) -> PushOutcome:
        """Renames the peer's branch out of the way and pushes again.

        The peer's divergent tip is first copied to the alternate name
        (overwriting a stale one). The original name is then released by a push
        leased on that exact tip, so only history already preserved under the
        alternate name can be replaced. The original name is never deleted: a
        non-bare peer refuses to delete its checked-out branch.

        Args:
            source (Source): The source being synchronized.
            task (PushTask): The push that was rejected.
            remote (str): The peer URL the push was sent to.

        Returns:
            PushOutcome: CONFLICT_RESOLVED if the retry succeeded, FAILED otherwise.
        """
        alternate = self.alternate_name(task.remote_branch, source.local_host)
        stash_ref = f"{STASH_REF_PREFIX}/{task.peer_host}/{task.remote_branch}"

        copied = source.repo.copy_remote_branch(
            remote, task.remote_branch, alternate, True, stash_ref
        )
        displaced = source.repo.rev_parse(stash_ref) if copied.ok else None
        if not displaced:
            logger.error(
                f"CONFLICT ERROR {source.name}@{task.peer_host}: could not move "
                f"{task.remote_branch} to {alternate}: {copied.err}"
            )
            return PushOutcome.FAILED

        retry = source.repo.push_to_branch(
            remote, task.hash, task.remote_branch, allow_non_ff=False, expect=displaced
        )
        if not retry.ok:
            logger.error(
                f"PUSH ERROR {source.name}@{task.peer_host}: retry of "
                f"{task.branch} after rename failed: {retry.err}"
            )
            return PushOutcome.FAILED

        logger.info(
            f"RESOLVED {source.name}@{task.peer_host}: {task.remote_branch} -> "
            f"{alternate}, pushed {task.branch}@{task.hash[:10]}"
        )
        return PushOutcome.CONFLICT_RESOLVED


class SyncEngine:
    """Pushes local branch changes of a source to each of its peers.

    Attributes:
        remote_template (str): Format string turning (host, path) into a git remote.
        resolver (ConflictResolver): Handles non-fast-forward rejections.
    """

    def __init__(
        self,
        remote_template: str = DEFAULT_REMOTE_TEMPLATE,
        resolver: ConflictResolver | None = None,
    ):
        self.remote_template = remote_template
        self.resolver = resolver or ConflictResolver()

    @classmethod
    def from_config(cls, config: Config) -> "SyncEngine":
        return cls(
            remote_template=config.core.remote_template,
            resolver=ConflictResolver(config.core.conflict_template),
        )

    def remote_url(self, host: str, path: str) -> str:
        return self.remote_template.format(host=host, path=path)

    def _snapshot(self, source: Source) -> dict[str, str] | None:
        try:
            return source.repo.snapshot_local_branches()
        except Exception as e:
            logger.error(f"SNAPSHOT ERROR {source.name}: {e}")
            return None

    def notify_changed(self, source: Source) -> list[PushTask]:
        """Reacts to a local change by queuing pushes to every configured peer.

        Never blocks on the pushes themselves and never raises for their failure.

        Returns:
            list[PushTask]: Every task submitted, across all peers.
        """
        branches = self._snapshot(source)
        if branches is None:
            return []

        with source.lock:
            hosts = list(source.host_paths)

        submitted = []
        for host in hosts:
            if host == source.local_host:
                continue
            submitted.extend(self.push_for_peer(source, host, branches))
        return submitted

    def push_for_peer(
        self,
        source: Source,
        peer_host: str,
        branches: Mapping[str, str] | None = None,
    ) -> list[PushTask]:
        """Queues a push for each branch the peer is not known to hold.

        A host missing from `source.host_paths` does not have this source, so
        nothing is submitted and neither `peers` nor `branch_hashes` is touched.

        Args:
            source (Source): The source to synchronize.
            peer_host (str): The host to push to.
            branches (Mapping[str, str] | None, optional): Local branch -> hash.
                Snapshotted from the repository when omitted.

        Returns:
            list[PushTask]: The tasks submitted to the peer's worker.

        Raises:
            KeyError: If a configured remote peer has no worker.
        """
        with source.lock:
            if peer_host not in source.host_paths:
                return []
            if peer_host == source.local_host:
                return []

        if branches is None:
            branches = self._snapshot(source)
            if branches is None:
                return []

        submitted = []
        with source.lock:
            remote_path = source.host_paths.get(peer_host)
            if remote_path is None:
                return []
            worker = source.peers[peer_host]

            for branch, sha in sorted(branches.items()):
                if source.branch_hashes.get((peer_host, branch)) == sha:
                    continue
                key = (peer_host, branch, sha, remote_path)
                if key in source.pending:
                    continue

                task = PushTask(
                    source_name=source.name,
                    peer_host=peer_host,
                    branch=branch,
                    hash=sha,
                    remote_path=remote_path,
                    remote_branch=branch,
                )
                try:
                    worker.submit(self.execute, source, task)
                except WorkerStoppedError:
                    logger.warning(
                        f"SKIPPED {source.name}@{peer_host}: worker is stopped."
                    )
                    break
                source.pending.add(key)
                submitted.append(task)

        if submitted:
            logger.debug(
                f"QUEUED {source.name}@{peer_host}: "
                f"{', '.join(t.branch for t in submitted)}"
            )
        return submitted

    def execute(self, source: Source, task: PushTask) -> PushOutcome:
        """Runs one push task. Called on the peer's worker thread.

        Returns:
            PushOutcome: The terminal state reached by the task.
        """
        remote = self.remote_url(task.peer_host, task.remote_path)
        try:
            result = source.repo.push_to_branch(
                remote, task.hash, task.remote_branch, allow_non_ff=False
            )
            if result.ok:
                self._record_success(source, task)
                logger.info(
                    f"PUSHED {source.name}@{task.peer_host}: "
                    f"{task.branch}@{task.hash[:10]}"
                )
                return PushOutcome.SUCCESS

            if is_non_fast_forward(result):
                logger.warning(
                    f"CONFLICT {source.name}@{task.peer_host}: "
                    f"{task.remote_branch} has diverged."
                )
                outcome = self.resolver.resolve(source, task, remote)
                if outcome is PushOutcome.CONFLICT_RESOLVED:
                    self._record_success(source, task)
                return outcome

            logger.error(
                f"PUSH ERROR {source.name}@{task.peer_host}: {task.branch}: "
                f"{result.err or f'exit {result.exit}'}"
            )
            return PushOutcome.FAILED
        finally:
            with source.lock:
                source.pending.discard(
                    (task.peer_host, task.branch, task.hash, task.remote_path)
                )

    @staticmethod
    def _record_success(source: Source, task: PushTask) -> None:
        with source.lock:
            # Only a push to the currently configured path counts.
            if source.host_paths.get(task.peer_host) == task.remote_path:
                source.branch_hashes[(task.peer_host, task.branch)] = task.hash
