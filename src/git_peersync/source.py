import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from .constants import APP_NAME
from .git_wrapper import GitRepo
from .worker import PeerWorker

logger = logging.getLogger(APP_NAME)


@dataclass
class Source:
    """The mutable state of one repository synchronized across hosts.

    All map access goes through `lock`. The lock is never held while git runs.

    Attributes:
        name (str): The source's configured name.
        local_host (str): The identifier of the host this process runs on.
        repo (GitRepo): Access to the local copy.
        host_paths (dict[str, str]): Host identifier -> repository path on that host.
        branch_hashes (dict[tuple[str, str], str]): (peer, branch) -> last hash
            confirmed pushed to that peer.
        peers (dict[str, PeerWorker]): One worker per remote host.
        pending (set[tuple[str, str, str, str]]): (peer, branch, hash, peer path)
            pushes queued or in flight.
    """

    name: str
    local_host: str
    repo: GitRepo
    host_paths: dict[str, str] = field(default_factory=dict)
    branch_hashes: dict[tuple[str, str], str] = field(default_factory=dict)
    peers: dict[str, PeerWorker] = field(default_factory=dict)
    pending: set[tuple[str, str, str, str]] = field(default_factory=set)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def create(
        cls, name: str, local_host: str, host_paths: dict[str, str], repo: GitRepo
    ) -> "Source":
        """Builds a source and starts a worker for every remote host."""
        source = cls(name=name, local_host=local_host, repo=repo)
        for host, path in host_paths.items():
            source.add_peer(host, path)
        return source

    @property
    def local_path(self) -> Path | None:
        with self.lock:
            path = self.host_paths.get(self.local_host)
        return Path(path) if path else None

    def peer_hosts(self) -> list[str]:
        """Configured hosts other than the local one, in configuration order."""
        with self.lock:
            return [h for h in self.host_paths if h != self.local_host]

    def add_peer(self, host: str, path: str) -> None:
        """Adds or updates a host's path, creating its worker if it is remote."""
        with self.lock:
            previous = self.host_paths.get(host)
            self.host_paths[host] = path
            if previous is not None and previous != path:
                self._forget_hashes(host)
            if host != self.local_host and host not in self.peers:
                self.peers[host] = PeerWorker(f"{self.name}@{host}")
                logger.debug(f"PEER ADDED {self.name}: {host} -> {path}")

    def remove_peer(self, host: str) -> None:
        """Forgets a host. Its worker finishes queued tasks and accepts no more."""
        with self.lock:
            self.host_paths.pop(host, None)
            worker = self.peers.pop(host, None)
            self._forget_hashes(host)
        if worker:
            worker.stop(wait=False)
            logger.info(f"PEER REMOVED {self.name}: {host}")

    def _forget_hashes(self, host: str) -> None:
        for key in [k for k in self.branch_hashes if k[0] == host]:
            del self.branch_hashes[key]

    def drain(self) -> None:
        """Waits until every peer's queue is empty."""
        with self.lock:
            workers = list(self.peers.values())
        for worker in workers:
            worker.drain()

    def shutdown(self, timeout: float | None = None) -> None:
        """Stops all workers after their queued tasks complete."""
        with self.lock:
            workers = list(self.peers.values())
        for worker in workers:
            worker.stop(wait=True, timeout=timeout)
