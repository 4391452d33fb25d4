import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import daemon, ops
from .config import CONFIG_FILE, Config, ConfigError
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .engine import ConflictResolver
from .git_wrapper import GitError, GitRepo

logger = logging.getLogger(APP_NAME)
console = Console()


def _display_path(path: str | Path) -> str:
    return str(path).replace(str(Path.home()), "~")


def _daemon_running() -> bool:
    if not PID_FILE.exists():
        return False
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
        return True
    except (ValueError, OSError):
        return False


def open_config() -> None:
    """Opens the configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# git-peersync configuration\n\n"
                "[core]\n"
                '# host = "laptop"\n\n'
                "# One table per synchronized repository: host = path\n"
                "# [sources.dotfiles]\n"
                '# laptop = "/home/me/dotfiles"\n'
                '# desktop = "/home/me/dotfiles"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except Exception as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="git-peersync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("core", "host", "str", "hostname", "This machine's name in [sources].")
    table.add_row(
        "",
        "remote_template",
        "str",
        '"ssh://{host}{path}"',
        "How a peer repository is addressed. Use \"{path}\" for local paths.",
    )
    table.add_row(
        "",
        "conflict_template",
        "str",
        '"{branch}_peersync_{host}"',
        "Name given to a peer's branch displaced by a diverging push.",
    )
    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )
    table.add_row(
        "", "git_timeout", "int | str", '"2m"', "Time before a git command is abandoned."
    )
    table.add_row(
        "daemon",
        "recheck_interval",
        "int | str",
        '"15m"',
        "Forced re-check of every source (0 disables).",
    )
    table.add_row(
        "sources.<name>", "<host>", "str", "-", "Repository path of the source on <host>."
    )

    console.print(table)


def show_status(config: Config) -> None:
    """Displays the daemon state and the local copy of every source."""
    state = "[green]Running[/green]" if _daemon_running() else "[red]Stopped[/red]"
    console.print(f"Daemon: {state}   Host: [cyan]{config.core.host}[/cyan]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Path")
    table.add_column("Branch")
    table.add_column("Working Area")
    table.add_column("Peers", style="dim")

    for name, host_paths in config.sources.items():
        path = host_paths.get(config.core.host)
        peers = ", ".join(h for h in host_paths if h != config.core.host) or "-"
        if path is None:
            table.add_row(name, "[dim]not on this host[/dim]", "-", "-", peers)
            continue

        repo = GitRepo(Path(path), config.limits.git_timeout)
        if not repo.exists():
            table.add_row(name, _display_path(path), "-", "[red]Missing[/red]", peers)
            continue

        branch = repo.checked_out_branch() or ("[dim](bare)[/dim]" if repo.is_bare else "-")
        clean = "[green]Clean[/green]" if repo.working_area_clean() else "[yellow]Dirty[/yellow]"
        table.add_row(name, _display_path(path), branch, clean, peers)

    console.print(table)


def list_sources(config: Config) -> None:
    """Lists every configured source with the path it has on each host."""
    if not config.sources:
        console.print(f"[yellow]No sources configured in {CONFIG_FILE}.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Host")
    table.add_column("Path", style="dim")

    for name, host_paths in config.sources.items():
        for i, (host, path) in enumerate(host_paths.items()):
            label = f"[bold]{host}[/bold]" if host == config.core.host else host
            table.add_row(name if i == 0 else "", label, path)

    console.print(table)


def run_sync(config: Config, names: list[str]) -> int:
    """Pushes out-of-date branches now and prints what happened."""
    with console.status("Pushing to peers...", spinner="dots"):
        reports = ops.sync_once(config, names or None)

    if not reports:
        console.print("[green]Everything up to date.[/green]")
        return 0

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Peer")
    table.add_column("Branch")
    table.add_column("Hash", style="dim")
    table.add_column("Result")

    failures = 0
    for report in reports:
        task = report.task
        if report.pushed:
            result = "[green]Pushed[/green]"
        else:
            result = "[red]Failed[/red]"
            failures += 1
        table.add_row(task.source_name, task.peer_host, task.branch, task.hash[:10], result)

    console.print(table)
    if failures:
        console.print(f"[bold red]{failures} push(es) failed.[/bold red] See the log above.")
    return 1 if failures else 0


def show_conflicts(config: Config, name: str) -> None:
    """Lists branches on this host that were displaced by other hosts' pushes."""
    repo = ops.local_repo(config, name)
    resolver = ConflictResolver(config.core.conflict_template)
    conflicts = ops.list_conflicts(repo, resolver)
    if not conflicts:
        console.print(f"[green]No conflict branches in {name}.[/green]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Conflict Branch", style="cyan")
    table.add_column("Original")
    table.add_column("Displaced By")
    table.add_column("Last Commit", justify="right", style="dim")

    for conflict in conflicts:
        try:
            when = repo.get_last_commit_time(conflict.name)
        except GitError as e:
            logger.debug(f"Failed to read commit time of {conflict.name}: {e}")
            when = "-"
        table.add_row(conflict.name, conflict.branch, conflict.host, when)

    console.print(table)
    console.print(
        "[dim]Merge by hand, or use 'adopt' to keep one or 'drop' to discard it.[/dim]"
    )


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def main() -> None:
    """Main entry point for the git-peersync CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep a git repository's branches pushed to every host that holds it.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the daemon in the foreground")
    sync_parser = subparsers.add_parser("sync", help="Push out-of-date branches now")
    sync_parser.add_argument("sources", nargs="*", help="Sources to sync (default: all)")
    subparsers.add_parser("status", help="Show daemon and local repository status")
    subparsers.add_parser("list", help="List configured sources and hosts")

    conflicts_parser = subparsers.add_parser(
        "conflicts", help="List branches displaced by diverging pushes"
    )
    conflicts_parser.add_argument("source")

    drop_parser = subparsers.add_parser("drop", help="Delete a conflict branch")
    drop_parser.add_argument("source")
    drop_parser.add_argument("branch")

    adopt_parser = subparsers.add_parser(
        "adopt", help="Replace the original branch with a conflict branch"
    )
    adopt_parser.add_argument("source")
    adopt_parser.add_argument("branch")

    init_parser = subparsers.add_parser(
        "init", help="Create this host's repository for a source"
    )
    init_parser.add_argument("source")
    init_parser.add_argument("--bare", action="store_true", help="Create a bare repository")

    subparsers.add_parser("log", help="Tail the daemon log file")

    config_parser = subparsers.add_parser(
        "config", help="Open config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return
    if args.command == "run":
        daemon.main(interactive=True)
        return
    if args.command == "log":
        tail_log()
        return
    if args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
        return

    daemon.setup_logging(interactive=True)
    config = Config.load()
    resolver = ConflictResolver(config.core.conflict_template)

    try:
        if args.command == "sync":
            sys.exit(run_sync(config, args.sources))
        elif args.command == "status":
            show_status(config)
        elif args.command == "list":
            list_sources(config)
        elif args.command == "conflicts":
            show_conflicts(config, args.source)
        elif args.command == "drop":
            repo = ops.local_repo(config, args.source)
            if ops.drop_conflict(repo, resolver, args.branch):
                console.print(f"[bold green]✔ Deleted {args.branch}.[/bold green]")
            else:
                sys.exit(1)
        elif args.command == "adopt":
            repo = ops.local_repo(config, args.source)
            if ops.adopt_conflict(repo, resolver, args.branch):
                console.print(f"[bold green]✔ Adopted {args.branch}.[/bold green]")
            else:
                sys.exit(1)
        elif args.command == "init":
            repo = ops.local_repo(config, args.source).init(bare=args.bare)
            console.print(f"[bold green]✔ Repository ready at {repo.path}.[/bold green]")
    except (ConfigError, GitError) as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
