import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon
from .config import Config, parse_time
from .constants import APP_NAME, CONFIG_FILE, LOG_FILE, TOKEN_ENV
from .errors import AuthenticationError, SyncError
from .executor import load_state
from .pipeline import tracking_dir_for

logger = logging.getLogger(APP_NAME)
console = Console()


def _tracking_dir(project_root: Path, config: Config) -> Path:
    return tracking_dir_for(
        project_root.resolve(), Path(config.tracking.tracking_base).expanduser()
    )


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# Syncforge Configuration\n\n"
                "[core]\n"
                '# remote_url = "https://github.com/you/tracking.git"\n\n'
                "[scheduler]\n"
                "# Options: paranoid, balanced, lazy\n"
                '# preset = "balanced"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_status(project_root: Path) -> None:
    """Displays the tracking repository and last sync of the current project."""
    config = Config.load(project_root)
    tracking_dir = _tracking_dir(project_root, config)

    content = Text()
    content.append("Project:  ", style="bold")
    content.append(f"{project_root.resolve()}\n")
    content.append("Tracking: ", style="bold")
    content.append(f"{tracking_dir}\n")

    if not (tracking_dir / ".git").exists():
        content.append("Status:   ", style="bold")
        content.append("Not initialized (run 'syncforge watch')", style="yellow")
        console.print(Panel(content, title="Syncforge Status", expand=False))
        return

    state = load_state(tracking_dir, config.core.branch)
    content.append("Remote:   ", style="bold")
    content.append(f"{state.remote_url or 'None'}\n")
    content.append("Branch:   ", style="bold")
    content.append(f"{state.branch}\n")
    content.append("Commit:   ", style="bold")
    content.append(f"{(state.last_commit or 'None')[:12]}\n")
    content.append("Synced:   ", style="bold")
    if state.last_sync:
        content.append(
            f"{state.last_sync} ({state.last_change_count} changes)", style="green"
        )
    else:
        content.append("Never", style="yellow")

    console.print(Panel(content, title="Syncforge Status", expand=False))


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


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Syncforge Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "core", "remote_url", "str", "None", "Remote the tracking repository pushes to."
    )
    table.add_row("", "remote_name", "str", '"origin"', "Name of that remote.")
    table.add_row("", "branch", "str", '"main"', "Branch of the tracking repository.")
    table.add_row(
        "", "author_name", "str", '"Syncforge"', "Commit identity inside the tracking repo."
    )

    table.add_row(
        "tracking",
        "exclude",
        "list",
        "[]",
        "Gitignore-style patterns never tracked (appended across config files).",
    )
    table.add_row(
        "", "extensions", "list", "(built-in)", "File extensions eligible for tracking."
    )
    table.add_row(
        "",
        "tracking_base",
        "str",
        '"~/.syncforge/tracking"',
        "Parent directory of the per-project tracking repositories.",
    )

    table.add_row(
        "scheduler",
        "preset",
        "str",
        "None",
        "Interval preset: 'paranoid', 'balanced', or 'lazy'.",
    )
    table.add_row(
        "",
        "frequency",
        "int | str",
        '"30m"',
        "Time between scheduled syncs (e.g., '30m', '1hr', 1800).",
    )
    table.add_row(
        "",
        "pending_delay",
        "int | str",
        '"5s"',
        "Delay before syncing changes that arrived during a sync.",
    )

    table.add_row(
        "limits", "process_limit", "int", "5", "Max concurrent git processes."
    )
    table.add_row(
        "", "max_retries", "int", "3", "Attempts for git calls hitting process limits."
    )
    table.add_row(
        "",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )
    table.add_row(
        "", "snippet_lines", "int", "50", "Lines of code included per file snippet."
    )

    console.print(table)


def _load_config(args: argparse.Namespace) -> Config:
    config = Config.load(Path.cwd())
    interval = getattr(args, "interval", None)
    if interval:
        config.scheduler.frequency = parse_time(interval)
    return config


def main() -> None:
    """Main entry point for the Syncforge CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Periodically checkpoint file changes into a tracking repository.",
    )
    subparsers = parser.add_subparsers(dest="command")

    watch_parser = subparsers.add_parser(
        "watch", help="Watch the current directory and sync periodically"
    )
    watch_parser.add_argument("--remote", help="Remote URL of the tracking repository")
    watch_parser.add_argument(
        "--interval", help="Time between syncs (e.g. '30m', '1hr', 1800)"
    )

    now_parser = subparsers.add_parser("now", help="Sync changes immediately (one-off)")
    now_parser.add_argument("--remote", help="Remote URL of the tracking repository")

    subparsers.add_parser("status", help="Show tracking repository status")
    subparsers.add_parser("log", help="Tail the daemon log file")

    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args()
    project_root = Path.cwd()

    try:
        if args.command == "watch":
            config = _load_config(args)
            daemon.setup_logging(
                interactive=False, max_bytes=config.limits.max_log_size
            )
            if config.core.remote_url is None and args.remote is None:
                console.print(
                    "[yellow]No remote configured. Use --remote or set "
                    "remote_url under \\[core].[/yellow]"
                )
                sys.exit(1)
            daemon.run(project_root, config, remote_url=args.remote)
        elif args.command == "now":
            config = _load_config(args)
            daemon.setup_logging(interactive=True)
            with console.status("Syncing changes...", spinner="dots"):
                commit = daemon.sync_once(project_root, config, remote_url=args.remote)
            if commit:
                console.print(f"[bold green]✔ Synced ({commit[:12]}).[/bold green]")
            else:
                console.print("[dim]No changes to sync.[/dim]")
        elif args.command == "status":
            show_status(project_root)
        elif args.command == "log":
            tail_log()
        elif args.command == "config":
            if args.list:
                show_config_reference()
            else:
                open_config()
        else:
            parser.print_help()
    except ValueError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    except SyncError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        if isinstance(e, AuthenticationError) and TOKEN_ENV not in os.environ:
            console.print(f"[dim]Hint: HTTPS remotes read a token from ${TOKEN_ENV}.[/dim]")
        sys.exit(1)


if __name__ == "__main__":
    main()
