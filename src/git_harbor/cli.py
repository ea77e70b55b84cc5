import argparse
import gzip
import logging
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import backup, mirror, ops, schedule
from .config import Config, ConfigError
from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_EXCLUDES,
    LOCK_FILE_NAME,
    MIRROR_LOG_NAME,
    PUSH_LOG_NAME,
)
from .logs import setup_logging
from .rules import build_ruleset
from .schedule import CrontabError
from .system import lease_holder

logger = logging.getLogger(APP_NAME)
console = Console()

JOB_LOGS = {"mirror": MIRROR_LOG_NAME, "push": PUSH_LOG_NAME}


def show_status(config: Config) -> None:
    """Displays the layout, schedule registration and recent job outcomes."""
    paths = config.paths

    layout = Table(show_header=False, box=None)
    layout.add_column(style="bold")
    layout.add_column()
    layout.add_row("Config", str(config.source_file or "(defaults)"))
    layout.add_row("Account", config.account.user)
    layout.add_row("Source", str(paths.source))
    layout.add_row("Mirror", _repo_state(paths.target))
    layout.add_row("Bare repo", str(paths.bare_repo))
    layout.add_row("Logs", str(paths.log_dir))
    console.print(Panel(layout, title="Layout", expand=False))

    status = Text()
    status.append("Schedule: ", style="bold")
    try:
        entry = schedule.current_entry(config)
    except (CrontabError, FileNotFoundError) as e:
        status.append(f"Unknown ({e})\n", style="yellow")
    else:
        if entry:
            status.append("Registered\n", style="bold green")
            status.append(f"   {entry}\n", style="dim")
        else:
            status.append("Not registered\n", style="bold red")

    status.append("Run:      ", style="bold")
    holder = lease_holder(paths.log_dir / LOCK_FILE_NAME)
    if holder:
        status.append(f"In progress (pid {holder})\n", style="bold yellow")
    else:
        status.append("Idle\n", style="green")

    for job, name in JOB_LOGS.items():
        last = _last_line(paths.log_dir / name)
        status.append(f"{job.capitalize():<10}", style="bold")
        status.append((last or "no runs yet") + "\n", style="dim" if not last else "")

    console.print(Panel(status, title="Backup Status", expand=False))


def _repo_state(path: Path) -> str:
    if not path.exists():
        return f"{path} [red](missing)[/red]"
    if not (path / ".git").exists():
        return f"{path} [red](not a git repository)[/red]"
    return str(path)


def _last_line(log_file: Path) -> str | None:
    """Returns the last line of a job log, falling back to its newest archive."""
    candidates = [log_file, log_file.with_name(f"{log_file.name}.1.gz")]
    for candidate in candidates:
        if not candidate.exists():
            continue
        opener = gzip.open if candidate.suffix == ".gz" else open
        with opener(candidate, "rt") as f:
            lines = [line.rstrip() for line in f if line.strip()]
        if lines:
            return lines[-1]
    return None


def tail_log(config: Config, job: str, follow: bool) -> None:
    """Prints (or follows) the active log of a job."""
    log_file = config.paths.log_dir / JOB_LOGS[job]
    if not log_file.exists():
        console.print(f"[red]No log file found yet at {log_file}.[/red]")
        return

    if not follow:
        console.print(log_file.read_text(), end="", markup=False, highlight=False)
        return

    console.print(f"Tailing [bold cyan]{log_file}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(log_file)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


CONFIG_REFERENCE = [
    ("account", "user", "str", "login name", "Service account owning the crontab."),
    ("", "home", "path", '"~"', "Root of the default layout."),
    ("paths", "source", "path", "home", "Live working directory to mirror."),
    ("", "target", "path", '"gitrepo"', "Mirror tree (a git working tree)."),
    ("", "bare_repo", "path", '"gitrepo.git"', "Local bare push target."),
    ("", "log_dir", "path", '"logs"', "Rotated job logs and the run lease."),
    ("", "install_dir", "path", '"install"', "One-shot bootstrap artifacts."),
    ("", "services_dir", "path", '"services/backup"', "Recurring job wrappers."),
    ("mirror", "engine", "str", '"auto"', "'rsync', 'builtin' or 'auto'."),
    ("", "use_default_excludes", "bool", "true", "Apply the built-in rules."),
    ("", "exclude", "list", "[]", "Extra rsync-style exclusion patterns."),
    ("logs", "retention", "int", "25", "Compressed archives kept per job log."),
    ("push", "remote", "str", '"origin"', "Remote receiving automated backups."),
    ("", "all_branches", "bool", "true", "Push every local branch (--all)."),
    ("schedule", "cron", "str", '"0 * * * *"', "Five-field cron expression."),
    ("", "nice", "int", "10", "CPU niceness of the scheduled run."),
    ("", "ionice_class", "int", "2", "I/O scheduling class."),
    ("", "ionice_level", "int", "7", "I/O priority within the class."),
    ("git", "user_name", "str", "account user", "Local commit author name."),
    ("", "user_email", "str", '"<user>@localhost"', "Local commit author email."),
    ("", "remote_url", "str", "None", "Hosted repository (GitHub HTTPS -> SSH)."),
]
"""list[tuple]: Rows of the `config --list` table."""


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Git Harbor Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    for row in CONFIG_REFERENCE:
        table.add_row(*row)

    console.print(table)
    console.print(f"{len(DEFAULT_EXCLUDES)} built-in exclusion rules (see `rules`).")


def show_rules(config: Config) -> None:
    """Lists the exclusion rules of the next mirror run, in evaluation order."""
    for rule in build_ruleset(config):
        console.print(rule.pattern, markup=False, highlight=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Mirror a working directory into a git repository and push it.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Configuration file (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug messages"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup", help="Create the layout and both repositories")
    subparsers.add_parser("mirror", help="Run the mirror job once")
    subparsers.add_parser("push", help="Run the commit/push job once")
    subparsers.add_parser("run", help="Mirror, then commit/push (scheduled tick)")
    subparsers.add_parser("install-schedule", help="Register the hourly schedule")
    subparsers.add_parser("uninstall-schedule", help="Remove the schedule entry")
    subparsers.add_parser("status", help="Show layout, schedule and last outcomes")
    subparsers.add_parser("rules", help="List the active exclusion rules")

    log_parser = subparsers.add_parser("log", help="Show a job log")
    log_parser.add_argument(
        "--job", choices=sorted(JOB_LOGS), default="mirror", help="Which job log"
    )
    log_parser.add_argument(
        "--follow", "-f", action="store_true", help="Follow the log in real time"
    )

    config_parser = subparsers.add_parser(
        "config", help="View configuration options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Git Harbor CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)

    if args.command == "mirror":
        sys.exit(mirror.run_mirror(config))
    elif args.command == "push":
        sys.exit(backup.run_commit_push(config))
    elif args.command == "run":
        sys.exit(backup.run_pipeline(config))
    elif args.command == "setup":
        try:
            ops.setup(config)
        except RuntimeError as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)
        return
    elif args.command in ("install-schedule", "uninstall-schedule"):
        try:
            if args.command == "install-schedule":
                if not schedule.install(config):
                    console.print("Schedule entry already present. Nothing to do.")
            else:
                schedule.uninstall(config)
        except (CrontabError, FileNotFoundError) as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)
        return
    elif args.command == "status":
        show_status(config)
        return
    elif args.command == "rules":
        try:
            show_rules(config)
        except ValueError as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)
        return
    elif args.command == "log":
        tail_log(config, args.job, args.follow)
        return
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            path = config.source_file or CONFIG_FILE
            console.print(f"Config file: [cyan]{path}[/cyan]")
            console.print("Run with [green]--list[/green] to see every option.")
        return


if __name__ == "__main__":
    main()
