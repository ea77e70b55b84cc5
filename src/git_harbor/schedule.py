import logging
import shlex
import subprocess

from rich.console import Console

from .config import Config
from .constants import APP_NAME, CRON_MARKER
from .system import current_user, get_executable, is_root

console = Console()
logger = logging.getLogger(APP_NAME)


class CrontabError(RuntimeError):
    """The `crontab` command failed."""


def build_entry(config: Config, executable: list[str] | None = None) -> str:
    """Composes the cron line that runs one mirror + commit/push tick.

    Both steps run inside the `run` command, which chains them (commit/push
    only after a successful mirror) under the overlap lease, at reduced CPU
    and I/O priority.

    Args:
        config (Config): The active configuration.
        executable (list[str] | None): The CLI invocation. Defaults to the
                                       installed console script.

    Returns:
        str: The full crontab line.
    """
    sched = config.schedule
    cmd = [
        "nice",
        "-n",
        str(sched.nice),
        "ionice",
        f"-c{sched.ionice_class}",
        f"-n{sched.ionice_level}",
        *(executable or get_executable()),
    ]
    if config.source_file:
        cmd.extend(["--config", str(config.source_file)])
    cmd.append("run")
    return f"{sched.cron} {shlex.join(cmd)}"


def find_entry(table: str) -> str | None:
    """Returns the managed entry line of a crontab, if any."""
    lines = table.splitlines()
    for i, line in enumerate(lines):
        if line.strip() == CRON_MARKER and i + 1 < len(lines):
            return lines[i + 1]
    return None


def ensure_entry(table: str, entry: str) -> tuple[str, bool]:
    """Makes `table` contain exactly one managed `entry`.

    The managed entry is identified by the marker comment directly above it.
    If the table holds exactly one marker, directly followed by `entry`, and
    no other copy of `entry`, it is returned unchanged. Otherwise every managed
    block and every untagged copy of `entry` is dropped and a single managed
    block is appended, so stale or hand-edited entries are replaced.

    Args:
        table (str): The current crontab text.
        entry (str): The desired cron line.

    Returns:
        tuple[str, bool]: The new crontab text and whether it changed.
    """
    lines = table.splitlines()
    markers = [i for i, line in enumerate(lines) if line.strip() == CRON_MARKER]
    if (
        len(markers) == 1
        and markers[0] + 1 < len(lines)
        and lines[markers[0] + 1] == entry
        and lines.count(entry) == 1
    ):
        return table, False

    stripped, _ = remove_entry(table)
    kept = [line for line in stripped.splitlines() if line != entry]
    kept.extend([CRON_MARKER, entry])
    return "\n".join(kept) + "\n", True


def remove_entry(table: str) -> tuple[str, bool]:
    """Drops the managed marker and its entry from `table`.

    Returns:
        tuple[str, bool]: The new crontab text and whether it changed.
    """
    lines = table.splitlines()
    kept: list[str] = []
    skip_next = False
    changed = False
    for line in lines:
        if skip_next:
            skip_next = False
            if not line.lstrip().startswith("#"):
                continue
        if line.strip() == CRON_MARKER:
            skip_next = True
            changed = True
            continue
        kept.append(line)

    if not changed:
        return table, False
    return ("\n".join(kept) + "\n") if kept else "", True


class Crontab:
    """Reads and writes the crontab of a user through the `crontab` command.

    Attributes:
        user (str | None): The account whose table is managed; None means the
                           invoking user. Only root may manage another user.
    """

    def __init__(self, user: str | None = None):
        self.user = user

    def _base(self) -> list[str]:
        if not self.user or self.user == current_user():
            return ["crontab"]
        if is_root():
            return ["crontab", "-u", self.user]
        raise CrontabError(
            f"Managing the crontab of '{self.user}' requires root "
            f"(running as '{current_user()}')."
        )

    def read(self) -> str:
        """Returns the current table, or an empty string if none exists."""
        res = subprocess.run(
            [*self._base(), "-l"], capture_output=True, text=True
        )
        if res.returncode != 0:
            if "no crontab" in res.stderr.lower():
                return ""
            raise CrontabError(f"crontab -l failed: {res.stderr.strip()}")
        return res.stdout

    def write(self, table: str) -> None:
        """Replaces the table with `table`."""
        res = subprocess.run(
            [*self._base(), "-"], input=table, capture_output=True, text=True
        )
        if res.returncode != 0:
            raise CrontabError(f"crontab - failed: {res.stderr.strip()}")


def _crontab_for(config: Config) -> Crontab:
    return Crontab(config.account.user)


def install(config: Config, crontab: Crontab | None = None) -> bool:
    """Registers the scheduled tick for the service account.

    Safe to run on every install or re-provision.

    Args:
        config (Config): The active configuration.
        crontab (Crontab | None): The table to manage. Defaults to the
                                  service account's crontab.

    Returns:
        bool: True if the table was changed, False if already registered.
    """
    crontab = crontab or _crontab_for(config)
    entry = build_entry(config)
    table, changed = ensure_entry(crontab.read(), entry)
    if not changed:
        logger.info("Schedule entry already present.")
        return False

    crontab.write(table)
    logger.info(f"Schedule entry registered: {entry}")
    console.print(
        f"[bold green]SUCCESS:[/bold green] Scheduled backup registered "
        f"({config.schedule.cron})."
    )
    return True


def uninstall(config: Config, crontab: Crontab | None = None) -> bool:
    """Removes the scheduled tick.

    Returns:
        bool: True if an entry was removed.
    """
    crontab = crontab or _crontab_for(config)
    table, changed = remove_entry(crontab.read())
    if changed:
        crontab.write(table)
        console.print("[bold green]SUCCESS:[/bold green] Schedule entry removed.")
    else:
        console.print("[yellow]No managed schedule entry found.[/yellow]")
    return changed


def current_entry(config: Config, crontab: Crontab | None = None) -> str | None:
    """Returns the registered entry line, if any."""
    crontab = crontab or _crontab_for(config)
    return find_entry(crontab.read())
