import fcntl
import logging
import os
import pwd
import shutil
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class LeaseBusy(RuntimeError):
    """Another process currently holds the lease."""


@contextmanager
def exclusive_lease(lock_path: Path) -> Iterator[Path]:
    """Holds a non-blocking exclusive lock on `lock_path` for the block.

    The lock is an `flock` on an open file descriptor, so the kernel drops it
    when the holder exits, including on a crash or a kill from the scheduler.

    Args:
        lock_path (Path): The lease file; created if missing.

    Yields:
        Path: The lease file path.

    Raises:
        LeaseBusy: If another process holds the lease.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = open(lock_path, "a+")
    try:
        try:
            fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise LeaseBusy(f"Lease held by another process: {lock_path}") from e

        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        try:
            yield lock_path
        finally:
            fh.seek(0)
            fh.truncate()
            fh.flush()
            fcntl.flock(fh, fcntl.LOCK_UN)
    finally:
        fh.close()


def lease_holder(lock_path: Path) -> int | None:
    """Returns the PID of the process currently holding the lease, if any.

    The holder records its PID in the lease file and clears it on release.
    The file is only read, never locked. A PID left behind by a crashed holder is
    ignored once that process is gone.
    """
    try:
        content = lock_path.read_text().strip()
    except FileNotFoundError:
        return None
    if not content.isdigit():
        return None

    pid = int(content)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        # Alive, but owned by another user.
        pass
    return pid


def get_executable() -> list[str]:
    """Locates the command that runs the installed CLI.

    Returns:
        list[str]:  The 'git-harbor' console script if it is on PATH, else the
                    current interpreter running the package as a module.
    """
    exe = shutil.which(APP_NAME)
    if exe:
        return [exe]
    logger.debug(f"'{APP_NAME}' not on PATH, falling back to {sys.executable} -m")
    return [sys.executable, "-m", "git_harbor"]


def is_root() -> bool:
    return os.geteuid() == 0


def current_user() -> str:
    """Returns the login name of the effective user."""
    return pwd.getpwuid(os.geteuid()).pw_name
