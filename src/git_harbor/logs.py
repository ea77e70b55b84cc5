import gzip
import logging
import os
import re
import shutil
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class CompressedRotatingFileHandler(RotatingFileHandler):
    """A rotating file handler that gzips archives and rotates on demand.

    Size-based rollover is disabled; `rotate_now` is called once at the start
    of every job run instead. Archives are named `<log>.1.gz` (newest) through
    `<log>.<retention>.gz`.

    Attributes:
        retention (int): The number of archives kept.
    """

    def __init__(self, filename: Path, retention: int):
        super().__init__(filename, maxBytes=0, backupCount=retention, delay=True)
        self.retention = retention
        self.namer = self._gz_name
        self.rotator = self._gzip_rotate

    @staticmethod
    def _gz_name(name: str) -> str:
        return f"{name}.gz"

    @staticmethod
    def _gzip_rotate(source: str, dest: str) -> None:
        if not os.path.exists(source):
            return
        with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
            shutil.copyfileobj(src, dst)
        os.remove(source)

    def archives(self) -> list[Path]:
        """Lists existing archives of this log, newest first."""
        base = Path(self.baseFilename)
        pattern = re.compile(rf"^{re.escape(base.name)}\.(\d+)\.gz$")
        found = []
        for entry in base.parent.iterdir():
            if match := pattern.match(entry.name):
                found.append((int(match.group(1)), entry))
        return [p for _, p in sorted(found)]

    def prune(self) -> None:
        """Deletes archives beyond the retention window."""
        base = Path(self.baseFilename)
        for archive in self.archives():
            index = int(archive.name[len(base.name) + 1 : -len(".gz")])
            if index > self.retention:
                archive.unlink(missing_ok=True)
                logger.debug(f"Pruned log archive {archive.name}")

    def rotate_now(self) -> None:
        """Compresses the active log (if any) and prunes old archives."""
        if os.path.exists(self.baseFilename):
            self.doRollover()
        self.prune()


@contextmanager
def job_logger(
    job: str, log_file: Path, retention: int
) -> Iterator[logging.Logger]:
    """Attaches a freshly rotated log file to the logger of a job.

    Args:
        job (str): The job name, used as the child logger name.
        log_file (Path): The active log file of the job.
        retention (int): Number of compressed archives to keep.

    Yields:
        logging.Logger: The job logger, writing to `log_file` for the duration.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = CompressedRotatingFileHandler(log_file, retention)
    handler.rotate_now()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    job_log = logging.getLogger(f"{APP_NAME}.{job}")
    job_log.setLevel(logging.INFO)
    job_log.addHandler(handler)
    try:
        yield job_log
    finally:
        job_log.removeHandler(handler)
        handler.close()


def setup_logging(verbose: bool = False) -> None:
    """Configures console logging for the CLI.

    Job progress goes to the job log files only; the console (stderr, mailed
    by cron) receives warnings and errors unless `verbose` is set.

    Args:
        verbose (bool): If True, every message down to debug is shown.
    """
    root = logging.getLogger(APP_NAME)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Repeated calls (tests, nested invocations) must not duplicate output.
    for handler in list(root.handlers):
        if getattr(handler, "_harbor_console", False):
            root.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(
        logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s", DATE_FORMAT)
    )
    stream_handler._harbor_console = True  # type: ignore[attr-defined]
    root.addHandler(stream_handler)
