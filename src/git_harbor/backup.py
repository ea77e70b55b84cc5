import datetime
import logging

from .config import Config
from .constants import (
    APP_NAME,
    EXIT_BUSY,
    EXIT_GUARD,
    EXIT_OK,
    LOCK_FILE_NAME,
    PUSH_LOG_NAME,
)
from .git_wrapper import GitError, GitRepo
from .logs import job_logger
from .mirror import run_mirror
from .system import LeaseBusy, exclusive_lease

logger = logging.getLogger(APP_NAME)

COMMIT_PREFIX = "Automated backup: "
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


def commit_message(now: datetime.datetime | None = None) -> str:
    """Builds the message of an automated backup commit."""
    now = now or datetime.datetime.now()
    return f"{COMMIT_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}"


def _log_output(log: logging.Logger, output: str) -> None:
    for line in output.splitlines():
        if line.strip():
            log.info(line.rstrip())


def run_commit_push(config: Config) -> int:
    """Commits and pushes pending changes in the mirror tree.

    Steps:
    1. Stages every change, deletions included.
    2. Stops successfully when nothing is staged (no commit, no push).
    3. Commits with a timestamped message.
    4. Pushes every local branch to the configured remote.

    Args:
        config (Config): The active configuration.

    Returns:
        int: 0 on success or when there was nothing to commit, 1 on a guard
             failure, else the exit code of the failing git command.
    """
    repo_path = config.paths.target
    log_file = config.paths.log_dir / PUSH_LOG_NAME

    with job_logger("push", log_file, config.logs.retention) as log:
        if not repo_path.is_dir():
            log.error(f"ERROR: Repo directory not found at {repo_path}")
            return EXIT_GUARD

        try:
            repo = GitRepo(repo_path)
        except ValueError:
            log.error(f"ERROR: No .git repository found in {repo_path}")
            return EXIT_GUARD

        try:
            repo.add_all()
            if not repo.has_staged_changes():
                log.info("No changes detected. Nothing to commit.")
                return EXIT_OK
        except GitError as e:
            log.error(f"Staging failed with exit code {e.returncode}: {e}")
            return e.returncode

        log.info("Changes detected. Committing...")
        try:
            _log_output(log, repo.commit(commit_message()))
        except GitError as e:
            log.error(f"Commit failed with exit code {e.returncode}: {e}")
            return e.returncode

        remote = config.push.remote
        try:
            _log_output(log, repo.push(remote, all_branches=config.push.all_branches))
        except GitError as e:
            log.error(f"Push failed with exit code {e.returncode}.")
            _log_output(log, e.stderr)
            return e.returncode

        log.info("Push completed successfully.")
        return EXIT_OK


def run_pipeline(config: Config) -> int:
    """Runs one scheduled tick: mirror, then commit/push if the mirror succeeded.

    The whole sequence runs under an exclusive lease so that overlapping ticks
    never race on the mirror tree and its git index.

    Args:
        config (Config): The active configuration.

    Returns:
        int:    The exit code of the last step that ran, or 75 when another
                run still holds the lease.
    """
    lock_path = config.paths.log_dir / LOCK_FILE_NAME
    try:
        with exclusive_lease(lock_path):
            exit_code = run_mirror(config)
            if exit_code != EXIT_OK:
                logger.error(f"Mirror failed ({exit_code}); commit/push skipped.")
                return exit_code
            return run_commit_push(config)
    except LeaseBusy as e:
        logger.warning(f"SKIPPED: {e}")
        return EXIT_BUSY
