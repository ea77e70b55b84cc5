"""The mirror job: a filtered, delete-on-absence copy of the source tree.

The target must already be a git working tree. Entries matched by the
exclusion policy are never touched on either side, which also keeps the
target's own `.git` directory out of reach of the delete phase.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from .config import Config
from .constants import (
    APP_NAME,
    EXIT_GUARD,
    EXIT_OK,
    EXIT_PARTIAL,
    MIRROR_LOG_NAME,
)
from .logs import job_logger
from .rules import RuleSet, build_ruleset

logger = logging.getLogger(APP_NAME)


class MirrorEngine:
    """Base class for the copy step of the mirror job."""

    name = "base"

    def sync(
        self, source: Path, target: Path, rules: RuleSet, log: logging.Logger
    ) -> int:
        """Mirrors `source` into `target`.

        Returns:
            int: The exit code of the copy operation (0 on success).
        """
        raise NotImplementedError


class RsyncEngine(MirrorEngine):
    """Delegates the copy to `rsync -av --delete`."""

    name = "rsync"

    def command(self, source: Path, target: Path, rules: RuleSet) -> list[str]:
        # Trailing slashes copy the contents of source, not the directory itself.
        return [
            "rsync",
            "-av",
            "--delete",
            *rules.rsync_args(),
            f"{source}/",
            f"{target}/",
        ]

    def sync(
        self, source: Path, target: Path, rules: RuleSet, log: logging.Logger
    ) -> int:
        cmd = self.command(source, target, rules)
        try:
            res = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            log.error("rsync executable not found.")
            return 127

        for line in (res.stdout + res.stderr).splitlines():
            if line.strip():
                log.info(line.rstrip())
        return res.returncode


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class BuiltinEngine(MirrorEngine):
    """A pure-Python single-pass mirror with rsync's quick-check semantics.

    Files are copied when size or modification time (to the second) differ.
    Errors on individual entries are logged and the pass continues; the run
    then reports a partial transfer.

    Attributes:
        copied (int): Entries created or updated in the target.
        deleted (int): Entries removed from the target.
        errors (list[str]): Relative paths that could not be processed.
    """

    name = "builtin"

    def __init__(self) -> None:
        self.copied = 0
        self.deleted = 0
        self.errors: list[str] = []
        self._log = logger

    def sync(
        self, source: Path, target: Path, rules: RuleSet, log: logging.Logger
    ) -> int:
        self._log = log
        self._walk(source, target, "", rules)
        log.info(
            f"{self.copied} entries copied, {self.deleted} deleted, "
            f"{len(self.errors)} errors."
        )
        return EXIT_PARTIAL if self.errors else EXIT_OK

    def _fail(self, rel_path: str, error: OSError) -> None:
        self.errors.append(rel_path)
        self._log.error(f"ERROR {rel_path}: {error}")

    def _walk(self, src_dir: Path, dst_dir: Path, rel: str, rules: RuleSet) -> None:
        try:
            entries = sorted(os.scandir(src_dir), key=lambda e: e.name)
        except OSError as e:
            self._fail(rel or ".", e)
            return

        kept = set()
        for entry in entries:
            rel_path = f"{rel}/{entry.name}" if rel else entry.name
            is_dir = entry.is_dir(follow_symlinks=False)
            if rules.excludes(rel_path, is_dir):
                continue
            kept.add(entry.name)

            dst = dst_dir / entry.name
            try:
                if entry.is_symlink():
                    self._sync_link(entry, dst, rel_path)
                elif is_dir:
                    if dst.is_symlink() or (dst.exists() and not dst.is_dir()):
                        _remove(dst)
                    if not dst.exists():
                        dst.mkdir()
                        self.copied += 1
                        self._log.info(f"{rel_path}/")
                    self._walk(Path(entry.path), dst, rel_path, rules)
                    shutil.copystat(entry.path, dst)
                elif entry.is_file(follow_symlinks=False):
                    self._sync_file(entry, dst, rel_path)
                else:
                    self._log.info(f"skipping non-regular file \"{rel_path}\"")
            except OSError as e:
                self._fail(rel_path, e)

        self._delete_extraneous(dst_dir, rel, kept, rules)

    def _delete_extraneous(
        self, dst_dir: Path, rel: str, kept: set[str], rules: RuleSet
    ) -> None:
        try:
            existing = sorted(os.scandir(dst_dir), key=lambda e: e.name)
        except OSError as e:
            self._fail(rel or ".", e)
            return

        for entry in existing:
            if entry.name in kept:
                continue
            rel_path = f"{rel}/{entry.name}" if rel else entry.name
            if rules.excludes(rel_path, entry.is_dir(follow_symlinks=False)):
                continue
            try:
                _remove(Path(entry.path))
            except OSError as e:
                self._fail(rel_path, e)
                continue
            self.deleted += 1
            self._log.info(f"deleting {rel_path}")

    def _sync_file(self, entry: os.DirEntry, dst: Path, rel_path: str) -> None:
        st = entry.stat(follow_symlinks=False)
        if dst.is_symlink() or dst.is_dir():
            _remove(dst)
        elif dst.exists():
            dst_st = dst.stat()
            same_size = dst_st.st_size == st.st_size
            same_mtime = int(dst_st.st_mtime) == int(st.st_mtime)
            if same_size and same_mtime:
                return
        shutil.copy2(entry.path, dst)
        self.copied += 1
        self._log.info(rel_path)

    def _sync_link(self, entry: os.DirEntry, dst: Path, rel_path: str) -> None:
        link_target = os.readlink(entry.path)
        if dst.is_symlink():
            if os.readlink(dst) == link_target:
                return
            dst.unlink()
        elif dst.exists():
            _remove(dst)
        os.symlink(link_target, dst)
        self.copied += 1
        self._log.info(f"{rel_path} -> {link_target}")


def select_engine(name: str) -> MirrorEngine:
    """Returns the copy engine for a configured engine name.

    Args:
        name (str): 'rsync', 'builtin', or 'auto' (rsync when installed).

    Returns:
        MirrorEngine: A fresh engine instance.
    """
    if name == "auto":
        name = "rsync" if shutil.which("rsync") else "builtin"
    if name == "rsync":
        return RsyncEngine()
    return BuiltinEngine()


def check_preconditions(source: Path, target: Path) -> str | None:
    """Validates the mirror configuration before anything is copied.

    Args:
        source (Path): The live working directory.
        target (Path): The mirror tree.

    Returns:
        str | None: The reason the run must abort, or None if it may proceed.
    """
    if source.resolve() == target.resolve():
        return "Source and target directories are identical."
    if not source.is_dir():
        return f"Source directory not found: {source}."
    if not (target / ".git").exists():
        return "Target does not appear to be a Git repository."
    return None


def run_mirror(config: Config) -> int:
    """Runs the mirror job once.

    Rotates the job log, logs the start, validates source and target, copies
    with the configured engine and logs the outcome.

    Args:
        config (Config): The active configuration.

    Returns:
        int: 0 on success, 1 on a guard failure, else the copy's exit code.
    """
    paths = config.paths
    log_file = paths.log_dir / MIRROR_LOG_NAME

    with job_logger("mirror", log_file, config.logs.retention) as log:
        log.info(f"Starting sync from {paths.source} to {paths.target}")

        if reason := check_preconditions(paths.source, paths.target):
            log.error(f"ERROR: {reason} Aborting.")
            return EXIT_GUARD

        try:
            rules = build_ruleset(config)
        except ValueError as e:
            log.error(f"ERROR: Invalid exclusion rule: {e}. Aborting.")
            return EXIT_GUARD

        engine = select_engine(config.mirror.engine)
        log.info(f"Using {engine.name} engine with {len(rules)} exclusion rules.")

        exit_code = engine.sync(paths.source, paths.target, rules, log)
        if exit_code == EXIT_OK:
            log.info("Sync completed successfully.")
        else:
            log.error(f"Sync failed with exit code {exit_code}")
        return exit_code
