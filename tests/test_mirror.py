"""Tests for the mirror job and its copy engines."""

import os
import shutil
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_harbor import mirror
from git_harbor.config import AccountConfig, Config, PathsConfig
from git_harbor.constants import MIRROR_LOG_NAME
from git_harbor.mirror import BuiltinEngine, RsyncEngine, select_engine
from git_harbor.rules import RuleSet

requires_rsync = pytest.mark.skipif(
    shutil.which("rsync") is None, reason="rsync executable not available"
)

engines = pytest.mark.parametrize(
    "engine", ["builtin", pytest.param("rsync", marks=requires_rsync)]
)


@pytest.fixture
def target(config: Config) -> Path:
    """The mirror tree with (fake) git metadata, so the guard lets runs through."""
    path = config.paths.target
    (path / ".git").mkdir(parents=True)
    (path / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    return path


def _log_text(config: Config) -> str:
    return (config.paths.log_dir / MIRROR_LOG_NAME).read_text()


@engines
def test_excluded_files_are_not_mirrored(
    config: Config, target: Path, engine: str
) -> None:
    """Verifies exclusion enforcement and byte-identical copies of the rest."""
    config.mirror.engine = engine
    source = config.paths.source
    (source / "notes.txt").write_bytes(b"keep me\x00\x01")
    (source / "api.secret.json").write_text('{"key": "hunter2"}')
    (source / "app").mkdir()
    (source / "app" / "main.py").write_text("print('hi')\n")
    (source / "app" / "__pycache__").mkdir()
    (source / "app" / "__pycache__" / "main.pyc").write_bytes(b"\x00")
    (source / "cron.log").write_text("noise")

    assert mirror.run_mirror(config) == 0

    assert (target / "notes.txt").read_bytes() == b"keep me\x00\x01"
    assert (target / "app" / "main.py").read_text() == "print('hi')\n"
    assert not (target / "api.secret.json").exists()
    assert not (target / "app" / "__pycache__").exists()
    assert not (target / "cron.log").exists()
    # Nested mirror, bare repo and log directory never recurse into the copy.
    assert not (target / "gitrepo").exists()
    assert not (target / "logs").exists()
    assert (target / ".git" / "HEAD").exists()
    assert "Sync completed successfully." in _log_text(config)


@engines
def test_deletes_extraneous_but_never_touches_excluded(
    config: Config, target: Path, engine: str
) -> None:
    """Verifies delete-on-absence while excluded target entries stay put."""
    config.mirror.engine = engine
    (config.paths.source / "current.txt").write_text("new")
    (target / "stale.txt").write_text("gone soon")
    (target / "old_dir").mkdir()
    (target / "old_dir" / "file.txt").write_text("gone soon")
    (target / "local.log").write_text("excluded, so protected")

    assert mirror.run_mirror(config) == 0

    assert (target / "current.txt").read_text() == "new"
    assert not (target / "stale.txt").exists()
    assert not (target / "old_dir").exists()
    assert (target / "local.log").read_text() == "excluded, so protected"


def test_updates_changed_files_and_replaces_type_changes(
    config: Config, target: Path
) -> None:
    source = config.paths.source
    (source / "data.txt").write_text("v1")
    (source / "thing").mkdir()
    assert mirror.run_mirror(config) == 0

    (source / "data.txt").write_text("version 2")
    (source / "thing").rmdir()
    (source / "thing").write_text("now a file")
    assert mirror.run_mirror(config) == 0

    assert (target / "data.txt").read_text() == "version 2"
    assert (target / "thing").is_file()


def test_symlinks_are_recreated_not_followed(config: Config, target: Path) -> None:
    source = config.paths.source
    (source / "real.txt").write_text("data")
    os.symlink("real.txt", source / "link.txt")

    assert mirror.run_mirror(config) == 0

    assert (target / "link.txt").is_symlink()
    assert os.readlink(target / "link.txt") == "real.txt"


def test_identical_source_and_target_is_refused(
    home: Path, mocker: MagicMock
) -> None:
    """Verifies the destructive-mismatch guard: exit 1 and no copy attempted."""
    (home / ".git").mkdir()
    (home / "file.txt").write_text("precious")
    conf = Config(account=AccountConfig(home=home), paths=PathsConfig(target=home))
    engine = mocker.patch("git_harbor.mirror.select_engine")

    assert mirror.run_mirror(conf) == 1

    engine.assert_not_called()
    assert (home / "file.txt").read_text() == "precious"
    assert "Source and target directories are identical" in _log_text(conf)


def test_target_without_git_metadata_is_refused(
    config: Config, mocker: MagicMock
) -> None:
    config.paths.target.mkdir()
    (config.paths.source / "file.txt").write_text("x")
    engine = mocker.patch("git_harbor.mirror.select_engine")

    assert mirror.run_mirror(config) == 1

    engine.assert_not_called()
    assert not (config.paths.target / "file.txt").exists()
    assert "does not appear to be a Git repository" in _log_text(config)


def test_log_records_start_before_outcome(config: Config, target: Path) -> None:
    mirror.run_mirror(config)

    lines = _log_text(config).splitlines()
    assert "Starting sync from" in lines[0]
    assert lines[-1].endswith("Sync completed successfully.")


def test_builtin_engine_reports_partial_transfer(
    config: Config, target: Path, mocker: MagicMock
) -> None:
    """Verifies per-entry failures finish the pass and yield exit code 23."""
    (config.paths.source / "a.txt").write_text("a")
    (config.paths.source / "b.txt").write_text("b")
    real_copy = mirror.shutil.copy2

    def flaky_copy(src: str, dst: Path) -> None:
        if str(src).endswith("a.txt"):
            raise PermissionError("denied")
        real_copy(src, dst)

    mocker.patch("git_harbor.mirror.shutil.copy2", side_effect=flaky_copy)

    assert mirror.run_mirror(config) == 23
    assert (target / "b.txt").exists()
    log = _log_text(config)
    assert "ERROR a.txt: denied" in log
    assert "Sync failed with exit code 23" in log


def test_rsync_engine_command_and_exit_code(
    config: Config, target: Path, mocker: MagicMock
) -> None:
    """Verifies the rsync invocation and that its exit code becomes the job's."""
    config.mirror.engine = "rsync"
    mock_run = mocker.patch(
        "git_harbor.mirror.subprocess.run",
        return_value=MagicMock(returncode=24, stdout="sending list\n", stderr=""),
    )

    assert mirror.run_mirror(config) == 24

    cmd = mock_run.call_args[0][0]
    assert cmd[:3] == ["rsync", "-av", "--delete"]
    assert "--exclude=.git/" in cmd
    assert "--exclude=/gitrepo/" in cmd
    assert cmd[-2] == f"{config.paths.source}/"
    assert cmd[-1] == f"{target}/"
    log = _log_text(config)
    assert "sending list" in log
    assert "Sync failed with exit code 24" in log


def test_rsync_engine_missing_binary(mocker: MagicMock, tmp_path: Path) -> None:
    mocker.patch("git_harbor.mirror.subprocess.run", side_effect=FileNotFoundError)
    log = MagicMock()

    assert RsyncEngine().sync(tmp_path, tmp_path / "t", RuleSet(), log) == 127
    log.error.assert_called_once()


def test_select_engine_auto(mocker: MagicMock) -> None:
    mocker.patch("git_harbor.mirror.shutil.which", return_value=None)
    assert isinstance(select_engine("auto"), BuiltinEngine)

    mocker.patch("git_harbor.mirror.shutil.which", return_value="/usr/bin/rsync")
    assert isinstance(select_engine("auto"), RsyncEngine)
    assert isinstance(select_engine("builtin"), BuiltinEngine)


def test_invalid_exclusion_rule_aborts_the_run(
    config: Config, target: Path, mocker: MagicMock
) -> None:
    """Verifies a bad rule is logged as a guard failure instead of crashing."""
    config.mirror.exclude = ["/"]
    (config.paths.source / "file.txt").write_text("x")
    engine = mocker.patch("git_harbor.mirror.select_engine")

    assert mirror.run_mirror(config) == 1

    engine.assert_not_called()
    assert not (target / "file.txt").exists()
    lines = _log_text(config).splitlines()
    assert "Starting sync from" in lines[0]
    assert "ERROR: Invalid exclusion rule" in lines[-1]
    assert lines[-1].endswith("Aborting.")
