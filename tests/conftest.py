"""Shared fixtures: temporary service-account homes and real git repositories."""

import shutil
import subprocess
from pathlib import Path

import pytest

from git_harbor.config import Config
from git_harbor.git_wrapper import GitRepo, init_repo

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git executable not available"
)


def git(*args: str, cwd: Path | None = None) -> str:
    """Runs a git command for test assertions and returns its stdout."""
    res = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


def make_repo(path: Path) -> GitRepo:
    """Initializes a working repository with a local test identity."""
    init_repo(path)
    repo = GitRepo(path)
    repo.set_config("user.name", "Harbor Test")
    repo.set_config("user.email", "harbor@example.com")
    repo.set_config("commit.gpgsign", "false")
    return repo


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A fresh service account home directory."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config(home: Path) -> Config:
    """A configuration rooted at `home`, using the pure-Python mirror engine."""
    conf = Config.for_home(home)
    conf.mirror.engine = "builtin"
    return conf


@pytest.fixture
def mirror_repo(config: Config, tmp_path: Path) -> GitRepo:
    """The mirror tree as a git repository with one commit and a bare 'origin'.

    Args:
        config (Config): The configuration fixture.
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    target = config.paths.target
    repo = make_repo(target)
    (target / "README.md").write_text("# mirror\n")
    repo.add("README.md")
    repo.commit("initial commit")

    remote = tmp_path / "remote.git"
    init_repo(remote, bare=True)
    repo.set_remote("origin", str(remote))
    return repo
