"""One-shot bootstrap of the service account layout and repositories.

Nothing here runs on the schedule. Every step checks before it acts, so
`setup` can be repeated after a partial or older installation.
"""

import logging
import re
from pathlib import Path

from rich.console import Console

from .config import Config
from .constants import APP_NAME, LOCAL_PUSH_REMOTE, UPSTREAM_REMOTE
from .git_wrapper import GitRepo, init_repo, is_bare_repo, set_bare_remote

console = Console()
logger = logging.getLogger(APP_NAME)

_GITHUB_HTTPS = re.compile(r"^https://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")


def to_ssh_url(url: str) -> str:
    """Rewrites a GitHub HTTPS URL to its SSH form; other URLs pass through.

    Example: 'https://github.com/owner/repo' -> 'git@github.com:owner/repo.git'
    """
    match = _GITHUB_HTTPS.match(url.strip())
    if not match:
        return url.strip()
    owner, repo = match.groups()
    return f"git@github.com:{owner}/{repo}.git"


def ensure_layout(config: Config) -> list[Path]:
    """Creates the service account directory tree.

    Returns:
        list[Path]: The directories that did not exist before.
    """
    paths = config.paths
    created = []
    for directory in (
        paths.install_dir,
        paths.services_dir,
        paths.log_dir,
        paths.target,
        paths.bare_repo.parent,
    ):
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            created.append(directory)
            logger.info(f"Created directory {directory}")
    return created


def ensure_bare_repo(config: Config) -> bool:
    """Initializes the local bare repository if missing.

    Returns:
        bool: True if the repository was created.
    """
    bare = config.paths.bare_repo
    if is_bare_repo(bare):
        return False
    logger.info(f"Initializing bare repository at {bare}")
    init_repo(bare, bare=True)
    return True


def _identity(config: Config) -> tuple[str, str]:
    name = config.git.user_name or config.account.user
    email = config.git.user_email or f"{config.account.user}@localhost"
    return name, email


def ensure_mirror_repo(config: Config) -> bool:
    """Initializes the mirror tree as a git repository with a first commit.

    The local identity is persisted on every call so that the scheduled
    commits never fail with an unknown author.

    Returns:
        bool: True if the repository was created.
    """
    target = config.paths.target
    name, email = _identity(config)
    created = False

    if not (target / ".git").exists():
        logger.info(f"Initializing working repository at {target}")
        init_repo(target)
        created = True

    repo = GitRepo(target)
    repo.set_config("user.name", name)
    repo.set_config("user.email", email)

    if created and repo.rev_parse("HEAD") is None:
        readme = target / "README.md"
        if not readme.exists():
            readme.write_text(f"# {config.account.user} repo\n")
        repo.add("README.md")
        repo.commit("initial commit")

    return created


def configure_remotes(config: Config) -> dict[str, str]:
    """Points the mirror and the bare repository at their remotes.

    The mirror gets `localpush` (the bare repository) and, when a remote URL
    is configured, `origin`. The bare repository gets `upstream`.

    Returns:
        dict[str, str]: The remotes of the mirror after configuration.
    """
    repo = GitRepo(config.paths.target)
    repo.set_remote(LOCAL_PUSH_REMOTE, str(config.paths.bare_repo))

    if config.git.remote_url:
        url = to_ssh_url(config.git.remote_url)
        repo.set_remote(config.push.remote, url)
        set_bare_remote(config.paths.bare_repo, UPSTREAM_REMOTE, url)
    else:
        logger.info("No remote URL configured; skipping origin/upstream.")

    return repo.remotes()


def setup(config: Config) -> None:
    """Bootstraps the directory layout and both repositories.

    Args:
        config (Config): The active configuration.
    """
    with console.status("Preparing directory layout...", spinner="dots"):
        ensure_layout(config)

    if ensure_bare_repo(config):
        console.print(
            f"   Bare repository created: [cyan]{config.paths.bare_repo}[/cyan]"
        )
    if ensure_mirror_repo(config):
        console.print(
            f"   Mirror repository created: [cyan]{config.paths.target}[/cyan]"
        )

    remotes = configure_remotes(config)
    for name, url in sorted(remotes.items()):
        console.print(f"   Remote [bold]{name}[/bold] -> {url}")

    console.print("[bold green]SUCCESS:[/bold green] Setup complete.")
    console.print(
        "   Register the public key of this account with the remote host, then run "
        "[green]git-harbor install-schedule[/green]."
    )
