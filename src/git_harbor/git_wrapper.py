import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """A git command exited with a non-zero status.

    Attributes:
        returncode (int): The exit status of the git process.
        stderr (str): The captured standard error, if any.
    """

    def __init__(self, args: list[str], returncode: int, stderr: str = ""):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Git error (git {' '.join(args)}): {detail}")


def _git(
    args: list[str], cwd: Path | None = None, env: dict | None = None
) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        env=env,
    )


def init_repo(path: Path, bare: bool = False) -> None:
    """Initializes a git repository (bare or with a working tree) at `path`.

    Args:
        path (Path): The repository directory; created if missing.
        bare (bool, optional): Whether to create a bare repository.
                               Defaults to False.

    Raises:
        GitError: If `git init` fails.
    """
    path.mkdir(parents=True, exist_ok=True)
    args = ["init", "--bare", str(path)] if bare else ["init", str(path)]
    res = _git(args)
    if res.returncode != 0:
        raise GitError(args, res.returncode, res.stderr)


def is_bare_repo(path: Path) -> bool:
    """Checks whether `path` looks like an initialized bare repository."""
    return (path / "HEAD").is_file() and (path / "objects").is_dir()


def set_bare_remote(path: Path, name: str, url: str) -> None:
    """Adds or repoints a remote of the bare repository at `path`."""
    base = ["--git-dir", str(path)]
    res = _git([*base, "remote", "get-url", name])
    args = [*base, "remote", "set-url" if res.returncode == 0 else "add", name, url]
    res = _git(args)
    if res.returncode != 0:
        raise GitError(args, res.returncode, res.stderr)


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Commands run with `subprocess` in the repository directory. Failures raise
    `GitError`, which keeps the exit status so jobs can propagate it.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        res = _git(args, cwd=self.path, env=env)
        if res.returncode != 0:
            raise GitError(args, res.returncode, res.stderr or res.stdout)
        return res.stdout.strip() if capture else ""

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch."""
        return self._run(["branch", "--show-current"])

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository."""
        output = self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    def add(self, *paths: str) -> None:
        """Stages the given paths."""
        self._run(["add", "--", *paths], capture=False)

    def add_all(self) -> None:
        """Stages all changes, including deletions, relative to the last commit."""
        self._run(["add", "-A"], capture=False)

    def has_staged_changes(self) -> bool:
        """Checks whether the index differs from HEAD.

        Returns:
            bool: True if `git diff --cached --quiet` reports a difference.

        Raises:
            GitError: If git fails for a reason other than a difference.
        """
        args = ["diff", "--cached", "--quiet"]
        res = _git(args, cwd=self.path)
        if res.returncode == 0:
            return False
        if res.returncode == 1:
            return True
        raise GitError(args, res.returncode, res.stderr)

    def commit(self, message: str) -> str:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.

        Returns:
            str: The output of `git commit`.
        """
        return self._run(["commit", "-m", message])

    def push(self, remote: str, all_branches: bool = True) -> str:
        """Pushes to a remote.

        Args:
            remote (str): The remote name.
            all_branches (bool, optional): Push every local branch (`--all`)
                                           instead of only the current one.
                                           Defaults to True.

        Returns:
            str: The combined output reported by git.
        """
        cmd = ["push", "--all", remote] if all_branches else ["push", remote, "HEAD"]
        res = _git(cmd, cwd=self.path)
        if res.returncode != 0:
            raise GitError(cmd, res.returncode, res.stderr or res.stdout)
        # git reports push progress on stderr.
        return "\n".join(s.strip() for s in (res.stdout, res.stderr) if s.strip())

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash, or None if it does not exist."""
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def set_config(self, key: str, value: str) -> None:
        """Persists a repository-local configuration value."""
        self._run(["config", key, value], capture=False)

    def remotes(self) -> dict[str, str]:
        """Maps each configured remote name to its fetch URL."""
        output = self._run(["remote", "-v"])
        found: dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] not in found:
                found[parts[0]] = parts[1]
        return found

    def set_remote(self, name: str, url: str) -> None:
        """Adds a remote, or repoints it when it already exists."""
        if name in self.remotes():
            self._run(["remote", "set-url", name, url], capture=False)
        else:
            self._run(["remote", "add", name, url], capture=False)
