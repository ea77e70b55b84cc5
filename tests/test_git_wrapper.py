from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_harbor.git_wrapper import GitError, GitRepo


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    # A fake .git directory is enough for GitRepo to accept the path.
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_rejects_non_repository(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_raises_git_error_with_exit_code(
    mocker: MagicMock, repo: GitRepo
) -> None:
    """Verifies that git failures keep the exit status for the caller."""
    mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=128, stdout="", stderr="fatal: bad object"),
    )

    with pytest.raises(GitError) as excinfo:
        repo._run(["log"])

    assert excinfo.value.returncode == 128
    assert "fatal: bad object" in str(excinfo.value)


@pytest.mark.parametrize("returncode, expected", [(0, False), (1, True)])
def test_has_staged_changes(
    mocker: MagicMock, repo: GitRepo, returncode: int, expected: bool
) -> None:
    mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=returncode, stdout="", stderr=""),
    )
    assert repo.has_staged_changes() is expected


def test_has_staged_changes_raises_on_git_failure(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=129, stdout="", stderr="usage"),
    )
    with pytest.raises(GitError):
        repo.has_staged_changes()


def test_push_arguments(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that push targets every branch unless told otherwise."""
    mock_run = mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=0, stdout="", stderr="Everything up-to-date"),
    )

    assert repo.push("origin") == "Everything up-to-date"
    assert mock_run.call_args[0][0] == ["git", "push", "--all", "origin"]

    repo.push("localpush", all_branches=False)
    assert mock_run.call_args[0][0] == ["git", "push", "localpush", "HEAD"]


def test_push_failure_raises(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=1, stdout="", stderr="rejected"),
    )
    with pytest.raises(GitError) as excinfo:
        repo.push("origin")
    assert excinfo.value.returncode == 1


def test_remotes_parsing(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "localpush\t/home/svc/gitrepo.git (fetch)\n"
        "localpush\t/home/svc/gitrepo.git (push)\n"
        "origin\tgit@github.com:acme/svc.git (fetch)\n"
        "origin\tgit@github.com:acme/svc.git (push)"
    )

    assert repo.remotes() == {
        "localpush": "/home/svc/gitrepo.git",
        "origin": "git@github.com:acme/svc.git",
    }


def test_set_remote_adds_or_updates(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "remotes", return_value={"origin": "old"})
    mock_run = mocker.patch.object(repo, "_run")

    repo.set_remote("origin", "new")
    mock_run.assert_called_with(["remote", "set-url", "origin", "new"], capture=False)

    repo.set_remote("localpush", "/bare")
    mock_run.assert_called_with(["remote", "add", "localpush", "/bare"], capture=False)


def test_add_stages_given_paths(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch.object(repo, "_run")

    repo.add("README.md", "docs/guide.md")

    mock_run.assert_called_once_with(
        ["add", "--", "README.md", "docs/guide.md"], capture=False
    )


def test_rev_parse_missing_revision(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "_run", side_effect=GitError(["rev-parse"], 1))
    assert repo.rev_parse("HEAD") is None
