from __future__ import annotations

import subprocess

import pytest

from conftest import make_item
from prdeck.models import Ref
from prdeck.worktree import (
    GitRepositoryMatcher,
    find_local_branch,
    get_current_branch,
    get_current_repo,
    list_remotes,
    normalize_remote_url,
)


def _git(repo, *args: str) -> None:
    subprocess.run(["git", "-C", str(repo), *args], check=True, capture_output=True)


@pytest.fixture
def clone(git_repo):
    """A repo whose origin points at acme/api, with a tracking branch."""
    _git(git_repo, "remote", "add", "origin", "git@github.com:acme/api.git")
    _git(git_repo, "update-ref", "refs/remotes/origin/retries", "HEAD")
    _git(git_repo, "branch", "local-retries")
    _git(git_repo, "config", "branch.local-retries.remote", "origin")
    _git(git_repo, "config", "branch.local-retries.merge", "refs/heads/retries")
    return git_repo


@pytest.mark.parametrize(
    "url",
    [
        "git@github.com:acme/api.git",
        "ssh://git@github.com/acme/api.git",
        "https://github.com/acme/api",
        "https://github.com/Acme/API.git/",
        "https://token@github.com/acme/api.git",
    ],
)
def test_normalize_remote_url(url) -> None:
    assert normalize_remote_url(url) == "github.com/acme/api"


def test_get_current_repo(git_repo, monkeypatch) -> None:
    monkeypatch.chdir(git_repo)
    result = get_current_repo()
    assert result is not None
    repo_name, repo_path = result
    assert repo_name == git_repo.name
    assert repo_path == str(git_repo)


def test_get_current_repo_not_git(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert get_current_repo() is None


def test_list_remotes(clone) -> None:
    assert list_remotes(str(clone)) == {"origin": "git@github.com:acme/api.git"}


def test_get_current_branch(git_repo) -> None:
    assert get_current_branch(str(git_repo)) == "main"


def test_find_local_branch_by_upstream(clone) -> None:
    assert find_local_branch(str(clone), "origin", "retries") == "local-retries"


def test_find_local_branch_by_name(clone) -> None:
    _git(clone, "branch", "hotfix")
    assert find_local_branch(str(clone), "origin", "hotfix") == "hotfix"
    assert find_local_branch(str(clone), "origin", "missing") is None


@pytest.mark.asyncio
async def test_matcher_finds_tracking_branch(clone) -> None:
    item = make_item(head_ref=Ref("retries"))
    match = await GitRepositoryMatcher([clone]).match(item)

    assert match is not None
    assert match.repo_path == str(clone)
    assert match.remote == "origin"
    assert match.branch == "local-retries"
    assert not match.is_current


@pytest.mark.asyncio
async def test_matcher_detects_current_branch(clone) -> None:
    _git(clone, "checkout", "local-retries")
    item = make_item(head_ref=Ref("retries"))

    match = await GitRepositoryMatcher([clone]).match(item)

    assert match is not None
    assert match.is_current


@pytest.mark.asyncio
async def test_matcher_repo_without_branch(clone) -> None:
    item = make_item(head_ref=Ref("unknown"))
    match = await GitRepositoryMatcher([clone]).match(item)
    assert match is not None
    assert match.branch is None


@pytest.mark.asyncio
async def test_matcher_other_repository(clone, tmp_path) -> None:
    item = make_item(owner="acme", repo="web")
    matcher = GitRepositoryMatcher([clone, tmp_path / "missing"])
    assert await matcher.match(item) is None
