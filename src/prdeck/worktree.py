from __future__ import annotations

import asyncio
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

from prdeck.models import LocalBranchMatch, WorkItem
from prdeck.observability.logging import get_logger

logger = get_logger(__name__)

_SSH_URL = re.compile(r"^(?:ssh://)?git@([^:/]+)[:/](.+)$")


def get_current_repo() -> tuple[str, str] | None:
    """Return (repo_name, repo_path) if cwd is inside a git repo.

    When inside a worktree, resolves to the main repository (not the worktree).
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-common-dir"],
            capture_output=True,
            text=True,
            check=True,
        )
        git_common_dir = Path(result.stdout.strip())
        if not git_common_dir.is_absolute():
            # In a normal (non-worktree) repo, git returns relative ".git"
            git_common_dir = (Path.cwd() / git_common_dir).resolve()
        repo_path = str(git_common_dir.parent)
        repo_name = git_common_dir.parent.name
        return repo_name, repo_path
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def normalize_remote_url(url: str) -> str:
    """Reduce a remote URL to ``host/owner/name`` in lowercase.

    ``git@github.com:acme/api.git`` and ``https://github.com/acme/api``
    both become ``github.com/acme/api``.
    """
    url = url.strip()
    match = _SSH_URL.match(url)
    if match:
        host, path = match.groups()
    else:
        url = re.sub(r"^[a-z+]+://", "", url)
        url = url.split("@", 1)[-1]
        host, _, path = url.partition("/")
    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return f"{host}/{path}".lower()


def list_remotes(repo_path: str) -> dict[str, str]:
    """Return {remote_name: fetch_url} for a repo."""
    result = subprocess.run(
        ["git", "-C", repo_path, "remote", "-v"],
        capture_output=True,
        text=True,
    )
    remotes: dict[str, str] = {}
    if result.returncode != 0:
        return remotes
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[2] == "(fetch)":
            remotes[parts[0]] = parts[1]
    return remotes


def get_current_branch(repo_path: str) -> str | None:
    """Return the checked-out branch, or None on a detached HEAD."""
    result = subprocess.run(
        ["git", "-C", repo_path, "symbolic-ref", "--quiet", "--short", "HEAD"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def find_local_branch(repo_path: str, remote: str, branch: str) -> str | None:
    """Find a local branch tracking ``remote/branch``.

    Falls back to a local branch with the same name when none tracks it.
    """
    result = subprocess.run(
        [
            "git",
            "-C",
            repo_path,
            "for-each-ref",
            "--format=%(refname:short)\t%(upstream:short)",
            "refs/heads",
        ],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return None

    upstream = f"{remote}/{branch}"
    same_name = None
    for line in result.stdout.splitlines():
        local, _, tracking = line.partition("\t")
        if tracking == upstream:
            return local
        if local == branch:
            same_name = local
    return same_name


def match_repository(repo_path: str, item: WorkItem) -> LocalBranchMatch | None:
    """Match a work item against one local clone."""
    repo = item.repository
    targets = {normalize_remote_url(repo.url)} if repo.url else set()
    full_name = repo.full_name.lower()

    for remote, url in list_remotes(repo_path).items():
        normalized = normalize_remote_url(url)
        if normalized not in targets and not normalized.endswith(f"/{full_name}"):
            continue

        branch = None
        if item.head_ref is not None and item.head_ref.name:
            branch = find_local_branch(repo_path, remote, item.head_ref.name)
        is_current = branch is not None and branch == get_current_branch(repo_path)
        return LocalBranchMatch(
            repo_path=repo_path, remote=remote, branch=branch, is_current=is_current
        )
    return None


class GitRepositoryMatcher:
    """Looks for pull request branches in a configured set of local clones."""

    def __init__(self, repo_paths: Sequence[str | Path]) -> None:
        self.repo_paths = [str(p) for p in repo_paths]

    def _match(self, item: WorkItem) -> LocalBranchMatch | None:
        best: LocalBranchMatch | None = None
        for repo_path in self.repo_paths:
            if not Path(repo_path).is_dir():
                logger.debug("Skipping missing repository %s", repo_path)
                continue
            match = match_repository(repo_path, item)
            if match is None:
                continue
            if match.is_current:
                return match
            if best is None or (best.branch is None and match.branch is not None):
                best = match
        return best

    async def match(self, item: WorkItem) -> LocalBranchMatch | None:
        return await asyncio.to_thread(self._match, item)
