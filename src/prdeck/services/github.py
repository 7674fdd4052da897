"""GitHub pull request data via the `gh` CLI."""

from __future__ import annotations

import asyncio
import json
import re
import subprocess
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from prdeck.errors import FetchFailedError, RefreshCancelledError
from prdeck.models import Ref, Repository, WorkItem
from prdeck.observability.logging import get_logger

logger = get_logger(__name__)

GH_TIMEOUT = 30  # seconds

_PR_FIELDS = """
fragment pr on PullRequest {
  id
  number
  title
  url
  isDraft
  updatedAt
  mergeable
  reviewDecision
  author { login }
  repository { name url owner { login } }
  headRefName
  headRefOid
  baseRefName
  baseRefOid
  assignees(first: 10) { nodes { login } }
  reviewRequests(first: 20) {
    nodes { requestedReviewer { ... on User { login } ... on Team { slug } } }
  }
  latestReviews(first: 20) { nodes { state author { login } } }
  commits(last: 1) { nodes { commit { statusCheckRollup { state } } } }
}
"""

_SEARCH_FILTER = "is:pr is:open archived:false"

MY_PULL_REQUESTS_QUERY = (
    """
query {
  viewer { login }
  authored: search(query: "%(filter)s author:@me", type: ISSUE, first: 100) {
    nodes { ...pr }
  }
  assigned: search(query: "%(filter)s assignee:@me", type: ISSUE, first: 100) {
    nodes { ...pr }
  }
  requested: search(query: "%(filter)s review-requested:@me", type: ISSUE, first: 100) {
    nodes { ...pr }
  }
}
"""
    % {"filter": _SEARCH_FILTER}
    + _PR_FIELDS
)

SEARCH_QUERY = (
    """
query($q: String!) {
  viewer { login }
  search(query: $q, type: ISSUE, first: 1) { nodes { ...pr } }
}
"""
    + _PR_FIELDS
)

PULL_REQUEST_QUERY = (
    """
query($owner: String!, $name: String!, $number: Int!) {
  viewer { login }
  repository(owner: $owner, name: $name) { pullRequest(number: $number) { ...pr } }
}
"""
    + _PR_FIELDS
)

SUGGESTIONS_QUERY = """
query($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on PullRequest {
      id
      reviewThreads(first: 100) {
        nodes { isResolved comments(first: 1) { nodes { body } } }
      }
    }
  }
}
"""

_PR_URL = re.compile(r"github\.com/([^/\s]+)/([^/\s]+)/pull/(\d+)")

_REVIEW_DECISIONS = {
    "APPROVED": "approved",
    "CHANGES_REQUESTED": "changes-requested",
    "REVIEW_REQUIRED": "review-required",
}

_CHECK_STATES = {
    "SUCCESS": "success",
    "FAILURE": "failed",
    "ERROR": "failed",
    "PENDING": "pending",
    "EXPECTED": "pending",
}

_MERGEABLE_STATES = {
    "MERGEABLE": "mergeable",
    "CONFLICTING": "conflicts",
}


class GitHubUnavailableError(FetchFailedError):
    """Raised when the `gh` CLI is unavailable or returns an error."""

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason or "GitHub CLI unavailable")


def run_graphql(query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run a GraphQL query through `gh api graphql` and return its ``data``.

    Raises GitHubUnavailableError if gh is missing, fails, or the response
    carries GraphQL errors.
    """
    payload = json.dumps({"query": query, "variables": variables or {}})
    try:
        result = subprocess.run(
            ["gh", "api", "graphql", "--input", "-"],
            input=payload,
            capture_output=True,
            text=True,
            check=True,
            timeout=GH_TIMEOUT,
        )
    except subprocess.CalledProcessError as e:
        raise GitHubUnavailableError((e.stderr or "").strip() or f"exit {e.returncode}")
    except subprocess.TimeoutExpired:
        raise GitHubUnavailableError(f"timed out after {GH_TIMEOUT}s")
    except FileNotFoundError:
        raise GitHubUnavailableError("gh is not installed")

    try:
        response = json.loads(result.stdout)
    except json.JSONDecodeError:
        raise GitHubUnavailableError("invalid JSON response")

    if response.get("errors"):
        messages = "; ".join(e.get("message", "") for e in response["errors"])
        raise GitHubUnavailableError(messages)
    return response.get("data") or {}


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [n for n in (connection or {}).get("nodes", []) if n]


def _review_decision(node: dict[str, Any], reviews: list[dict[str, Any]]) -> str | None:
    decision = _REVIEW_DECISIONS.get(node.get("reviewDecision") or "")
    if decision in (None, "review-required") and any(
        r.get("state") == "COMMENTED" for r in reviews
    ):
        return "commented"
    return decision


def parse_pull_request(node: dict[str, Any], viewer: str) -> WorkItem:
    """Convert a GraphQL PullRequest node into a WorkItem."""
    author = (node.get("author") or {}).get("login", "")
    repo = node.get("repository") or {}
    reviews = _nodes(node.get("latestReviews"))

    requested = []
    for request in _nodes(node.get("reviewRequests")):
        reviewer = request.get("requestedReviewer") or {}
        login = reviewer.get("login") or reviewer.get("slug")
        if login:
            requested.append(login)
    reviewed = [
        (r.get("author") or {}).get("login", "")
        for r in reviews
        if (r.get("author") or {}).get("login") not in (None, author)
    ]
    assignees = [a["login"] for a in _nodes(node.get("assignees"))]

    commits = _nodes(node.get("commits"))
    rollup = (commits[0].get("commit") or {}).get("statusCheckRollup") if commits else None

    return WorkItem(
        uuid=node["id"],
        provider="github",
        number=node["number"],
        url=node["url"],
        title=node.get("title", ""),
        author=author,
        repository=Repository(
            owner=(repo.get("owner") or {}).get("login", ""),
            name=repo.get("name", ""),
            url=repo.get("url"),
        ),
        updated_at=datetime.fromisoformat(node["updatedAt"].replace("Z", "+00:00")),
        is_author=author == viewer,
        is_assignee=viewer in assignees,
        is_requested_reviewer=viewer in requested,
        review_decision=_review_decision(node, reviews),
        checks_status=_CHECK_STATES.get((rollup or {}).get("state") or ""),
        merge_status=_MERGEABLE_STATES.get(node.get("mergeable") or "", "unknown"),
        reviewers=tuple(dict.fromkeys(requested + reviewed)),
        head_ref=Ref(node.get("headRefName", ""), node.get("headRefOid")),
        base_ref=Ref(node.get("baseRefName", ""), node.get("baseRefOid")),
        is_draft=bool(node.get("isDraft")),
    )


class GitHubSource:
    """Work-item source backed by `gh api graphql`."""

    async def list_my_items(
        self,
        providers: Sequence[str],
        cancellation: asyncio.Event | None = None,
    ) -> list[WorkItem]:
        if "github" not in providers:
            return []
        if cancellation is not None and cancellation.is_set():
            raise RefreshCancelledError()

        data = await asyncio.to_thread(run_graphql, MY_PULL_REQUESTS_QUERY)

        if cancellation is not None and cancellation.is_set():
            raise RefreshCancelledError()

        viewer = (data.get("viewer") or {}).get("login", "")
        items: dict[str, WorkItem] = {}
        for alias in ("authored", "assigned", "requested"):
            for node in _nodes(data.get(alias)):
                if node.get("id") and node["id"] not in items:
                    items[node["id"]] = parse_pull_request(node, viewer)
        logger.debug("Fetched %d pull requests for %s", len(items), viewer)
        return list(items.values())

    async def search_one(self, text: str) -> WorkItem | None:
        match = _PR_URL.search(text)
        if match:
            owner, name, number = match.groups()
            data = await asyncio.to_thread(
                run_graphql,
                PULL_REQUEST_QUERY,
                {"owner": owner, "name": name, "number": int(number)},
            )
            node = ((data.get("repository") or {}).get("pullRequest")) or None
        else:
            data = await asyncio.to_thread(
                run_graphql, SEARCH_QUERY, {"q": f"is:pr {text}"}
            )
            nodes = _nodes(data.get("search"))
            node = nodes[0] if nodes else None

        if not node or not node.get("id"):
            return None
        viewer = (data.get("viewer") or {}).get("login", "")
        return parse_pull_request(node, viewer)


def count_suggestions(node: dict[str, Any]) -> int:
    """Count unresolved review threads that open with a suggestion block."""
    count = 0
    for thread in _nodes(node.get("reviewThreads")):
        if thread.get("isResolved"):
            continue
        comments = _nodes(thread.get("comments"))
        if comments and "```suggestion" in (comments[0].get("body") or ""):
            count += 1
    return count


class GitHubSuggestionCounts:
    """Pending code suggestions per pull request node id."""

    batch_size = 100

    async def counts_for(self, uuids: Iterable[str]) -> dict[str, int]:
        ids = list(uuids)
        counts: dict[str, int] = {}
        for start in range(0, len(ids), self.batch_size):
            batch = ids[start : start + self.batch_size]
            data = await asyncio.to_thread(run_graphql, SUGGESTIONS_QUERY, {"ids": batch})
            for node in data.get("nodes") or []:
                if node and node.get("id"):
                    count = count_suggestions(node)
                    if count:
                        counts[node["id"]] = count
        return counts

    async def is_signed_in(self) -> bool:
        return await asyncio.to_thread(_cli_authenticated, "gh")


def _cli_authenticated(cli: str) -> bool:
    try:
        result = subprocess.run(
            [cli, "auth", "status"],
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False
    return result.returncode == 0


class CliConnectivityProbe:
    """A provider counts as connected when its CLI is authenticated."""

    def __init__(self, clis: Sequence[str] = ("gh", "glab")) -> None:
        self.clis = tuple(clis)

    async def is_any_provider_connected(self) -> bool:
        results = await asyncio.gather(
            *(asyncio.to_thread(_cli_authenticated, cli) for cli in self.clis)
        )
        return any(results)
