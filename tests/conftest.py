from __future__ import annotations

import subprocess
from datetime import datetime, timedelta, timezone

import pytest

from prdeck.errors import RefreshCancelledError
from prdeck.models import Annotation, LocalBranchMatch, Ref, Repository, WorkItem
from prdeck.observability.telemetry import reset_counters

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_telemetry():
    """Start every test with empty telemetry counters."""
    reset_counters()
    yield
    reset_counters()


def make_item(
    uuid: str = "PR_1",
    number: int = 1,
    owner: str = "acme",
    repo: str = "api",
    days_ago: float = 1,
    **fields: object,
) -> WorkItem:
    """Build a WorkItem authored by the viewer with reviewers assigned."""
    defaults: dict[str, object] = {
        "provider": "github",
        "url": f"https://github.com/{owner}/{repo}/pull/{number}",
        "title": f"Change {number}",
        "author": "me",
        "is_author": True,
        "reviewers": ("alice",),
        "head_ref": Ref(f"feature-{number}", "abc123"),
        "base_ref": Ref("main", "def456"),
    }
    defaults.update(fields)
    return WorkItem(
        uuid=uuid,
        number=number,
        repository=Repository(owner, repo, f"https://github.com/{owner}/{repo}"),
        updated_at=NOW - timedelta(days=days_ago),
        **defaults,  # type: ignore[arg-type]
    )


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "myrepo"
    repo.mkdir()
    subprocess.run(["git", "init", "-b", "main", str(repo)], check=True, capture_output=True)
    subprocess.run(
        [
            "git",
            "-C",
            str(repo),
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            "commit",
            "--allow-empty",
            "-m",
            "init",
        ],
        check=True,
        capture_output=True,
    )
    return repo


class FakeSource:
    def __init__(self, items: list[WorkItem] | None = None) -> None:
        self.items = items or []
        self.error: Exception | None = None
        self.calls = 0
        self.searches: list[str] = []

    async def list_my_items(self, providers, cancellation=None):
        self.calls += 1
        if cancellation is not None and cancellation.is_set():
            raise RefreshCancelledError()
        if self.error is not None:
            raise self.error
        return list(self.items)

    async def search_one(self, text):
        self.searches.append(text)
        return self.items[0] if self.items else None


class FakeAnnotations:
    def __init__(self, annotations: list[Annotation] | None = None) -> None:
        self.annotations = annotations or []
        self.error: Exception | None = None
        self._next = 0

    def list(self, kind=None):
        if self.error is not None:
            raise self.error
        return [a for a in self.annotations if kind is None or a.kind == kind]

    def create(self, entity_id, kind, expires_at=None):
        self._next += 1
        annotation = Annotation(
            id=f"new-{self._next}",
            entity_id=entity_id,
            kind=kind,
            owner="me",
            expires_at=expires_at,
        )
        self.annotations.append(annotation)
        return annotation

    def delete(self, annotation_id):
        before = len(self.annotations)
        self.annotations = [a for a in self.annotations if a.id != annotation_id]
        return len(self.annotations) < before


class FakeCounts:
    def __init__(self, counts: dict[str, int] | None = None, signed_in: bool = True):
        self.counts = counts or {}
        self.signed_in = signed_in
        self.error: Exception | None = None
        self.requested: list[list[str]] = []

    async def counts_for(self, uuids):
        self.requested.append(list(uuids))
        if self.error is not None:
            raise self.error
        return dict(self.counts)

    async def is_signed_in(self):
        return self.signed_in


class FakeMatcher:
    def __init__(self, matches: dict[str, LocalBranchMatch]) -> None:
        self.matches = matches

    async def match(self, item):
        if item.uuid == "broken":
            raise OSError("git missing")
        return self.matches.get(item.uuid)
