from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SUPPORTED_PROVIDERS = ("github", "gitlab")

# Sort priority: earlier categories need attention sooner.
ACTION_CATEGORIES = (
    "conflicts",
    "failed-checks",
    "unassigned-reviewers",
    "mergeable",
    "needs-my-review",
    "code-suggestions",
    "changes-requested",
    "reviewer-commented",
    "waiting-for-review",
    "draft",
    "other",
)

# Display order of groups.
GROUPS = (
    "current-branch",
    "pinned",
    "mergeable",
    "blocked",
    "follow-up",
    "needs-review",
    "waiting-for-review",
    "draft",
    "other",
    "snoozed",
)

PRIORITY_GROUPS = ("mergeable", "blocked", "follow-up", "needs-review")

CATEGORY_TO_GROUP = {
    "mergeable": "mergeable",
    "conflicts": "blocked",
    "failed-checks": "blocked",
    "unassigned-reviewers": "blocked",
    "needs-my-review": "needs-review",
    "code-suggestions": "follow-up",
    "changes-requested": "follow-up",
    "reviewer-commented": "follow-up",
    "waiting-for-review": "waiting-for-review",
    "draft": "draft",
    "other": "other",
}


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str
    url: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class Ref:
    name: str
    oid: str | None = None


@dataclass(frozen=True)
class WorkItem:
    uuid: str
    provider: str  # github, gitlab
    number: int
    url: str
    title: str
    author: str
    repository: Repository
    updated_at: datetime
    is_author: bool = False
    is_assignee: bool = False
    is_requested_reviewer: bool = False
    review_decision: str | None = None  # approved, changes-requested, commented, review-required
    checks_status: str | None = None  # success, failed, pending
    merge_status: str = "unknown"  # mergeable, conflicts, unknown
    reviewers: tuple[str, ...] = ()
    head_ref: Ref | None = None
    base_ref: Ref | None = None
    is_draft: bool = False
    kind: str = "pullrequest"


@dataclass(frozen=True)
class Annotation:
    id: str
    entity_id: str
    kind: str  # pin, snooze
    owner: str
    expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class LocalBranchMatch:
    repo_path: str
    remote: str
    branch: str | None = None
    is_current: bool = False


@dataclass(frozen=True)
class CategorizedItem:
    work_item: WorkItem
    category: str
    suggested_actions: tuple[str, ...]
    is_new: bool = False
    pin: Annotation | None = None
    snooze: Annotation | None = None
    suggestion_count: int = 0
    local: LocalBranchMatch | None = None
    groups: tuple[str, ...] = ()
    is_search_result: bool = False

    @property
    def uuid(self) -> str:
        return self.work_item.uuid

    @property
    def updated_at(self) -> datetime:
        return self.work_item.updated_at

    @property
    def is_draft(self) -> bool:
        return self.work_item.is_draft

    @property
    def is_pinned(self) -> bool:
        return self.pin is not None

    @property
    def is_snoozed(self) -> bool:
        return self.snooze is not None

    @property
    def is_current_branch(self) -> bool:
        return self.local is not None and self.local.is_current

    @property
    def label(self) -> str:
        return f"{self.work_item.repository.full_name}#{self.work_item.number}"


@dataclass(frozen=True)
class Timings:
    """Durations of the three fetches, in seconds."""

    work_items: float | None = None
    suggestion_counts: float | None = None
    annotations: float | None = None


@dataclass(frozen=True)
class RefreshResult:
    items: list[CategorizedItem] = field(default_factory=list)
    timings: Timings = field(default_factory=Timings)
    error: BaseException | None = None
    degraded: tuple[Exception, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RefreshRequested:
    force: bool = True
    reason: str = "poll"


@dataclass(frozen=True)
class Summary:
    total_count: int
    groups_with_counts: tuple[tuple[str, int], ...]
    top_item: CategorizedItem | None = None
    top_label: str | None = None
