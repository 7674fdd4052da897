"""Decide why a pull request needs attention and what to do about it."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from prdeck.models import (
    CATEGORY_TO_GROUP,
    Annotation,
    CategorizedItem,
    LocalBranchMatch,
    WorkItem,
)


def _is_owner(item: WorkItem) -> bool:
    return item.is_author or item.is_assignee


# First matching rule wins; listed in ACTION_CATEGORIES order.
CATEGORY_RULES: tuple[tuple[str, Callable[[WorkItem], bool]], ...] = (
    ("conflicts", lambda i: _is_owner(i) and i.merge_status == "conflicts"),
    ("failed-checks", lambda i: _is_owner(i) and i.checks_status == "failed"),
    (
        "unassigned-reviewers",
        lambda i: _is_owner(i) and not i.is_draft and not i.reviewers,
    ),
    (
        "mergeable",
        lambda i: _is_owner(i)
        and not i.is_draft
        and i.review_decision == "approved"
        and i.merge_status == "mergeable"
        and i.checks_status != "pending",
    ),
    (
        "needs-my-review",
        lambda i: i.is_requested_reviewer and not i.is_author,
    ),
    (
        "changes-requested",
        lambda i: _is_owner(i) and i.review_decision == "changes-requested",
    ),
    (
        "reviewer-commented",
        lambda i: _is_owner(i) and i.review_decision == "commented",
    ),
    (
        "waiting-for-review",
        lambda i: _is_owner(i)
        and not i.is_draft
        and i.review_decision in (None, "review-required"),
    ),
    ("draft", lambda i: _is_owner(i) and i.is_draft),
)

_CATEGORY_ACTIONS = {
    "mergeable": ("merge",),
    "other": (),
}

_CURRENT_BRANCH_ACTIONS = ("show-overview", "open-changes", "code-suggest", "open-in-graph")
_OTHER_BRANCH_ACTIONS = ("open-worktree", "switch", "switch-and-code-suggest", "open-in-graph")


def base_category(item: WorkItem) -> str:
    for category, matches in CATEGORY_RULES:
        if matches(item):
            return category
    return "other"


def get_suggested_actions(category: str, is_current_branch: bool) -> tuple[str, ...]:
    actions = _CATEGORY_ACTIONS.get(category, ("open",))
    if is_current_branch:
        return actions + _CURRENT_BRANCH_ACTIONS
    return actions + _OTHER_BRANCH_ACTIONS


def categorize(
    item: WorkItem,
    now: datetime,
    stale_threshold_days: int | None = None,
    *,
    suggestion_count: int = 0,
    is_current_branch: bool = False,
    is_search_result: bool = False,
) -> tuple[str, tuple[str, ...]]:
    """Return ``(category, suggested_actions)`` for a single item.

    Pending code suggestions on the viewer's own pull request beat the
    staleness override, which beats the base category.
    """
    category = base_category(item)

    if suggestion_count > 0 and item.is_author:
        category = "code-suggestions"
    elif (
        not is_search_result
        and stale_threshold_days is not None
        and now - item.updated_at > timedelta(days=stale_threshold_days)
    ):
        category = "other"

    return category, get_suggested_actions(category, is_current_branch)


def build_item(
    item: WorkItem,
    now: datetime,
    *,
    stale_threshold_days: int | None = None,
    pin: Annotation | None = None,
    snooze: Annotation | None = None,
    suggestion_count: int = 0,
    local: LocalBranchMatch | None = None,
    seen: frozenset[tuple[str, str]] | None = None,
    is_search_result: bool = False,
) -> CategorizedItem:
    """Categorize a joined item. ``seen`` is the previous cycle's SeenSet."""
    is_current = local is not None and local.is_current
    category, actions = categorize(
        item,
        now,
        stale_threshold_days,
        suggestion_count=suggestion_count,
        is_current_branch=is_current,
        is_search_result=is_search_result,
    )
    is_new = seen is not None and (item.uuid, CATEGORY_TO_GROUP[category]) not in seen
    return CategorizedItem(
        work_item=item,
        category=category,
        suggested_actions=actions,
        is_new=is_new,
        pin=pin,
        snooze=snooze,
        suggestion_count=suggestion_count,
        local=local,
        is_search_result=is_search_result,
    )


def seen_keys(items: Iterable[CategorizedItem]) -> frozenset[tuple[str, str]]:
    """Build the SeenSet for the next cycle."""
    return frozenset((i.uuid, CATEGORY_TO_GROUP[i.category]) for i in items)
