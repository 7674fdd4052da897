from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from prdeck.models import (
    ACTION_CATEGORIES,
    CATEGORY_TO_GROUP,
    GROUPS,
    PRIORITY_GROUPS,
    CategorizedItem,
    Summary,
)

GROUP_LABELS = {
    "current-branch": "Current Branch",
    "pinned": "Pinned",
    "mergeable": "Ready to Merge",
    "blocked": "Blocked",
    "follow-up": "Requires Follow-up",
    "needs-review": "Needs Your Review",
    "waiting-for-review": "Waiting for Review",
    "draft": "Draft",
    "other": "Other",
    "snoozed": "Snoozed",
}

_BLOCKED_LABELS = {
    "unassigned-reviewers": "needs reviewers",
    "failed-checks": "failed CI checks",
    "conflicts": "has conflicts",
}

_TOP_LABELS = {
    "mergeable": "can be merged",
    "follow-up": "requires follow-up",
    "needs-review": "needs your review",
}


def group_membership(item: CategorizedItem) -> tuple[str, ...]:
    """Return the display groups an item is counted in, in display order."""
    if item.is_snoozed:
        return ("snoozed",)

    groups: list[str] = []
    if item.is_pinned:
        groups.append("pinned")
    if item.is_current_branch:
        groups.append("current-branch")
    if item.is_draft:
        groups.append("draft")

    group = CATEGORY_TO_GROUP[item.category]
    # Drafts only surface in needs-review besides the draft group itself
    if group not in groups and (not item.is_draft or group == "needs-review"):
        groups.append(group)
    return tuple(groups)


def _sort_key(item: CategorizedItem) -> tuple[int, int, float]:
    return (
        0 if item.is_pinned else 1,
        ACTION_CATEGORIES.index(item.category),
        -item.updated_at.timestamp(),
    )


def sort_items(items: Iterable[CategorizedItem]) -> list[CategorizedItem]:
    """Pinned first, then category priority, then most recently updated."""
    return sorted(items, key=_sort_key)


def _by_updated_desc(items: list[CategorizedItem]) -> list[CategorizedItem]:
    return sorted(items, key=lambda i: i.updated_at, reverse=True)


def group_and_sort(
    items: Iterable[CategorizedItem],
) -> dict[str, list[CategorizedItem]]:
    """Bucket sorted items into every display group (empty groups included)."""
    grouped: dict[str, list[CategorizedItem]] = {g: [] for g in GROUPS}

    for item in sort_items(items):
        for group in item.groups or group_membership(item):
            grouped[group].append(item)

    grouped["needs-review"].sort(key=lambda i: i.is_draft)
    grouped["pinned"] = _by_updated_desc(grouped["pinned"])
    grouped["draft"] = _by_updated_desc(grouped["draft"])
    return grouped


def count_groups(items: Iterable[CategorizedItem]) -> dict[str, int]:
    counts = {g: 0 for g in GROUPS}
    for item in items:
        for group in item.groups or group_membership(item):
            counts[group] += 1
    return counts


def _top_label(group: str, item: CategorizedItem) -> str:
    if group == "blocked":
        return _BLOCKED_LABELS.get(item.category, "is blocked")
    return _TOP_LABELS.get(group, GROUP_LABELS[group].lower())


def get_summary(
    grouped: Mapping[str, Sequence[CategorizedItem]],
    groups: Sequence[str] = PRIORITY_GROUPS,
) -> Summary:
    """Project grouped items down to counts and the single most urgent item.

    ``total_count`` counts distinct items across all groups; the top item is
    the first item of the first non-empty group in ``groups`` order.
    """
    seen: set[str] = set()
    for members in grouped.values():
        seen.update(i.uuid for i in members)

    counts: list[tuple[str, int]] = []
    top_item: CategorizedItem | None = None
    top_label: str | None = None
    for group in groups:
        members = grouped.get(group, ())
        counts.append((group, len(members)))
        if top_item is None and members:
            top_item = members[0]
            top_label = _top_label(group, top_item)

    return Summary(
        total_count=len(seen),
        groups_with_counts=tuple(counts),
        top_item=top_item,
        top_label=top_label,
    )
