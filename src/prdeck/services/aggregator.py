"""Fetch, join, categorize and order the pull request queue."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from prdeck.cache import TTLCache
from prdeck.categorize import build_item, seen_keys
from prdeck.config import Config
from prdeck.errors import (
    DegradedSourceError,
    RefreshCancelledError,
    UnsupportedProviderError,
)
from prdeck.grouping import group_membership, sort_items
from prdeck.models import (
    SUPPORTED_PROVIDERS,
    Annotation,
    CategorizedItem,
    LocalBranchMatch,
    RefreshRequested,
    RefreshResult,
    Timings,
    WorkItem,
)
from prdeck.observability.logging import get_logger
from prdeck.observability.telemetry import log_event
from prdeck.services.sources import (
    AnnotationSource,
    LocalRepositoryMatcher,
    SuggestionCountSource,
    WorkItemSource,
)
from prdeck.timing import TimedResult, slow_operation_reporter, with_timing

logger = get_logger(__name__)


@dataclass(frozen=True)
class _FetchedItems:
    items: TimedResult[list[WorkItem]]
    counts: TimedResult[dict[str, int]] | None = None
    degraded: tuple[DegradedSourceError, ...] = ()


@dataclass
class _Annotations:
    pin: Annotation | None = None
    snooze: Annotation | None = None


@dataclass
class _Joined:
    item: WorkItem
    annotations: _Annotations = field(default_factory=_Annotations)
    suggestion_count: int = 0


def dedupe_annotations(
    annotations: Iterable[Annotation], now: datetime
) -> dict[str, _Annotations]:
    """Keep the first unexpired pin and snooze per entity, in source order."""
    by_entity: dict[str, _Annotations] = {}
    for annotation in annotations:
        if annotation.expires_at is not None and annotation.expires_at <= now:
            continue
        slot = by_entity.setdefault(annotation.entity_id, _Annotations())
        if annotation.kind == "pin" and slot.pin is None:
            slot.pin = annotation
        elif annotation.kind == "snooze" and slot.snooze is None:
            slot.snooze = annotation
    return by_entity


def _check_cancelled(cancellation: asyncio.Event | None) -> None:
    if cancellation is not None and cancellation.is_set():
        raise RefreshCancelledError()


class Aggregator:
    """Orchestrates one refresh cycle over the injected sources.

    Owns three caches (work items, annotations, suggestion counts) and the
    SeenSet used to flag items that moved into a new group.
    """

    def __init__(
        self,
        source: WorkItemSource,
        annotations: AnnotationSource,
        counts: SuggestionCountSource | None = None,
        matcher: LocalRepositoryMatcher | None = None,
        config: Config | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._source = source
        self._annotations = annotations
        self._counts = counts
        self._matcher = matcher
        self.config = config or Config()
        self._now = now

        ttl = self.config.cache_ttl_minutes * 60
        self._items_cache: TTLCache[_FetchedItems] = TTLCache(ttl, clock, "work-items")
        self._annotations_cache: TTLCache[TimedResult[list[Annotation]]] = TTLCache(
            ttl, clock, "annotations"
        )
        self._counts_cache: TTLCache[TimedResult[dict[str, int]]] = TTLCache(
            ttl, clock, "suggestion-counts"
        )

        self._seen: frozenset[tuple[str, str]] | None = None
        self._subscribers: list[asyncio.Queue[RefreshResult]] = []

    # -- Subscriptions --

    def subscribe(self) -> asyncio.Queue[RefreshResult]:
        queue: asyncio.Queue[RefreshResult] = asyncio.Queue()
        self._subscribers = [*self._subscribers, queue]
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RefreshResult]) -> None:
        self._subscribers = [q for q in self._subscribers if q is not queue]

    def _publish(self, result: RefreshResult) -> None:
        for queue in self._subscribers:
            queue.put_nowait(result)

    async def serve(self, requests: asyncio.Queue[RefreshRequested]) -> None:
        """Consume refresh requests forever; results go to subscribers."""
        while True:
            request = await requests.get()
            try:
                logger.debug("Refresh requested (%s)", request.reason)
                await self.refresh(force=request.force)
            except RefreshCancelledError:
                logger.info("Refresh cancelled (%s)", request.reason)
            finally:
                requests.task_done()

    def invalidate(self) -> None:
        """Drop every cached fetch so the next refresh starts fresh."""
        self._items_cache.clear()
        self._annotations_cache.clear()
        self._counts_cache.clear()

    # -- Fetching --

    def _timed(self, op, name: str):
        threshold = self.config.slow_threshold_seconds
        return with_timing(op, threshold, slow_operation_reporter(name, threshold))

    async def _fetch_annotations(self) -> TimedResult[list[Annotation]]:
        return await self._timed(
            asyncio.to_thread(self._annotations.list), "annotations.list"
        )

    async def _fetch_counts(
        self, items: list[WorkItem], *, force: bool
    ) -> tuple[TimedResult[dict[str, int]] | None, tuple[DegradedSourceError, ...]]:
        if not items or self._counts is None:
            return None, ()

        counts_source = self._counts
        try:
            if not await counts_source.is_signed_in():
                return None, ()
            uuids = tuple(sorted(i.uuid for i in items))
            counts = await self._counts_cache.get(
                lambda: self._timed(counts_source.counts_for(uuids), "counts_for"),
                key=uuids,
                force=force,
            )
        except Exception as ex:
            err = DegradedSourceError("suggestion counts", ex)
            logger.warning("%s", err)
            return None, (err,)
        return counts, ()

    async def _fetch_items(
        self, *, force: bool, cancellation: asyncio.Event | None
    ) -> _FetchedItems:
        timed = await self._timed(
            self._source.list_my_items(SUPPORTED_PROVIDERS, cancellation),
            "list_my_items",
        )
        counts, degraded = await self._fetch_counts(timed.value, force=force)
        return _FetchedItems(items=timed, counts=counts, degraded=degraded)

    async def _search(self, text: str) -> _FetchedItems:
        timed = await self._timed(self._source.search_one(text), "search_one")
        items = [timed.value] if timed.value is not None else []
        counts, degraded = await self._fetch_counts(items, force=True)
        return _FetchedItems(
            items=TimedResult(items, timed.duration), counts=counts, degraded=degraded
        )

    async def _match(self, item: WorkItem) -> LocalBranchMatch | None:
        if self._matcher is None:
            return None
        try:
            return await self._matcher.match(item)
        except Exception as ex:
            logger.debug("Local branch match failed for %s: %s", item.url, ex)
            return None

    # -- Refresh --

    def _is_ignored(self, item: WorkItem) -> bool:
        repo = item.repository
        return (
            repo.full_name.lower() in self.config.ignored_repositories
            or repo.owner.lower() in self.config.ignored_organizations
        )

    def _join(
        self,
        items: list[WorkItem],
        annotations: list[Annotation],
        counts: dict[str, int],
    ) -> list[_Joined]:
        by_entity = dedupe_annotations(annotations, self._now())
        joined: list[_Joined] = []
        for item in items:
            if item.provider not in SUPPORTED_PROVIDERS:
                logger.debug("Dropping %s: unsupported provider %s", item.url, item.provider)
                continue
            if self._is_ignored(item):
                continue
            joined.append(
                _Joined(
                    item=item,
                    annotations=by_entity.get(item.uuid, _Annotations()),
                    suggestion_count=counts.get(item.uuid, 0),
                )
            )
        return joined

    async def refresh(
        self,
        *,
        force: bool = False,
        search: str | None = None,
        cancellation: asyncio.Event | None = None,
    ) -> RefreshResult:
        """Run one refresh cycle.

        Never raises for provider failures: a failed work-item fetch is
        returned as ``RefreshResult.error``. Raises RefreshCancelledError if
        ``cancellation`` is set.
        """
        fire_refresh = force or self._items_cache.peek() is None

        annotations_future = self._annotations_cache.get(
            self._fetch_annotations, force=force
        )
        if search:
            items_future = asyncio.ensure_future(self._search(search))
        else:
            items_future = self._items_cache.get(
                lambda: self._fetch_items(force=force, cancellation=cancellation),
                force=force,
            )

        annotations_result, items_result = await asyncio.gather(
            annotations_future, items_future, return_exceptions=True
        )
        if isinstance(items_result, (RefreshCancelledError, asyncio.CancelledError)):
            # Only the cancelled call sees the cancellation
            self._items_cache.discard(items_future)
            raise RefreshCancelledError() from items_result
        _check_cancelled(cancellation)

        result: RefreshResult | None = None
        try:
            annotations: list[Annotation] = []
            annotations_duration = None
            degraded: list[DegradedSourceError] = []
            if isinstance(annotations_result, BaseException):
                err = DegradedSourceError("annotations", annotations_result)
                logger.warning("%s", err)
                degraded.append(err)
            else:
                annotations = annotations_result.value
                annotations_duration = annotations_result.duration

            if isinstance(items_result, BaseException):
                logger.error("Failed to get pull requests: %s", items_result)
                log_event("launchpad.refresh.failed", error=str(items_result))
                result = RefreshResult(
                    error=items_result,
                    timings=Timings(annotations=annotations_duration),
                    degraded=tuple(degraded),
                )
                return result

            fetched = items_result
            degraded.extend(fetched.degraded)
            counts = fetched.counts.value if fetched.counts is not None else {}
            joined = self._join(fetched.items.value, annotations, counts)
            matches = await asyncio.gather(*(self._match(j.item) for j in joined))

            now = self._now()
            stale = self.config.stale_threshold_days
            categorized: list[CategorizedItem] = []
            for entry, local in zip(joined, matches):
                item = build_item(
                    entry.item,
                    now,
                    stale_threshold_days=stale,
                    pin=entry.annotations.pin,
                    snooze=entry.annotations.snooze,
                    suggestion_count=entry.suggestion_count,
                    local=local,
                    seen=self._seen,
                    is_search_result=bool(search),
                )
                categorized.append(replace(item, groups=group_membership(item)))

            result = RefreshResult(
                items=sort_items(categorized),
                timings=Timings(
                    work_items=fetched.items.duration,
                    suggestion_counts=(
                        fetched.counts.duration if fetched.counts is not None else None
                    ),
                    annotations=annotations_duration,
                ),
                degraded=tuple(degraded),
            )
            log_event(
                "launchpad.refresh",
                items=len(result.items),
                degraded=len(result.degraded),
            )
            return result
        finally:
            if result is not None:
                if result.ok:
                    self._seen = seen_keys(result.items)
                if fire_refresh:
                    self._publish(result)

    # -- Annotation actions --

    def _ensure_supported(self, item: CategorizedItem) -> None:
        if item.work_item.provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(item.work_item.provider)

    async def pin(self, item: CategorizedItem) -> Annotation:
        self._ensure_supported(item)
        annotation = await asyncio.to_thread(self._annotations.create, item.uuid, "pin")
        self._annotations_cache.invalidate()
        return annotation

    async def unpin(self, item: CategorizedItem) -> bool:
        if item.pin is None:
            return False
        deleted = await asyncio.to_thread(self._annotations.delete, item.pin.id)
        self._annotations_cache.invalidate()
        return deleted

    async def snooze(
        self, item: CategorizedItem, until: datetime | None = None
    ) -> Annotation:
        """Snooze ``item``, replacing any snooze it already has."""
        self._ensure_supported(item)
        if item.snooze is not None:
            await asyncio.to_thread(self._annotations.delete, item.snooze.id)
        annotation = await asyncio.to_thread(
            self._annotations.create, item.uuid, "snooze", until
        )
        self._annotations_cache.invalidate()
        return annotation

    async def unsnooze(self, item: CategorizedItem) -> bool:
        if item.snooze is None:
            return False
        deleted = await asyncio.to_thread(self._annotations.delete, item.snooze.id)
        self._annotations_cache.invalidate()
        return deleted
