"""Interfaces of the collaborators the aggregator and scheduler consume."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from prdeck.models import Annotation, LocalBranchMatch, WorkItem


class WorkItemSource(Protocol):
    async def list_my_items(
        self,
        providers: Sequence[str],
        cancellation: asyncio.Event | None = None,
    ) -> list[WorkItem]: ...

    async def search_one(self, text: str) -> WorkItem | None: ...


class AnnotationSource(Protocol):
    def list(self, kind: str | None = None) -> list[Annotation]: ...

    def create(
        self, entity_id: str, kind: str, expires_at: datetime | None = None
    ) -> Annotation: ...

    def delete(self, annotation_id: str) -> bool: ...


class SuggestionCountSource(Protocol):
    async def counts_for(self, uuids: Iterable[str]) -> dict[str, int]: ...

    async def is_signed_in(self) -> bool: ...


class ConnectivityProbe(Protocol):
    async def is_any_provider_connected(self) -> bool: ...


class LocalRepositoryMatcher(Protocol):
    async def match(self, item: WorkItem) -> LocalBranchMatch | None: ...
