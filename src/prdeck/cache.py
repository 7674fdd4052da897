"""Time-boxed, single-flight memoization of async fetches."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

from prdeck.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL = 60 * 30  # 30 minutes


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    expires_at: float
    future: asyncio.Future[T]


class TTLCache(Generic[T]):
    """Hold one in-flight or settled fetch per key for ``ttl`` seconds.

    Every caller inside the window receives the same future. ``force`` always
    starts a new fetch; callers already awaiting the replaced future still get
    its result. A failed fetch stays cached until it expires or is forced.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(
        self,
        fetch: Callable[[], Awaitable[T]],
        key: Hashable = None,
        *,
        force: bool = False,
    ) -> asyncio.Future[T]:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            entry = self._entries.get(key)
            if force or entry is None or entry.expires_at <= now:
                future = asyncio.ensure_future(fetch())
                future.add_done_callback(self._retrieve)
                entry = CacheEntry(expires_at=now + self.ttl, future=future)
                self._entries[key] = entry
                logger.debug(
                    "%s: started fetch key=%r force=%s", self.name, key, force
                )
        return entry.future

    def peek(self, key: Hashable = None) -> CacheEntry[T] | None:
        """Return the live (unexpired) entry for ``key``, if any."""
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry

    def invalidate(self, key: Hashable = None) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def discard(self, future: asyncio.Future[T], key: Hashable = None) -> None:
        """Drop the entry for ``key`` only if it still holds ``future``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.future is future:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def _retrieve(self, future: asyncio.Future[T]) -> None:
        # Mark failures as retrieved; awaiters still receive them.
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.debug("%s: fetch failed: %s", self.name, exc)
