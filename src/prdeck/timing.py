from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from prdeck.observability.logging import get_logger
from prdeck.observability.telemetry import log_event

logger = get_logger(__name__)

T = TypeVar("T")

SLOW_THRESHOLD = 30.0  # seconds


@dataclass(frozen=True)
class TimedResult(Generic[T]):
    value: T
    duration: float  # seconds


async def with_timing(
    op: Awaitable[T],
    threshold: float = SLOW_THRESHOLD,
    on_slow: Callable[[float], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> TimedResult[T]:
    """Await ``op`` and report how long it took.

    If ``op`` is still pending after ``threshold`` seconds, ``on_slow`` is
    called once with the elapsed time. The operation is never cancelled.
    """
    start = clock()
    handle: asyncio.TimerHandle | None = None

    if on_slow is not None:

        def _fire() -> None:
            try:
                on_slow(clock() - start)
            except Exception:
                logger.exception("Slow-operation callback failed")

        handle = asyncio.get_running_loop().call_later(threshold, _fire)

    try:
        value = await op
    finally:
        if handle is not None:
            handle.cancel()

    return TimedResult(value=value, duration=clock() - start)


def slow_operation_reporter(
    operation: str, threshold: float = SLOW_THRESHOLD
) -> Callable[[float], None]:
    """Build an ``on_slow`` callback that emits a telemetry event."""

    def _report(duration: float) -> None:
        logger.warning("%s is slow (%.1fs elapsed)", operation, duration)
        log_event(
            "launchpad.operation.slow",
            operation=operation,
            threshold=threshold,
            duration=round(duration, 3),
        )

    return _report
