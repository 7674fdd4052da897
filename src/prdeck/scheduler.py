"""Polling state machine deciding when the queue is refreshed."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass, field

from prdeck.models import CategorizedItem, RefreshRequested, RefreshResult
from prdeck.observability.logging import get_logger
from prdeck.services.sources import ConnectivityProbe

logger = get_logger(__name__)

STARTUP_GRACE = 5.0  # seconds


@dataclass(frozen=True)
class Idle:
    """Polling is disabled."""


@dataclass(frozen=True)
class Disconnected:
    """Polling is enabled but no provider is connected."""


@dataclass(frozen=True)
class Loading:
    """Waiting for the first (or a forced) refresh."""


@dataclass(frozen=True)
class Loaded:
    items: list[CategorizedItem] = field(default_factory=list)


@dataclass(frozen=True)
class Failed:
    error: BaseException


SchedulerState = Idle | Disconnected | Loading | Loaded | Failed


def next_poll_delay(
    interval: float, since_last_update: float | None, unfocused: float
) -> float:
    """Delay before the next poll after the host regains focus.

    The time already spent unfocused counts towards the interval, so focus
    churn neither resets the cadence nor causes a burst of polls.
    """
    remaining = interval - since_last_update if since_last_update is not None else interval
    return max(0.0, max(0.0, remaining) - unfocused)


class IndicatorScheduler:
    """Requests refreshes on a timer and tracks the indicator state.

    Refresh requests are put on ``requests`` (consumed by the aggregator);
    completed refreshes are fed back through ``on_refresh_completed`` or
    ``listen``. Every state change is published to subscriber queues.
    """

    def __init__(
        self,
        requests: asyncio.Queue[RefreshRequested],
        probe: ConnectivityProbe,
        *,
        polling_enabled: bool = True,
        interval: float = 30 * 60,
        startup_grace: float = STARTUP_GRACE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._requests = requests
        self._probe = probe
        self._polling_enabled = polling_enabled
        self.interval = interval
        self.startup_grace = startup_grace
        self._clock = clock

        self._state: SchedulerState | None = None
        self._subscribers: list[asyncio.Queue[SchedulerState]] = []
        self._timer: asyncio.Task[None] | None = None
        self._grace: asyncio.Task[None] | None = None
        self._first_state_after_startup = True
        self._has_refreshed = False
        self._last_update: float | None = None
        self._paused_at: float | None = None
        self.next_fire_delay: float | None = None

    @property
    def state(self) -> SchedulerState | None:
        return self._state

    @property
    def polling_enabled(self) -> bool:
        return self._polling_enabled and self.interval > 0

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def subscribe(self) -> asyncio.Queue[SchedulerState]:
        queue: asyncio.Queue[SchedulerState] = asyncio.Queue()
        self._subscribers = [*self._subscribers, queue]
        return queue

    # -- Inputs --

    async def start(self) -> None:
        await self.maybe_load()

    async def maybe_load(self, force_if_connected: bool = False) -> None:
        if not self.polling_enabled:
            self._set_state(Idle())
            return

        if not await self._probe.is_any_provider_connected():
            self._set_state(Disconnected())
            return

        if isinstance(self._state, Loaded) and not force_if_connected:
            self._set_state(self._state)
        else:
            self._set_state(Loading())

    def on_refresh_completed(self, result: RefreshResult) -> None:
        self._has_refreshed = True
        if not self.polling_enabled:
            self._set_state(Idle())
        elif result.error is not None:
            self._set_state(Failed(result.error))
        else:
            self._set_state(Loaded(result.items))

    def on_focus_changed(self, focused: bool) -> None:
        if isinstance(self._state, (Idle, Disconnected)):
            return

        if not focused:
            self._clear_timer()
            self._paused_at = self._clock()
            return

        if self._paused_at is None:
            return
        if isinstance(self._state, Loading):
            self._start_timer()
            return

        now = self._clock()
        since_update = now - self._last_update if self._last_update is not None else None
        unfocused = now - self._paused_at
        self._paused_at = None
        self._start_timer(next_poll_delay(self.interval, since_update, unfocused))

    async def on_connectivity_changed(self) -> None:
        await self.maybe_load(force_if_connected=True)

    async def configure(
        self, *, enabled: bool | None = None, interval: float | None = None
    ) -> None:
        """Apply a polling configuration change."""
        if enabled is not None and enabled != self._polling_enabled:
            self._polling_enabled = enabled
            if interval is not None:
                self.interval = interval
            await self.maybe_load()
        elif interval is not None and interval != self.interval:
            self.interval = interval
            self._start_timer()

    def retry(self, delay: float | None = None) -> None:
        """Re-arm the timer after a failed refresh.

        Focus changes re-arm it on hosts that report focus; hosts without
        focus events call this instead. Defaults to one polling interval.
        """
        if not isinstance(self._state, Failed):
            return
        self._start_timer(self.interval if delay is None else delay, reason="retry")

    async def listen(self, completions: asyncio.Queue[RefreshResult]) -> None:
        while True:
            result = await completions.get()
            self.on_refresh_completed(result)

    async def watch_focus(self, events: AsyncIterable[bool]) -> None:
        async for focused in events:
            self.on_focus_changed(focused)

    def close(self) -> None:
        self._clear_timer()
        if self._grace is not None:
            self._grace.cancel()
            self._grace = None

    # -- Timer --

    def _request_refresh(self, reason: str) -> None:
        logger.debug("Requesting refresh (%s)", reason)
        self._requests.put_nowait(RefreshRequested(force=True, reason=reason))

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_timer(
        self, start_delay: float | None = None, reason: str = "resume"
    ) -> None:
        starting = self._first_state_after_startup
        self._first_state_after_startup = False

        self._clear_timer()
        if not self.polling_enabled or isinstance(self._state, Disconnected):
            if not isinstance(self._state, (Idle, Disconnected)):
                self._set_state(Idle())
            return

        self.next_fire_delay = start_delay if start_delay is not None else self.interval
        self._timer = asyncio.create_task(self._run_timer(start_delay, starting, reason))

    async def _run_timer(
        self, start_delay: float | None, starting: bool, reason: str
    ) -> None:
        if start_delay is not None:
            await asyncio.sleep(start_delay)
            if starting:
                # Separate task so a focus change cannot cancel the grace fetch
                self._grace = asyncio.create_task(self._startup_refresh())
            else:
                self._request_refresh(reason)

        while True:
            await asyncio.sleep(self.interval)
            self._request_refresh("poll")

    async def _startup_refresh(self) -> None:
        await asyncio.sleep(self.startup_grace)
        if self._has_refreshed:
            return
        self._request_refresh("startup")

    # -- State --

    def _set_state(self, state: SchedulerState) -> None:
        if not isinstance(state, Loaded) and state == self._state:
            return

        previous = self._state
        self._state = state
        logger.debug("Indicator state %s -> %s", type(previous).__name__, type(state).__name__)

        if isinstance(state, (Idle, Disconnected, Failed)):
            self._clear_timer()
        elif isinstance(state, Loading):
            self._start_timer(0)
        elif isinstance(state, Loaded):
            self._last_update = self._clock()

        self._first_state_after_startup = False

        for queue in self._subscribers:
            queue.put_nowait(state)
