from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum

from ingest.errors import RefreshError, UpdateRejected
from ingest.pipeline import CycleResult
from realtime.bus import EventBus
from realtime.events import update_event
from store.state import PersistenceFailure, StateStore


logger = logging.getLogger(__name__)

RefreshFn = Callable[[], Awaitable[CycleResult]]


def epoch_ms() -> int:
    return int(time.time() * 1000)


def interval_ms(minutes: int) -> int:
    return minutes * 60 * 1000


class SchedulerPhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class RefreshScheduler:
    """Owns the single refresh timer and the guard around pipeline runs.

    Every fire time is an absolute wall-clock deadline in epoch ms,
    recomputed from the moment a cycle completes and persisted so a
    restart resumes the countdown. At most one timer is pending and at
    most one pipeline run is in flight; extra triggers are rejected.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        bus: EventBus,
        refresh: RefreshFn,
        min_update_gap_seconds: float = 5.0,
        now_ms: Callable[[], int] = epoch_ms,
    ) -> None:
        self._store = store
        self._bus = bus
        self._refresh = refresh
        self._min_gap_ms = int(min_update_gap_seconds * 1000)
        self._now_ms = now_ms

        self._phase = SchedulerPhase.IDLE
        self._timer: asyncio.Task | None = None
        self._next_fire_at_ms: int | None = None
        self._in_flight = False
        self._last_run_started_ms: int | None = None
        self._background: set[asyncio.Task] = set()
        self._stopped = False

    @property
    def phase(self) -> SchedulerPhase:
        return self._phase

    @property
    def next_fire_at_ms(self) -> int | None:
        return self._next_fire_at_ms

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def now_ms(self) -> int:
        return self._now_ms()

    async def start(self) -> int:
        async with self._store.lock:
            state = self._store.state
            now = self._now_ms()
            if state.next_update_time > now:
                fire_at = state.next_update_time
                logger.info(
                    "resuming persisted schedule, next refresh in %ds",
                    (fire_at - now) // 1000,
                )
            else:
                fire_at = now + interval_ms(state.update_interval)
                state.next_update_time = fire_at
                with suppress(PersistenceFailure):
                    self._store.write()
        self.schedule(fire_at)
        return fire_at

    def schedule(self, fire_at_ms: int) -> None:
        self.cancel()
        if self._stopped:
            return
        delay = max(0, fire_at_ms - self._now_ms()) / 1000
        self._next_fire_at_ms = fire_at_ms
        self._timer = asyncio.create_task(self._wait_and_fire(delay))
        if self._phase is not SchedulerPhase.RUNNING:
            self._phase = SchedulerPhase.SCHEDULED

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._phase is SchedulerPhase.SCHEDULED:
            self._phase = SchedulerPhase.IDLE

    async def stop(self) -> None:
        self._stopped = True
        timer = self._timer
        self.cancel()
        tasks = [t for t in (timer, *self._background) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._phase = SchedulerPhase.IDLE

    async def _wait_and_fire(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detached from the timer slot so cancel() cannot abort a running cycle.
        self._timer = None
        task = asyncio.current_task()
        if task is not None:
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        await self.on_fire()

    async def on_fire(self) -> None:
        if not self._store.state.auto_update_enabled:
            logger.info("auto-update disabled, skipping scheduled refresh")
            await self._complete_cycle()
            return

        try:
            await self.run_now(reason="scheduled")
        except UpdateRejected as e:
            logger.info("scheduled refresh skipped: %s", e)
            if not self._in_flight and self._timer is None:
                await self._complete_cycle()
        except (RefreshError, PersistenceFailure):
            logger.exception("scheduled refresh failed, keeping previous addresses")

    async def run_now(self, *, reason: str = "manual") -> CycleResult:
        """Run one pipeline cycle, then reschedule from its completion time."""
        now = self._now_ms()
        if self._in_flight:
            raise UpdateRejected("an update is already in progress")
        if (
            self._last_run_started_ms is not None
            and now - self._last_run_started_ms < self._min_gap_ms
        ):
            waited = (now - self._last_run_started_ms) / 1000
            raise UpdateRejected(f"last update started {waited:.1f}s ago")

        self._in_flight = True
        self._last_run_started_ms = now
        self._phase = SchedulerPhase.RUNNING
        logger.info("starting %s refresh", reason)
        try:
            return await self._refresh()
        finally:
            self._in_flight = False
            self._phase = SchedulerPhase.IDLE
            await self._complete_cycle()

    def request_run(self, *, reason: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_in_background(reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_in_background(self, reason: str) -> None:
        try:
            await self.run_now(reason=reason)
        except UpdateRejected as e:
            logger.info("%s refresh skipped: %s", reason, e)
        except (RefreshError, PersistenceFailure):
            logger.exception("%s refresh failed, keeping previous addresses", reason)

    async def _complete_cycle(self) -> int:
        async with self._store.lock:
            state = self._store.state
            fire_at = self._now_ms() + interval_ms(state.update_interval)
            state.next_update_time = fire_at
            with suppress(PersistenceFailure):
                self._store.write()
            event = update_event(state)
        self.schedule(fire_at)
        await self._bus.publish(event)
        return fire_at
