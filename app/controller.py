from __future__ import annotations

import logging

from ingest.scheduler import RefreshScheduler, interval_ms
from realtime.bus import EventBus
from realtime.events import settings_change_event, settings_snapshot
from store.state import PersistenceFailure, StateStore


logger = logging.getLogger(__name__)


class InvalidSettingsInput(ValueError):
    pass


class SettingsController:
    def __init__(
        self, *, store: StateStore, scheduler: RefreshScheduler, bus: EventBus
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._bus = bus

    def snapshot(self) -> dict:
        return settings_snapshot(self._store.state)

    async def update(
        self,
        *,
        interval: int | None = None,
        auto_update_enabled: bool | None = None,
    ) -> dict:
        """Apply a settings write and reschedule from now.

        An interval below one minute is ignored. Returns the fields that
        changed, as broadcast to subscribers; an empty dict means nothing
        was written. Raises PersistenceFailure after the change has taken
        effect in memory, rescheduled and been broadcast.
        """
        if interval is not None and (
            isinstance(interval, bool) or not isinstance(interval, int)
        ):
            raise InvalidSettingsInput(
                f"interval must be an integer, got {interval!r}"
            )
        if auto_update_enabled is not None and not isinstance(
            auto_update_enabled, bool
        ):
            raise InvalidSettingsInput(
                f"autoUpdateEnabled must be a boolean, got {auto_update_enabled!r}"
            )
        if interval is not None and interval < 1:
            logger.info("ignoring update interval %d below one minute", interval)
            interval = None
        if interval is None and auto_update_enabled is None:
            return {}

        self._scheduler.cancel()
        write_error: PersistenceFailure | None = None
        async with self._store.lock:
            state = self._store.state
            was_enabled = state.auto_update_enabled
            if interval is not None:
                state.update_interval = interval
            if auto_update_enabled is not None:
                state.auto_update_enabled = auto_update_enabled
            fire_at = self._scheduler.now_ms() + interval_ms(state.update_interval)
            state.next_update_time = fire_at
            try:
                self._store.write()
            except PersistenceFailure as e:
                write_error = e

        event = settings_change_event(
            update_interval=interval,
            auto_update_enabled=auto_update_enabled,
            next_update_time=fire_at,
        )
        await self._bus.publish(event)
        self._scheduler.schedule(fire_at)
        logger.info("settings changed: %s", event.data)

        if auto_update_enabled and not was_enabled:
            self._scheduler.request_run(reason="re-enabled")

        if write_error is not None:
            raise write_error
        return event.data
