from __future__ import annotations

from realtime.bus import Event
from store.state import RefreshState


def settings_snapshot(state: RefreshState) -> dict:
    return {
        "updateIntervalMinutes": state.update_interval,
        "autoUpdateEnabled": state.auto_update_enabled,
        "nextUpdateAtEpochMs": state.next_update_time,
    }


def connected_event(state: RefreshState) -> Event:
    return Event(type="connected", data={"currentSettings": settings_snapshot(state)})


def update_event(state: RefreshState) -> Event:
    return Event(
        type="update",
        data={
            "lastUpdated": state.last_updated,
            "nextUpdateAtEpochMs": state.next_update_time,
        },
    )


def settings_change_event(
    *,
    update_interval: int | None = None,
    auto_update_enabled: bool | None = None,
    next_update_time: int | None = None,
) -> Event:
    data: dict = {}
    if update_interval is not None:
        data["updateIntervalMinutes"] = update_interval
    if auto_update_enabled is not None:
        data["autoUpdateEnabled"] = auto_update_enabled
    if next_update_time is not None:
        data["nextUpdateAtEpochMs"] = next_update_time
    return Event(type="settingsChange", data=data)
