from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from realtime.bus import Event, EventBus, Subscriber
from realtime.events import connected_event
from store.state import StateStore


router = APIRouter()

HEARTBEAT_SECONDS = 15.0


def format_event(event: Event) -> str:
    data = json.dumps(event.payload(), separators=(",", ":"), ensure_ascii=False)
    return f"data: {data}\n\n"


async def event_stream(
    bus: EventBus,
    subscriber: Subscriber,
    first: Event,
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    try:
        yield format_event(first)
        while True:
            if await is_disconnected():
                return
            if subscriber.closed and subscriber.queue.empty():
                return
            try:
                event = await asyncio.wait_for(
                    subscriber.queue.get(), timeout=heartbeat_seconds
                )
            except asyncio.TimeoutError:
                ts = datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")
                yield f"event: heartbeat\ndata: {json.dumps({'ts': ts})}\n\n"
                continue
            yield format_event(event)
    finally:
        await bus.unsubscribe(subscriber)


@router.get("/api/updates")
async def updates(request: Request) -> StreamingResponse:
    bus: EventBus = request.app.state.bus
    store: StateStore = request.app.state.store
    subscriber = await bus.subscribe()

    return StreamingResponse(
        event_stream(
            bus, subscriber, connected_event(store.state), request.is_disconnected
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
