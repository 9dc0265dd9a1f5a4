from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type: str
    data: dict

    def payload(self) -> dict:
        return {"type": self.type, **self.data}


@dataclass(eq=False)
class Subscriber:
    queue: asyncio.Queue[Event]
    closed: bool = False

    def put(self, event: Event) -> None:
        if self.closed:
            raise ConnectionError("subscriber closed")
        self.queue.put_nowait(event)


class EventBus:
    def __init__(self, *, queue_size: int = 200) -> None:
        self._lock = asyncio.Lock()
        self._subscribers: set[Subscriber] = set()
        self._queue_size = queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> Subscriber:
        subscriber = Subscriber(queue=asyncio.Queue(maxsize=self._queue_size))
        async with self._lock:
            self._subscribers.add(subscriber)
        return subscriber

    async def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.closed = True
        async with self._lock:
            self._subscribers.discard(subscriber)

    async def publish(self, event: Event) -> int:
        """Queue ``event`` for every subscriber and evict those that fail.

        Returns the number of subscribers the event was delivered to.
        """
        async with self._lock:
            subscribers = list(self._subscribers)

        failed: list[Subscriber] = []
        for subscriber in subscribers:
            try:
                subscriber.put(event)
            except (asyncio.QueueFull, ConnectionError):
                failed.append(subscriber)

        if failed:
            logger.info("evicting %d unresponsive subscribers", len(failed))
            for subscriber in failed:
                await self.unsubscribe(subscriber)
        return len(subscribers) - len(failed)
