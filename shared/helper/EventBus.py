"""In-process publish/subscribe for engine events (status, rebuild progress, block state)."""

import asyncio
import logging
from typing import Any

EVENT_STATUS_UPDATED = "rag:status-updated"
EVENT_REINDEX_PROGRESS = "rag:reindex-progress"
EVENT_BLOCK_INDEXED = "rag:block-indexed"

SUBSCRIBER_QUEUE_SIZE = 100


class EventBus:
    """Fan-out of events to any number of asyncio.Queue subscribers.

    A subscriber whose queue is full misses the event; publishers never block.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logging = logger
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver an event to every subscriber.

        Args:
            event (str): Event name, e.g. "rag:status-updated".
            payload (dict[str, Any]): JSON-serialisable payload.
        """
        self.logging.debug("Event %s: %s", event, payload)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait((event, payload))
            except asyncio.QueueFull:
                self.logging.warning("Event subscriber queue full, dropping '%s'.", event)

    def subscriber_count(self) -> int:
        return len(self._subscribers)
