"""
In-process event bus for real-time booking notifications

Each live viewer (one SSE connection) owns a bounded queue. Publishing is
fire-and-forget: a subscriber whose queue is full is considered dead and is
pruned on that write.
"""

import asyncio
import logging
from typing import Any, Dict, Set

from ..interfaces import EventBus

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.info(f"📡 Viewer subscribed ({len(self._subscribers)} active)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            logger.info(f"📴 Viewer unsubscribed ({len(self._subscribers)} active)")

    async def publish(self, event: Dict[str, Any]) -> int:
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Pruning stalled event subscriber (queue full)")
                self._subscribers.discard(queue)
        logger.debug(f"Published {event.get('type')} to {delivered} subscriber(s)")
        return delivered
