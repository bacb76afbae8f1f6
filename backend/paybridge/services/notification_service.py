"""
Transaction Event Hub

Streams transaction notifications to connected clients over Server-Sent
Events. Each owner has any number of subscribers; every subscriber gets its
own queue so a slow reader only drops its own events.

Delivery is best-effort and published after the change is committed. It
is never used as a source of state.
"""
import asyncio
import json
from typing import Dict, Any, Optional, AsyncIterator, Set
from collections import defaultdict
import logging

from ..models.transactions import Transaction
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


class TransactionEventHub:
    """
    Per-owner fan-out of transaction events.

    Subscribers are asyncio.Queue instances registered under an owner id.
    Admin subscribers register under ALL_OWNERS and receive everything.
    """

    ALL_OWNERS = "*"

    def __init__(self, max_queue_size: int = 100):
        """
        Args:
            max_queue_size: events buffered per subscriber before new ones are dropped
        """
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._max_queue_size = max_queue_size
        self._lock = asyncio.Lock()

        logger.info(f"Transaction event hub initialized (queue size: {max_queue_size})")

    async def subscribe(self, owner_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._subscribers[owner_id].add(queue)
        logger.info(f"Event subscriber added for owner {owner_id}")
        return queue

    async def unsubscribe(self, owner_id: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._subscribers.get(owner_id)
            if queues is None:
                return
            queues.discard(queue)
            if not queues:
                del self._subscribers[owner_id]
        logger.info(f"Event subscriber removed for owner {owner_id}")

    async def publish(self, event_type: str, transaction: Transaction) -> int:
        """
        Queue an event for the transaction's owner and for admin subscribers.

        Returns:
            Number of subscriber queues the event was delivered to
        """
        event = {
            "type": event_type,
            "data": transaction.to_api(),
            "timestamp": utcnow().isoformat(),
        }

        async with self._lock:
            targets = list(self._subscribers.get(transaction.owner_id, ()))
            targets += list(self._subscribers.get(self.ALL_OWNERS, ()))

        delivered = 0
        for queue in targets:
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event_type} for slow subscriber of {transaction.owner_id}")

        logger.debug(f"Published {event_type} for transaction {transaction.id} to {delivered} subscribers")
        return delivered

    async def stream(
        self,
        owner_id: str,
        heartbeat_seconds: float = 15.0
    ) -> AsyncIterator[Optional[Dict[str, Any]]]:
        """
        Yield events for owner_id until the consumer stops iterating.

        Yields None when no event arrived within heartbeat_seconds so the
        caller can send a keep-alive.
        """
        queue = await self.subscribe(owner_id)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield None
                    continue
                yield event
        finally:
            await self.unsubscribe(owner_id, queue)

    def get_subscriber_count(self, owner_id: Optional[str] = None) -> int:
        if owner_id is not None:
            return len(self._subscribers.get(owner_id, ()))
        return sum(len(queues) for queues in self._subscribers.values())


def format_sse_event(event: Optional[Dict[str, Any]]) -> str:
    """Render an event (or a keep-alive for None) in text/event-stream framing."""
    if event is None:
        return ": keep-alive\n\n"
    return f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"
