"""
In-process change feed.

Publishes item change events to per-board subscribers. A subscription is a
cancellable object with explicit teardown: iterate it (or ``await get()``)
to receive events, and ``close()`` it when leaving the board. Closing wakes
any pending reader, which then stops iterating.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Dict, List, Optional

from .engine.collaborators import ChangeEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class SubscriptionClosed(Exception):
    """Raised by Subscription.get() once the subscription is closed."""


class Subscription:
    """A board-scoped stream of change events."""

    def __init__(self, feed: "ChangeFeed", board_id: str):
        self.feed = feed
        self.board_id = board_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop = _current_loop()
        self.closed = False
        self.delivered = 0

    def _deliver(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        self._put(event)
        self.delivered += 1
        return True

    async def get(self) -> ChangeEvent:
        """Wait for the next event."""
        if self.closed and self._queue.empty():
            raise SubscriptionClosed(self.board_id)
        event = await self._queue.get()
        if event is _CLOSED:
            raise SubscriptionClosed(self.board_id)
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.feed._unsubscribe(self)
        self._put(_CLOSED)

    def _put(self, value: object) -> None:
        # Publishers may run in a worker thread; hand off to the owning loop.
        if self._loop is not None and self._loop is not _current_loop():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, value)
        else:
            self._queue.put_nowait(value)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeFeed:
    """Fan-out of change events to the subscribers of each board."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, board_id: str) -> Subscription:
        subscription = Subscription(self, board_id)
        self._subscribers[board_id].append(subscription)
        logger.debug(f"Subscribed to board {board_id} ({len(self._subscribers[board_id])} subscribers)")
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every open subscription of its board.

        Returns:
            Number of subscriptions the event was delivered to
        """
        delivered = 0
        for subscription in list(self._subscribers.get(event.board_id, ())):
            if subscription._deliver(event):
                delivered += 1
        logger.debug(f"Published {event.kind.value} for item {event.item_id} to {delivered} subscribers")
        return delivered

    def subscriber_count(self, board_id: Optional[str] = None) -> int:
        if board_id is not None:
            return len(self._subscribers.get(board_id, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def _unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.board_id)
        if subs and subscription in subs:
            subs.remove(subscription)
            if not subs:
                del self._subscribers[subscription.board_id]
