"""In-process publish/subscribe channel for newly inserted thread messages.

Each subscription owns an unbounded queue registered under one thread id.
``publish`` fans a payload out to every queue registered for that thread
without waiting on any of them, so senders never block on delivery.
Payloads for one thread are delivered in publish order.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

log = logging.getLogger(__name__)


class Subscription:
    def __init__(self, thread_id: int):
        self.thread_id = thread_id
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _deliver(self, payload: dict[str, Any]) -> None:
        self._queue.put_nowait(payload)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next payload, or None if *timeout* seconds pass without one."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self._queue.get()


class MessageFeed:
    def __init__(self) -> None:
        self._subscribers: dict[int, set[Subscription]] = defaultdict(set)

    def subscriber_count(self, thread_id: int) -> int:
        return len(self._subscribers.get(thread_id, ()))

    def publish(self, thread_id: int, payload: dict[str, Any]) -> int:
        """Deliver *payload* to current subscribers of *thread_id*.

        Returns the number of subscriptions reached. Must be called from the
        event loop thread that owns the subscriptions.
        """
        subs = list(self._subscribers.get(thread_id, ()))
        for sub in subs:
            sub._deliver(payload)
        log.debug("Published to thread %s (%d subscribers)", thread_id, len(subs))
        return len(subs)

    @asynccontextmanager
    async def subscribe(self, thread_id: int) -> AsyncIterator[Subscription]:
        sub = Subscription(thread_id)
        self._subscribers[thread_id].add(sub)
        log.debug("Subscribed to thread %s", thread_id)
        try:
            yield sub
        finally:
            subs = self._subscribers.get(thread_id)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscribers[thread_id]
            log.debug("Unsubscribed from thread %s", thread_id)


feed = MessageFeed()


def get_feed() -> MessageFeed:
    return feed
