"""Notification bus with sync delivery and a backpressured async dispatch loop.

The engine publishes from synchronous tick code. Sync subscribers run inline;
async subscribers (WebSocket broadcast, push notifications) are fed through a
bounded queue so a slow consumer never stalls a tick. Subscriber failures are
logged and dropped, never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

from battlecard.core.types import EventType
from battlecard.core.data_types import Event

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[Event], Coroutine[Any, Any, None] | None]
SyncCallback = Callable[[Event], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class _Subscription:
    callback: Callable[[Event], Any]
    event_type: EventType | None  # None = every type
    inline: bool

    def matches(self, event: Event) -> bool:
        return self.event_type is None or self.event_type == event.type


class EventBus:
    """Subscription list shared by inline (sync) and queued (async) handlers.

    Every ``subscribe*`` call returns a callable that removes the handler again.
    """

    def __init__(self, max_queue_depth: int = 1000) -> None:
        self._subscriptions: list[_Subscription] = []
        self._max_queue_depth = max_queue_depth
        self._queue: asyncio.Queue[Event] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._published: Counter[str] = Counter()
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return self._dispatch_task is not None

    def stats(self) -> dict[str, Any]:
        return {
            "published": dict(self._published),
            "dropped": self._dropped,
            "subscribers": len(self._subscriptions),
            "queued": self._queue.qsize() if self._queue is not None else 0,
        }

    def _add(self, callback: Callable[[Event], Any], event_type: EventType | None, inline: bool) -> Unsubscribe:
        sub = _Subscription(callback, event_type, inline)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def subscribe(self, event_type: EventType, callback: AsyncCallback) -> Unsubscribe:
        return self._add(callback, event_type, inline=False)

    def subscribe_sync(self, event_type: EventType, callback: SyncCallback) -> Unsubscribe:
        return self._add(callback, event_type, inline=True)

    def subscribe_all(self, callback: AsyncCallback) -> Unsubscribe:
        return self._add(callback, None, inline=False)

    def subscribe_all_sync(self, callback: SyncCallback) -> Unsubscribe:
        return self._add(callback, None, inline=True)

    async def publish(self, event: Event) -> None:
        """Publish from async code. Delivers directly when the loop is not started."""
        self._deliver_inline(event)
        if self._queue is not None:
            self._enqueue(event)
        else:
            await self._deliver_queued(event)

    def publish_sync(self, event: Event) -> None:
        """Publish from engine tick code, possibly on a worker thread.

        Without a started loop only inline subscribers see the event.
        """
        self._deliver_inline(event)
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            logger.warning("Event bus loop closed, dropping %s", event.type.value)

    async def start(self) -> None:
        if self._dispatch_task is not None:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue_depth)
        self._loop = asyncio.get_running_loop()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.debug("Event bus started (queue depth %d)", self._max_queue_depth)

    async def stop(self) -> None:
        """Stop dispatching. Events still queued are discarded."""
        task, self._dispatch_task = self._dispatch_task, None
        self._loop = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._queue is not None and not self._queue.empty():
            logger.info("Event bus stopped with %d undelivered events", self._queue.qsize())
        self._queue = None

    def _enqueue(self, event: Event) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "Event bus backpressure: queue full (%d), dropping %s",
                self._max_queue_depth,
                event.type.value,
            )

    async def _dispatch_loop(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()
            await self._deliver_queued(event)

    async def _deliver_queued(self, event: Event) -> None:
        for sub in [s for s in self._subscriptions if not s.inline and s.matches(event)]:
            try:
                result = sub.callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in event handler for %s", event.type.value)

    def _deliver_inline(self, event: Event) -> None:
        self._published[event.type.value] += 1
        for sub in [s for s in self._subscriptions if s.inline and s.matches(event)]:
            try:
                sub.callback(event)
            except Exception:
                logger.exception("Error in sync event handler for %s", event.type.value)
