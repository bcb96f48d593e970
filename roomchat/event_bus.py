from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from roomchat.events import AppEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None] | None]


@dataclass
class EventBusMetrics:
    published: int = 0
    delivered: int = 0
    retried: int = 0
    dropped: int = 0
    handler_failures: int = 0
    queue_full: int = 0
    fallback_executed: int = 0


class EventBus:
    """Queue of view-facing events drained by one task on the running loop.

    Critical events that meet a full queue are dispatched in their own task
    instead of being dropped, and their handlers get extra attempts.
    """

    def __init__(self, maxsize: int = 512, critical_handler_retries: int = 1):
        self._queue: asyncio.Queue[AppEvent] = asyncio.Queue(maxsize=maxsize)
        self._critical_handler_retries = max(0, critical_handler_retries)
        self._handlers: dict[type[AppEvent], list[EventHandler]] = defaultdict(list)
        self._worker: asyncio.Task[None] | None = None
        self._overflow: set[asyncio.Task[None]] = set()

        self.metrics = EventBusMetrics()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def subscribe(self, event_type: type[AppEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: AppEvent, *, critical: bool = False) -> bool:
        if not self.running:
            return False
        event.critical = event.critical or critical
        try:
            self._queue.put_nowait(event)
            self.metrics.published += 1
            return True
        except asyncio.QueueFull:
            self.metrics.queue_full += 1
        if event.critical:
            self.metrics.retried += 1
            task = asyncio.get_running_loop().create_task(self._dispatch(event))
            self._overflow.add(task)
            task.add_done_callback(self._overflow.discard)
            self.metrics.published += 1
            return True
        self.metrics.dropped += 1
        logger.warning(
            "Event queue full; dropped topic=%s source=%s",
            event.topic,
            event.source,
        )
        return False

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        while not self._queue.empty():
            await self._dispatch(self._queue.get_nowait())
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: AppEvent) -> None:
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                await self._dispatch_to_handler(event, handler)

    async def _dispatch_to_handler(self, event: AppEvent, handler: EventHandler) -> None:
        max_attempts = 1 + (self._critical_handler_retries if event.critical else 0)
        for attempt in range(max_attempts):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                self.metrics.delivered += 1
                return
            except Exception:
                self.metrics.handler_failures += 1
                if attempt + 1 < max_attempts:
                    event.retry_count += 1
                    self.metrics.retried += 1
                    continue
                logger.exception(
                    "Event handler failed topic=%s source=%s critical=%s retries=%s",
                    event.topic,
                    event.source,
                    event.critical,
                    event.retry_count,
                )

    def increment_fallback_executed(self) -> None:
        self.metrics.fallback_executed += 1

    def snapshot_metrics(self) -> EventBusMetrics:
        return EventBusMetrics(**vars(self.metrics))
