from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from roomchat.constants import (
    TYPING_FRESHNESS_SECONDS,
    TYPING_SWEEP_INTERVAL_SECONDS,
    TYPING_THROTTLE_SECONDS,
)
from roomchat.models import ChangeEvent, TypingIndicator, utc_now
from roomchat.services.storage_service import RoomStore

logger = logging.getLogger(__name__)


def format_typing_label(names: list[str]) -> str:
    if not names:
        return ""
    if len(names) == 1:
        return f"{names[0]} is typing..."
    return f"{', '.join(names[:-1])} and {names[-1]} are typing..."


class TypingReconciler:
    def __init__(
        self,
        store: RoomStore,
        throttle_seconds: float = TYPING_THROTTLE_SECONDS,
        freshness_seconds: float = TYPING_FRESHNESS_SECONDS,
        sweep_interval_seconds: float = TYPING_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.throttle_seconds = throttle_seconds
        self.freshness_seconds = freshness_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self.monotonic = monotonic
        self.typists: list[str] = []
        self.last_touch_by_author: dict[str, float] = {}
        self.mounted = False
        self._sweep_task: asyncio.Task[None] | None = None
        # Own-row writes land in call order; a late upsert must not revive a released row.
        self._write_lock = asyncio.Lock()

    @property
    def current_typists(self) -> list[str]:
        return list(self.typists)

    @property
    def label(self) -> str:
        return format_typing_label(self.typists)

    def freshness_cutoff(self) -> datetime:
        return self.clock() - timedelta(seconds=self.freshness_seconds)

    async def touch(self, author_id: str, username: str) -> bool:
        now = self.monotonic()
        last = self.last_touch_by_author.get(author_id)
        if last is not None and now - last < self.throttle_seconds:
            return False
        self.last_touch_by_author[author_id] = now
        stamp = self.clock()
        indicator = TypingIndicator(
            user_id=author_id, username=username, updated_at=stamp, created_at=stamp
        )
        async with self._write_lock:
            return await self.store.upsert_typing(indicator)

    async def release(self, author_id: str) -> None:
        async with self._write_lock:
            await self.store.delete_typing(author_id)

    async def sweep(self) -> int:
        removed = await self.store.delete_stale_typing(self.freshness_cutoff())
        if removed:
            logger.debug("Swept %s stale typing indicators", removed)
        return removed

    async def refresh(self) -> list[str]:
        active = await self.store.select_active_typing(self.freshness_cutoff())
        names = [indicator.username for indicator in active]
        if self.mounted:
            self.typists = names
        return names

    async def handle_change(self, _event: ChangeEvent) -> None:
        await self.refresh()

    def start(self) -> None:
        self.mounted = True
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        self.mounted = False
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while self.mounted:
            await asyncio.sleep(self.sweep_interval_seconds)
            if not self.mounted:
                return
            await self.sweep()
