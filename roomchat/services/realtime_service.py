from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections import defaultdict
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from roomchat.constants import (
    MESSAGES_FILE,
    MONITOR_POLL_INTERVAL_ACTIVE_SECONDS,
    MONITOR_POLL_INTERVAL_MAX_SECONDS,
    MONITOR_POLL_INTERVAL_MIN_SECONDS,
    PROFILES_TABLE,
    TYPING_TABLE,
)
from roomchat.models import ChangeEvent
from roomchat.repositories.interfaces import (
    MessageRepositoryProtocol,
    ProfileRepositoryProtocol,
    TypingRepositoryProtocol,
)

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]


class Subscription:
    """Disposable handle returned by ``RealtimeService.subscribe``."""

    def __init__(self, feed: "RealtimeService", table: str, callback: ChangeCallback):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.feed.remove_subscription(self)


class StoreWatchHandler(FileSystemEventHandler):
    def __init__(self, feed: "RealtimeService"):
        super().__init__()
        self.feed = feed

    def _handle_path(self, path: str) -> None:
        normalized = str(path).replace("\\", "/")
        if normalized.endswith("/" + MESSAGES_FILE):
            self.feed.signal_refresh()
            return
        if Path(normalized).parent.name in (TYPING_TABLE, PROFILES_TABLE):
            self.feed.signal_refresh()

    def on_created(self, event) -> None:
        if getattr(event, "is_directory", False):
            return
        self._handle_path(getattr(event, "src_path", ""))

    def on_modified(self, event) -> None:
        if getattr(event, "is_directory", False):
            return
        self._handle_path(getattr(event, "src_path", ""))

    def on_deleted(self, event) -> None:
        if getattr(event, "is_directory", False):
            return
        self._handle_path(getattr(event, "src_path", ""))

    def on_moved(self, event) -> None:
        if getattr(event, "is_directory", False):
            return
        self._handle_path(getattr(event, "dest_path", ""))


class RealtimeService:
    """Row-level change feed over the shared data folder.

    Messages are tailed from the operation log; one-file-per-row tables are
    diffed against their previous snapshot. A watchdog observer wakes the
    poll loop early, and polling continues if the observer cannot start.
    Callbacks always run on the event loop, one event at a time.
    """

    def __init__(
        self,
        message_repository: MessageRepositoryProtocol,
        typing_repository: TypingRepositoryProtocol,
        profile_repository: ProfileRepositoryProtocol,
        watch_files: bool = True,
    ):
        self.message_repository = message_repository
        self.typing_repository = typing_repository
        self.profile_repository = profile_repository
        self.watch_files = watch_files
        self.subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self.message_offset = 0
        self.snapshots: dict[str, dict[str, int]] = {}
        self.poll_interval_seconds = MONITOR_POLL_INTERVAL_ACTIVE_SECONDS
        self.idle_cycles = 0
        self.running = False
        self.file_observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, table, callback)
        self.subscriptions[table].append(subscription)
        return subscription

    def remove_subscription(self, subscription: Subscription) -> None:
        handlers = self.subscriptions.get(subscription.table, [])
        if subscription in handlers:
            handlers.remove(subscription)

    def _row_tables(self) -> dict[str, tuple[Any, str]]:
        return {
            TYPING_TABLE: (self.typing_repository, "user_id"),
            PROFILES_TABLE: (self.profile_repository, "id"),
        }

    def prime(self) -> None:
        """Start from the current store state; only later writes are delivered."""
        self.message_offset = self.message_repository.current_offset()
        for table, (repository, _key) in self._row_tables().items():
            self.snapshots[table] = repository.snapshot()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self.prime()
        self.running = True
        if self.watch_files:
            self.start_file_watcher()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self.running = False
        self.stop_file_watcher()
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def signal_refresh(self) -> None:
        loop = self._loop
        wake = self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wake.set)

    def start_file_watcher(self) -> None:
        if self.file_observer is not None:
            return
        watch_path = str(Path(self.message_repository.get_message_file()).parent)
        try:
            observer = Observer()
            handler = StoreWatchHandler(self)
            if os.path.isdir(watch_path):
                observer.schedule(handler, watch_path, recursive=True)
            observer.daemon = True
            observer.start()
            self.file_observer = observer
        except Exception as exc:
            logger.warning("File watcher unavailable, falling back to polling: %s", exc)
            self.file_observer = None

    def stop_file_watcher(self) -> None:
        observer = self.file_observer
        if observer is None:
            return
        try:
            observer.stop()
            observer.join(timeout=1.5)
        except Exception as exc:
            logger.warning("Failed stopping file watcher cleanly: %s", exc)
        self.file_observer = None

    def collect_row_table_changes(self, table: str) -> list[ChangeEvent]:
        repository, key = self._row_tables()[table]
        previous = self.snapshots.get(table, {})
        try:
            current = repository.snapshot()
        except OSError as exc:
            logger.warning("Failed scanning table %s: %s", table, exc)
            return []
        self.snapshots[table] = current

        events: list[ChangeEvent] = []
        for name, stamp in current.items():
            if previous.get(name) == stamp:
                continue
            row = repository.read_row(name)
            if row is None:
                continue
            event_type = "UPDATE" if name in previous else "INSERT"
            events.append(
                ChangeEvent(table=table, event_type=event_type, new=row, old={key: name})
            )
        for name in previous:
            if name not in current:
                events.append(ChangeEvent(table=table, event_type="DELETE", old={key: name}))
        return events

    def collect_changes(self) -> list[ChangeEvent]:
        events: list[ChangeEvent] = []
        try:
            message_events, self.message_offset = (
                self.message_repository.read_changes_since(self.message_offset)
            )
            events.extend(message_events)
        except OSError as exc:
            logger.warning("Failed reading message changes: %s", exc)
        for table in self._row_tables():
            events.extend(self.collect_row_table_changes(table))
        return events

    async def dispatch(self, event: ChangeEvent) -> None:
        for subscription in list(self.subscriptions.get(event.table, [])):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Change handler failed table=%s type=%s",
                    event.table,
                    event.event_type,
                )

    async def poll_once(self) -> int:
        events = await asyncio.to_thread(self.collect_changes)
        for event in events:
            await self.dispatch(event)
        return len(events)

    async def _run(self) -> None:
        while self.running:
            had_changes = await self.poll_once() > 0
            if had_changes:
                self.idle_cycles = 0
                self.poll_interval_seconds = MONITOR_POLL_INTERVAL_MIN_SECONDS
            else:
                self.idle_cycles = min(self.idle_cycles + 1, 20)
                if self.idle_cycles >= 4:
                    self.poll_interval_seconds = min(
                        MONITOR_POLL_INTERVAL_MAX_SECONDS,
                        self.poll_interval_seconds + 0.1,
                    )
                else:
                    self.poll_interval_seconds = MONITOR_POLL_INTERVAL_ACTIVE_SECONDS

            wake = self._wake
            if wake is None:
                await asyncio.sleep(self.poll_interval_seconds)
                continue
            try:
                await asyncio.wait_for(wake.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            wake.clear()
