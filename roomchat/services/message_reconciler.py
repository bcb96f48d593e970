from __future__ import annotations

import bisect
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import ValidationError

from roomchat.constants import MESSAGES_TABLE, PLACEHOLDER_ID_LENGTH
from roomchat.models import AuthorInfo, ChangeEvent, Message, Profile
from roomchat.services.storage_service import RoomStore
from roomchat.state import Session

logger = logging.getLogger(__name__)

AIChangeCallback = Callable[[], Awaitable[None] | None]


def placeholder_author(user_id: str) -> AuthorInfo:
    return AuthorInfo(username=f"user-{user_id[:PLACEHOLDER_ID_LENGTH]}")


def belongs_in_feed(message: Message, viewer_id: str | None) -> bool:
    """AI rows live in the AI history; shared AI content arrives as plain rows."""
    return not message.is_ai_message and message.is_visible_to(viewer_id)


def can_modify(message: Message, user_id: str | None) -> bool:
    return (
        user_id is not None
        and message.user_id == user_id
        and not message.is_ai_message
    )


def parse_row(row: dict[str, Any]) -> Message | None:
    try:
        return Message.from_row(row)
    except ValidationError as exc:
        logger.warning("Ignoring malformed message row %s: %s", row.get("id"), exc)
        return None


def merge_messages(
    current: Iterable[Message],
    events: Iterable[ChangeEvent],
    viewer_id: str | None,
    deleted_ids: set[str] | None = None,
) -> list[Message]:
    """Fold confirmed change events into a local message list.

    Ids are de-duplicated, deletions leave tombstones so a late insert or
    update echo cannot resurrect a row, and the result is ordered by
    creation time. ``deleted_ids`` is updated in place when given.
    """
    by_id = {message.id: message for message in current}
    tombstones = deleted_ids if deleted_ids is not None else set()
    for event in events:
        if event.table != MESSAGES_TABLE:
            continue
        row_id = event.row_id
        if event.event_type == "DELETE":
            by_id.pop(row_id, None)
            tombstones.add(row_id)
            continue
        if row_id in tombstones:
            continue
        message = parse_row(event.new)
        if message is None:
            continue
        if not belongs_in_feed(message, viewer_id):
            by_id.pop(message.id, None)
            continue
        existing = by_id.get(message.id)
        if existing is not None and message.profiles is None:
            message = message.model_copy(update={"profiles": existing.profiles})
        by_id[message.id] = message
    return sorted(by_id.values(), key=Message.sort_key)


class MessageReconciler:
    """Owns the ordered main feed for one mounted room view."""

    def __init__(
        self,
        store: RoomStore,
        session: Session,
        on_ai_change: AIChangeCallback | None = None,
    ):
        self.store = store
        self.session = session
        self.on_ai_change = on_ai_change
        self.messages: list[Message] = []
        self.deleted_ids: set[str] = set()
        self.mounted = False

    @property
    def viewer_id(self) -> str | None:
        return self.session.user_id

    def mount(self) -> None:
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False

    def find(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    async def attach_profiles(self, messages: list[Message]) -> list[Message]:
        author_ids = list(dict.fromkeys(message.user_id for message in messages))
        profiles = await self.store.select_profiles(author_ids)
        joined: list[Message] = []
        for message in messages:
            profile = profiles.get(message.user_id)
            author = (
                profile.to_author_info()
                if profile is not None
                else placeholder_author(message.user_id)
            )
            joined.append(message.model_copy(update={"profiles": author}))
        return joined

    async def load_all(self) -> list[Message]:
        viewer_id = self.viewer_id
        rows = await self.store.select_messages()
        visible = [message for message in rows if belongs_in_feed(message, viewer_id)]
        joined = await self.attach_profiles(visible)
        joined.sort(key=Message.sort_key)
        if self.mounted:
            self.messages = joined
            self.deleted_ids.clear()
        return joined

    def _upsert(self, message: Message) -> None:
        if message.id in self.deleted_ids:
            return
        for index, existing in enumerate(self.messages):
            if existing.id == message.id:
                if message.profiles is None:
                    message = message.model_copy(
                        update={"profiles": existing.profiles}
                    )
                self.messages[index] = message
                return
        if not self.messages or message.sort_key() >= self.messages[-1].sort_key():
            self.messages.append(message)
            return
        keys = [existing.sort_key() for existing in self.messages]
        self.messages.insert(bisect.bisect_right(keys, message.sort_key()), message)

    async def on_insert(self, raw_row: dict[str, Any]) -> None:
        raw_message = parse_row(raw_row)
        if raw_message is None:
            return
        fetched = await self.store.select_message(raw_message.id)
        if not self.mounted:
            return
        message = fetched or raw_message
        if message.is_ai_message or not message.is_visible_to(self.viewer_id):
            return
        if message.id in self.deleted_ids:
            return
        joined = await self.attach_profiles([message])
        if not self.mounted:
            return
        self._upsert(joined[0])

    async def on_update(self, raw_row: dict[str, Any]) -> None:
        message = parse_row(raw_row)
        if message is None:
            return
        if message.is_ai_message:
            if message.user_id == self.viewer_id and self.on_ai_change is not None:
                result = self.on_ai_change()
                if inspect.isawaitable(result):
                    await result
            return
        if not self.mounted or message.id in self.deleted_ids:
            return
        if self.find(message.id) is None:
            joined = await self.attach_profiles([message])
            if not self.mounted:
                return
            message = joined[0]
        self._upsert(message)

    def on_delete(self, raw_id: str) -> None:
        if not self.mounted:
            return
        self.deleted_ids.add(raw_id)
        self.messages = [message for message in self.messages if message.id != raw_id]

    def apply_confirmed(self, message: Message) -> None:
        """Apply a write's own response; its change-feed echo may come before or after."""
        if not self.mounted or not belongs_in_feed(message, self.viewer_id):
            return
        if message.profiles is None and self.find(message.id) is None:
            profile = self.session.profile
            author = (
                profile.to_author_info()
                if profile is not None and profile.id == message.user_id
                else placeholder_author(message.user_id)
            )
            message = message.model_copy(update={"profiles": author})
        self._upsert(message)

    def apply_profile(self, profile: Profile) -> None:
        if not self.mounted:
            return
        author = profile.to_author_info()
        self.messages = [
            (
                message.model_copy(update={"profiles": author})
                if message.user_id == profile.id
                else message
            )
            for message in self.messages
        ]

    async def handle_change(self, event: ChangeEvent) -> None:
        if event.event_type == "INSERT":
            await self.on_insert(event.new)
        elif event.event_type == "UPDATE":
            await self.on_update(event.new)
        elif event.event_type == "DELETE":
            self.on_delete(event.row_id)
