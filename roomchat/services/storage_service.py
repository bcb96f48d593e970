from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Protocol

from pydantic import ValidationError

from roomchat.models import Message, Profile, TypingIndicator
from roomchat.repositories.interfaces import (
    MessageRepositoryProtocol,
    ProfileRepositoryProtocol,
    TypingRepositoryProtocol,
)

logger = logging.getLogger(__name__)


class RoomStore(Protocol):
    async def select_messages(self) -> list[Message]: ...

    async def select_message(self, message_id: str) -> Message | None: ...

    async def select_profiles(self, user_ids: list[str]) -> dict[str, Profile]: ...

    async def insert_message(
        self, message: Message
    ) -> tuple[Message | None, str | None]: ...

    async def update_message(
        self, message_id: str, user_id: str, fields: dict[str, Any]
    ) -> tuple[Message | None, str | None]: ...

    async def delete_message(
        self, message_id: str, user_id: str
    ) -> tuple[bool, str | None]: ...

    async def select_active_typing(self, since: datetime) -> list[TypingIndicator]: ...

    async def upsert_typing(self, indicator: TypingIndicator) -> bool: ...

    async def delete_typing(self, user_id: str) -> bool: ...

    async def delete_stale_typing(self, cutoff: datetime) -> int: ...

    async def get_profile(self, user_id: str) -> Profile | None: ...

    async def save_profile(self, profile: Profile) -> tuple[Profile | None, str | None]: ...

    async def update_profile(
        self, user_id: str, fields: dict[str, Any]
    ) -> tuple[Profile | None, str | None]: ...


class StorageService:
    """Async store facade over the shared-folder repositories.

    Reads degrade to empty results with a logged warning. Writes return
    ``(result, error_text)`` so callers can alert without mutating state.
    """

    def __init__(
        self,
        message_repository: MessageRepositoryProtocol,
        typing_repository: TypingRepositoryProtocol,
        profile_repository: ProfileRepositoryProtocol,
    ):
        self.message_repository = message_repository
        self.typing_repository = typing_repository
        self.profile_repository = profile_repository

    def ensure_paths(self) -> None:
        self.message_repository.ensure_paths()
        self.typing_repository.ensure_paths()
        self.profile_repository.ensure_paths()

    def parse_message(self, row: dict[str, Any]) -> Message | None:
        try:
            return Message.from_row(row)
        except ValidationError as exc:
            logger.warning("Invalid message row %s ignored: %s", row.get("id"), exc)
            return None

    async def select_messages(self) -> list[Message]:
        try:
            rows = await asyncio.to_thread(self.message_repository.load_rows)
        except OSError as exc:
            logger.warning("Failed loading messages: %s", exc)
            return []
        messages = [m for m in (self.parse_message(row) for row in rows) if m]
        messages.sort(key=Message.sort_key)
        return messages

    async def select_message(self, message_id: str) -> Message | None:
        try:
            row = await asyncio.to_thread(self.message_repository.load_row, message_id)
        except OSError as exc:
            logger.warning("Failed loading message %s: %s", message_id, exc)
            return None
        return self.parse_message(row) if row is not None else None

    async def select_profiles(self, user_ids: list[str]) -> dict[str, Profile]:
        if not user_ids:
            return {}
        try:
            return await asyncio.to_thread(
                self.profile_repository.get_profiles, list(user_ids)
            )
        except (OSError, ValueError) as exc:
            logger.warning("Failed loading profiles: %s", exc)
            return {}

    async def insert_message(
        self, message: Message
    ) -> tuple[Message | None, str | None]:
        try:
            row = await asyncio.to_thread(
                self.message_repository.insert_row, message.to_row()
            )
        except OSError as exc:
            logger.warning("Failed inserting message: %s", exc)
            return None, "Could not send message. Storage busy or unavailable."
        if row is None:
            return None, "Message already exists."
        return message.model_copy(update={"profiles": None}), None

    async def update_message(
        self, message_id: str, user_id: str, fields: dict[str, Any]
    ) -> tuple[Message | None, str | None]:
        payload = {
            key: (value.isoformat() if isinstance(value, datetime) else value)
            for key, value in fields.items()
        }
        try:
            row = await asyncio.to_thread(
                self.message_repository.update_row, message_id, user_id, payload
            )
        except OSError as exc:
            logger.warning("Failed updating message %s: %s", message_id, exc)
            return None, "Could not edit message. Storage busy or unavailable."
        if row is None:
            return None, "Message not found or not yours to edit."
        return self.parse_message(row), None

    async def delete_message(
        self, message_id: str, user_id: str
    ) -> tuple[bool, str | None]:
        try:
            deleted = await asyncio.to_thread(
                self.message_repository.delete_row, message_id, user_id
            )
        except OSError as exc:
            logger.warning("Failed deleting message %s: %s", message_id, exc)
            return False, "Could not delete message. Storage busy or unavailable."
        if not deleted:
            return False, "Message not found or not yours to delete."
        return True, None

    async def select_active_typing(self, since: datetime) -> list[TypingIndicator]:
        try:
            return await asyncio.to_thread(self.typing_repository.select_active, since)
        except OSError as exc:
            logger.warning("Failed loading typing indicators: %s", exc)
            return []

    async def upsert_typing(self, indicator: TypingIndicator) -> bool:
        try:
            await asyncio.to_thread(self.typing_repository.upsert, indicator)
            return True
        except (OSError, ValueError) as exc:
            logger.warning("Failed writing typing indicator: %s", exc)
            return False

    async def delete_typing(self, user_id: str) -> bool:
        try:
            return await asyncio.to_thread(self.typing_repository.delete, user_id)
        except (OSError, ValueError) as exc:
            logger.warning("Failed deleting typing indicator: %s", exc)
            return False

    async def delete_stale_typing(self, cutoff: datetime) -> int:
        try:
            return await asyncio.to_thread(
                self.typing_repository.delete_older_than, cutoff
            )
        except OSError as exc:
            logger.warning("Failed sweeping typing indicators: %s", exc)
            return 0

    async def get_profile(self, user_id: str) -> Profile | None:
        try:
            return await asyncio.to_thread(self.profile_repository.get_profile, user_id)
        except (OSError, ValueError) as exc:
            logger.warning("Failed loading profile %s: %s", user_id, exc)
            return None

    async def save_profile(
        self, profile: Profile
    ) -> tuple[Profile | None, str | None]:
        try:
            saved = await asyncio.to_thread(
                self.profile_repository.save_profile, profile
            )
        except (OSError, ValueError) as exc:
            logger.warning("Failed saving profile %s: %s", profile.id, exc)
            return None, "Could not save profile."
        return saved, None

    async def update_profile(
        self, user_id: str, fields: dict[str, Any]
    ) -> tuple[Profile | None, str | None]:
        try:
            updated = await asyncio.to_thread(
                self.profile_repository.update_profile, user_id, fields
            )
        except (OSError, ValueError) as exc:
            logger.warning("Failed updating profile %s: %s", user_id, exc)
            return None, "Could not update profile."
        if updated is None:
            return None, "Profile not found."
        return updated, None
