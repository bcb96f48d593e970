from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from roomchat.models import ChangeEvent, Profile, TypingIndicator


class MessageRepositoryProtocol(Protocol):
    def ensure_paths(self) -> None: ...

    def get_message_file(self) -> Path: ...

    def load_rows(self) -> list[dict[str, Any]]: ...

    def load_row(self, message_id: str) -> dict[str, Any] | None: ...

    def insert_row(self, row: dict[str, Any]) -> dict[str, Any] | None: ...

    def update_row(
        self, message_id: str, user_id: str, fields: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    def delete_row(self, message_id: str, user_id: str) -> bool: ...

    def read_changes_since(self, offset: int) -> tuple[list[ChangeEvent], int]: ...

    def current_offset(self) -> int: ...


class TypingRepositoryProtocol(Protocol):
    table_dir: Path

    def ensure_paths(self) -> None: ...

    def select_active(self, since: datetime) -> list[TypingIndicator]: ...

    def upsert(self, indicator: TypingIndicator) -> TypingIndicator: ...

    def delete(self, user_id: str) -> bool: ...

    def delete_older_than(self, cutoff: datetime) -> int: ...

    def read_row(self, row_id: str) -> dict[str, Any] | None: ...

    def snapshot(self) -> dict[str, int]: ...


class ProfileRepositoryProtocol(Protocol):
    table_dir: Path

    def ensure_paths(self) -> None: ...

    def get_profile(self, user_id: str) -> Profile | None: ...

    def get_profiles(self, user_ids: list[str]) -> dict[str, Profile]: ...

    def save_profile(self, profile: Profile) -> Profile: ...

    def update_profile(
        self, user_id: str, fields: dict[str, Any]
    ) -> Profile | None: ...

    def read_row(self, row_id: str) -> dict[str, Any] | None: ...

    def snapshot(self) -> dict[str, int]: ...


class ConfigRepositoryProtocol(Protocol):
    def load_config(self) -> dict[str, Any]: ...

    def save_config(self, payload: dict[str, Any]) -> None: ...

    def update_config(self, **fields: Any) -> dict[str, Any]: ...

    def load_ai_config(self) -> dict[str, Any]: ...

    def save_ai_config(self, payload: dict[str, Any]) -> None: ...
