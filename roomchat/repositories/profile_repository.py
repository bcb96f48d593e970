from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from roomchat.constants import PROFILES_TABLE
from roomchat.models import Profile, utc_now
from roomchat.repositories.row_files import JsonRowDirectory


class ProfileRepository(JsonRowDirectory):
    def __init__(self, data_root: str | Path):
        super().__init__(Path(data_root) / PROFILES_TABLE)

    def get_profile(self, user_id: str) -> Profile | None:
        data = self.read_row(user_id)
        if data is None:
            return None
        try:
            return Profile.model_validate(data)
        except ValidationError:
            self.drop_malformed_row(self.get_row_path(user_id))
            return None

    def get_profiles(self, user_ids: list[str]) -> dict[str, Profile]:
        profiles: dict[str, Profile] = {}
        for user_id in dict.fromkeys(user_ids):
            profile = self.get_profile(user_id)
            if profile is not None:
                profiles[user_id] = profile
        return profiles

    def save_profile(self, profile: Profile) -> Profile:
        self.write_row_atomic(profile.id, profile.to_row())
        return profile

    def update_profile(self, user_id: str, fields: dict[str, Any]) -> Profile | None:
        profile = self.get_profile(user_id)
        if profile is None:
            return None
        allowed = {
            key: value
            for key, value in fields.items()
            if key in {"username", "display_name", "avatar_url", "theme_preference"}
        }
        allowed["updated_at"] = utc_now()
        updated = profile.model_copy(update=allowed)
        return self.save_profile(updated)
