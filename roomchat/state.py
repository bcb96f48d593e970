from __future__ import annotations

from dataclasses import dataclass, field

from roomchat.models import AuthUser, Profile


@dataclass
class Session:
    """Latest signed-in identity, read at the point of use by every service."""

    user: AuthUser | None = None
    profile: Profile | None = None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user is not None else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def username(self) -> str:
        if self.profile is not None and self.profile.username:
            return self.profile.username
        if self.user is not None:
            return self.user.username
        return "Anonymous"

    @property
    def display_name(self) -> str:
        if self.profile is not None and self.profile.display_name:
            return self.profile.display_name
        return self.username

    def set_user(self, user: AuthUser | None, profile: Profile | None = None) -> None:
        self.user = user
        self.profile = profile if user is not None else None

    def set_profile(self, profile: Profile) -> None:
        if self.user is not None and profile.id == self.user.id:
            self.profile = profile

    def clear(self) -> None:
        self.user = None
        self.profile = None


@dataclass
class RoomViewState:
    summary_text: str | None = None
    summary_error: str | None = None
    summary_open: bool = False
    summary_loading: bool = False
    history_open: bool = True
    expanded_interaction_id: str | None = None
    alerts: list[str] = field(default_factory=list)
