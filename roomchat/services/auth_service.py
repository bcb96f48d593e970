from __future__ import annotations

import logging
import re
import uuid
from typing import Any

from pydantic import ValidationError

from roomchat.models import AuthUser, Profile
from roomchat.repositories.interfaces import ConfigRepositoryProtocol
from roomchat.services.storage_service import RoomStore
from roomchat.state import Session

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")
USER_NAMESPACE = uuid.UUID("6f1d3c52-8a43-4b8e-9a55-2f8f0e7c1d10")
PROFILE_FIELDS = {"username", "display_name", "avatar_url"}


def user_id_for_email(email: str) -> str:
    return uuid.uuid5(USER_NAMESPACE, email.strip().lower()).hex


class AuthService:
    """Local sign-in: identities are derived from the email address and the
    session is remembered in the chat config file."""

    def __init__(
        self,
        config_repository: ConfigRepositoryProtocol,
        store: RoomStore,
        session: Session,
    ):
        self.config_repository = config_repository
        self.store = store
        self.session = session

    def get_user(self) -> AuthUser | None:
        return self.session.user

    def _persist(self, user: AuthUser | None) -> None:
        self.config_repository.update_config(
            session=user.model_dump() if user is not None else None
        )

    async def ensure_profile(self, user: AuthUser) -> Profile | None:
        profile = await self.store.get_profile(user.id)
        if profile is not None:
            return profile
        created, error = await self.store.save_profile(
            Profile(id=user.id, username=user.username)
        )
        if created is None:
            logger.warning("Could not create profile for %s: %s", user.id, error)
        return created

    async def restore(self) -> AuthUser | None:
        raw = self.config_repository.load_config().get("session")
        if not raw:
            return None
        try:
            user = AuthUser.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed saved session: %s", exc)
            return None
        self.session.set_user(user, await self.ensure_profile(user))
        return user

    async def sign_in(
        self, email: str, username: str | None = None
    ) -> tuple[AuthUser | None, str | None]:
        email = email.strip()
        if not EMAIL_PATTERN.match(email):
            return None, "Enter a valid email address."
        metadata: dict[str, Any] = {}
        if username and username.strip():
            metadata["username"] = username.strip()
        user = AuthUser(id=user_id_for_email(email), email=email, metadata=metadata)
        profile = await self.ensure_profile(user)
        self.session.set_user(user, profile)
        self._persist(user)
        return user, None

    async def sign_up(
        self, email: str, username: str
    ) -> tuple[AuthUser | None, str | None]:
        if not username.strip():
            return None, "Username is required to sign up."
        return await self.sign_in(email, username)

    def sign_out(self) -> None:
        self.session.clear()
        self._persist(None)

    async def update_profile(
        self, fields: dict[str, Any]
    ) -> tuple[Profile | None, str | None]:
        user_id = self.session.user_id
        if user_id is None:
            return None, "Sign in to edit your profile."
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            return None, f"Unknown profile fields: {', '.join(sorted(unknown))}"
        cleaned = {
            key: (str(value).strip() or None) if value is not None else None
            for key, value in fields.items()
        }
        if "username" in cleaned and not cleaned["username"]:
            return None, "Username cannot be empty."
        profile, error = await self.store.update_profile(user_id, cleaned)
        if profile is None:
            return None, error
        self.session.set_profile(profile)
        return profile, None
