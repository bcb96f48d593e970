from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from typing import Any

from prompt_toolkit.styles import Style

from roomchat.constants import COLOR_ACCENTS, MODE_STYLES, THEME_COLORS, THEME_MODES
from roomchat.models import Profile, ThemePreference
from roomchat.repositories.interfaces import ConfigRepositoryProtocol
from roomchat.services.storage_service import RoomStore
from roomchat.state import Session

logger = logging.getLogger(__name__)

ThemeListener = Callable[[ThemePreference], None]


def detect_system_mode(environ: Mapping[str, str]) -> str:
    """Guess the terminal background from ``COLORFGBG`` ("fg;bg"); dark if unknown."""
    raw = environ.get("COLORFGBG", "")
    background = raw.rsplit(";", 1)[-1].strip()
    if not background.isdigit():
        return "dark"
    return "light" if int(background) in (7, 15) else "dark"


def build_style(preference: ThemePreference, resolved_mode: str) -> Style:
    accent = COLOR_ACCENTS.get(preference.color, COLOR_ACCENTS["default"])
    base_dict = {
        "scrollbar.background": "bg:#222222",
        "scrollbar.button": "bg:#777777",
        "accent": f"fg:{accent} bold",
        "frame.label": f"fg:{accent} bold",
        "status.ai": f"bg:{accent} #ffffff bold",
        "alert": "fg:#ef4444 bold",
    }
    base_dict.update(MODE_STYLES.get(resolved_mode, MODE_STYLES["dark"]))
    base_dict["own"] = f"fg:{accent} bold"
    return Style.from_dict(base_dict)


class ThemeStore:
    """Observable theme preference, persisted locally and on the user's profile."""

    def __init__(
        self,
        config_repository: ConfigRepositoryProtocol,
        store: RoomStore,
        session: Session,
        environ: Mapping[str, str] | None = None,
    ):
        self.config_repository = config_repository
        self.store = store
        self.session = session
        self.environ = os.environ if environ is None else environ
        self.preference = ThemePreference()
        self._listeners: list[ThemeListener] = []

    def get(self) -> ThemePreference:
        return self.preference

    def subscribe(self, listener: ThemeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.preference)
            except Exception:
                logger.exception("Theme listener failed")

    def _save_local(self) -> None:
        self.config_repository.update_config(theme=self.preference.model_dump())

    def _apply(self, preference: ThemePreference) -> bool:
        if preference == self.preference:
            return False
        self.preference = preference
        self._save_local()
        self._notify()
        return True

    def load(self) -> ThemePreference:
        raw: Any = self.config_repository.load_config().get("theme")
        parsed = ThemePreference.parse(raw) if raw is not None else None
        if parsed is None:
            if raw is not None:
                logger.warning("Ignoring malformed theme preference: %r", raw)
            parsed = ThemePreference()
        self.preference = parsed
        if raw is not None and raw != parsed.model_dump():
            self._save_local()
        return self.preference

    async def set(
        self, mode: str | None = None, color: str | None = None
    ) -> tuple[ThemePreference | None, str | None]:
        update = self.preference.model_dump()
        if mode is not None:
            update["mode"] = mode
        if color is not None:
            update["color"] = color
        preference = ThemePreference.parse(update)
        if preference is None:
            return None, (
                f"Unknown theme. Modes: {', '.join(THEME_MODES)}. "
                f"Colors: {', '.join(THEME_COLORS)}."
            )
        self._apply(preference)
        user_id = self.session.user_id
        if user_id is None:
            return preference, None
        _profile, error = await self.store.update_profile(
            user_id, {"theme_preference": preference.model_dump()}
        )
        return preference, error

    def apply_profile(self, profile: Profile) -> bool:
        """Adopt a theme saved from another device for the signed-in user."""
        if profile.id != self.session.user_id:
            return False
        if profile.theme_preference is None:
            return False
        parsed = ThemePreference.parse(profile.theme_preference)
        if parsed is None:
            logger.warning("Ignoring malformed theme on profile %s", profile.id)
            return False
        return self._apply(parsed)

    def resolved_mode(self) -> str:
        if self.preference.mode == "system":
            return detect_system_mode(self.environ)
        return self.preference.mode

    def build_style(self) -> Style:
        return build_style(self.preference, self.resolved_mode())
