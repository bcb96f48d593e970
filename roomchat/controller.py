from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from roomchat.commands.registry import CommandRegistry
from roomchat.constants import (
    MESSAGES_TABLE,
    PROFILES_TABLE,
    SUMMARY_CONTEXT_LIMIT,
    TYPING_TABLE,
)
from roomchat.event_bus import EventBus
from roomchat.event_helpers import (
    emit_refresh_output,
    emit_system_message,
    emit_theme_changed,
)
from roomchat.events import RefreshOutputEvent, SystemMessageEvent, ThemeChangedEvent
from roomchat.models import (
    AIInteraction,
    ChangeEvent,
    Message,
    Profile,
    SummaryRequest,
    ThemePreference,
)
from roomchat.services.ai_interaction_store import AIInteractionStore
from roomchat.services.ai_service import AIService
from roomchat.services.auth_service import AuthService
from roomchat.services.composer_service import Composer
from roomchat.services.message_reconciler import MessageReconciler
from roomchat.services.realtime_service import RealtimeService, Subscription
from roomchat.services.theme_service import ThemeStore
from roomchat.services.typing_reconciler import TypingReconciler
from roomchat.state import RoomViewState, Session

logger = logging.getLogger(__name__)

MAX_ALERTS = 50
CommandHandler = Callable[[str], Awaitable[None] | None]


class ChatRoom:
    """One mounted chat view: routes change notifications to the reconcilers
    and user input to the composer or a slash command."""

    def __init__(
        self,
        session: Session,
        feed: RealtimeService,
        auth: AuthService,
        messages: MessageReconciler,
        typing: TypingReconciler,
        ai_store: AIInteractionStore,
        composer: Composer,
        ai_service: AIService,
        theme: ThemeStore,
        event_bus: EventBus | None = None,
        view_state: RoomViewState | None = None,
    ):
        self.session = session
        self.feed = feed
        self.auth = auth
        self.messages = messages
        self.typing = typing
        self.ai_store = ai_store
        self.composer = composer
        self.ai_service = ai_service
        self.theme = theme
        self.event_bus = event_bus
        self.view_state = view_state or RoomViewState()
        self.view: Any = None
        self.mounted = False
        self.subscriptions: list[Subscription] = []
        self.command_handlers: dict[str, CommandHandler] = {}
        self._theme_unsubscribe: Callable[[], None] | None = None
        self.composer.on_error = self.report_error

    def attach_view(self, view: Any) -> None:
        self.view = view

    def register_event_handlers(self, bus: EventBus) -> None:
        bus.subscribe(SystemMessageEvent, self.on_system_message_event)
        bus.subscribe(RefreshOutputEvent, self.on_refresh_output_event)
        bus.subscribe(ThemeChangedEvent, self.on_theme_changed_event)

    def on_system_message_event(self, event: SystemMessageEvent) -> None:
        self.append_system_message(event.text, alert=event.alert)

    def on_refresh_output_event(self, _event: RefreshOutputEvent) -> None:
        self.refresh_view()

    def on_theme_changed_event(self, _event: ThemeChangedEvent) -> None:
        self.apply_theme()

    def append_system_message(self, text: str, alert: bool = False) -> None:
        prefix = "! " if alert else ""
        self.view_state.alerts.append(f"{prefix}{text}")
        del self.view_state.alerts[:-MAX_ALERTS]
        self.refresh_view()

    def refresh_view(self) -> None:
        if self.view is not None:
            self.view.refresh()

    def apply_theme(self) -> None:
        if self.view is not None:
            self.view.set_style(self.theme.build_style())

    def report_error(self, text: str) -> None:
        emit_system_message(self, text, source="room", alert=True)

    def notify(self, text: str) -> None:
        emit_system_message(self, text, source="room")

    async def mount(self) -> None:
        if self.mounted:
            return
        self.mounted = True
        if self.event_bus is not None:
            self.register_event_handlers(self.event_bus)
            self.event_bus.start()
        self.messages.mount()
        self.ai_store.mount()
        self.subscriptions = [
            self.feed.subscribe(MESSAGES_TABLE, self.on_message_change),
            self.feed.subscribe(TYPING_TABLE, self.on_typing_change),
            self.feed.subscribe(PROFILES_TABLE, self.on_profile_change),
        ]
        self._theme_unsubscribe = self.theme.subscribe(self.on_theme_preference)
        await self.feed.start()
        self.typing.start()
        await self.reload()

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        for subscription in self.subscriptions:
            subscription.unsubscribe()
        self.subscriptions = []
        if self._theme_unsubscribe is not None:
            self._theme_unsubscribe()
            self._theme_unsubscribe = None
        self.messages.unmount()
        self.ai_store.unmount()
        await self.composer.close()
        await self.typing.stop()
        await self.feed.stop()
        if self.event_bus is not None:
            await self.event_bus.stop()

    async def reload(self) -> None:
        await self.messages.load_all()
        await self.ai_store.load_for_user(self.session.user_id)
        await self.typing.refresh()
        profile = self.session.profile
        if profile is not None:
            self.theme.apply_profile(profile)
        emit_refresh_output(self, source="room")

    async def on_message_change(self, event: ChangeEvent) -> None:
        await self.messages.handle_change(event)
        if event.event_type == "DELETE":
            self.ai_store.on_delete(event.row_id)
        elif (
            event.event_type == "INSERT"
            and event.new.get("is_ai_message")
            and event.new.get("user_id") == self.session.user_id
        ):
            await self.ai_store.refresh_on_ai_complete()
        emit_refresh_output(self, source="feed")

    async def on_typing_change(self, _event: ChangeEvent) -> None:
        await self.typing.refresh()
        emit_refresh_output(self, source="feed")

    async def on_profile_change(self, event: ChangeEvent) -> None:
        if event.event_type == "DELETE":
            return
        try:
            profile = Profile.model_validate(event.new)
        except ValidationError as exc:
            logger.warning("Ignoring malformed profile row %s: %s", event.row_id, exc)
            return
        if not self.mounted:
            return
        self.messages.apply_profile(profile)
        self.session.set_profile(profile)
        self.theme.apply_profile(profile)
        emit_refresh_output(self, source="feed")

    def on_theme_preference(self, preference: ThemePreference) -> None:
        emit_theme_changed(self, preference)

    def build_command_handlers(self) -> dict[str, CommandHandler]:
        self.command_handlers = CommandRegistry(self).build()
        return self.command_handlers

    async def handle_input(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        if not text.startswith("/"):
            await self.composer.submit(text)
            emit_refresh_output(self, source="composer")
            return
        if not self.command_handlers:
            self.build_command_handlers()
        parts = text.split(" ", 1)
        command = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""
        handler = self.command_handlers.get(command)
        if handler is None:
            self.notify(f"Unknown command '{command}'. Run /help for the list.")
            return
        result = handler(args)
        if inspect.isawaitable(result):
            await result
        emit_refresh_output(self, source="command")

    async def on_input_changed(self, text: str) -> None:
        await self.composer.on_input_changed(text)

    def message_at(self, position: int) -> Message | None:
        if 1 <= position <= len(self.messages.messages):
            return self.messages.messages[position - 1]
        return None

    def interaction_at(self, position: int) -> AIInteraction | None:
        if 1 <= position <= len(self.ai_store.interactions):
            return self.ai_store.interactions[position - 1]
        return None

    async def share_interaction(self, interaction: AIInteraction) -> None:
        message, error = await self.ai_store.share_to_chat(interaction)
        if message is None:
            self.report_error(error or "Could not share AI output.")
            return
        self.messages.apply_confirmed(message)
        self.notify("Shared AI output with the chat.")

    async def request_summary(self) -> None:
        state = self.view_state
        state.summary_open = True
        state.summary_loading = True
        state.summary_error = None
        emit_refresh_output(self, source="summary")
        recent = self.messages.messages[-SUMMARY_CONTEXT_LIMIT:]
        try:
            response = await self.ai_service.summarize(
                SummaryRequest(messages=recent), self.session.user
            )
        finally:
            state.summary_loading = False
        if response.success:
            state.summary_text = response.summary
        else:
            state.summary_text = None
            state.summary_error = response.error or "Failed to generate summary"

    def close_summary(self) -> None:
        self.view_state.summary_open = False
        self.view_state.summary_text = None
        self.view_state.summary_error = None

    async def sign_in(self, email: str, username: str | None = None) -> None:
        user, error = await self.auth.sign_in(email, username)
        if user is None:
            self.report_error(error or "Sign in failed.")
            return
        self.notify(f"Signed in as {self.session.display_name}.")
        await self.reload()

    async def sign_out(self) -> None:
        user_id = self.session.user_id
        if user_id is not None:
            await self.typing.release(user_id)
        self.auth.sign_out()
        self.notify("Signed out.")
        await self.reload()

    def exit(self) -> None:
        if self.view is not None:
            self.view.exit()
