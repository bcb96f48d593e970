from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any

from roomchat.constants import (
    AI_DEFAULT_OUTPUT_MODE,
    AI_OUTPUT_MODES,
    TYPING_INACTIVITY_SECONDS,
)
from roomchat.models import AIReplyRequest, Message, OutputMode, utc_now
from roomchat.services.ai_interaction_store import AIInteractionStore
from roomchat.services.ai_service import AIService
from roomchat.services.message_reconciler import MessageReconciler, can_modify
from roomchat.services.storage_service import RoomStore
from roomchat.services.typing_reconciler import TypingReconciler
from roomchat.state import Session

logger = logging.getLogger(__name__)

SIGN_IN_REQUIRED = "Sign in to send messages."


class ComposerState(str, Enum):
    IDLE = "idle"
    TYPING = "typing"
    SUBMITTING = "submitting"


class Composer:
    """Input surface: typing presence, plain sends, AI routing and edits."""

    def __init__(
        self,
        store: RoomStore,
        session: Session,
        typing: TypingReconciler,
        messages: MessageReconciler,
        ai_store: AIInteractionStore,
        ai_service: AIService,
        on_error: Callable[[str], None] | None = None,
        inactivity_seconds: float = TYPING_INACTIVITY_SECONDS,
    ):
        self.store = store
        self.session = session
        self.typing = typing
        self.messages = messages
        self.ai_store = ai_store
        self.ai_service = ai_service
        self.on_error = on_error
        self.inactivity_seconds = inactivity_seconds
        self.state = ComposerState.IDLE
        self.draft = ""
        self.ai_mode = False
        self.output_mode: OutputMode = AI_DEFAULT_OUTPUT_MODE
        self.last_error: str | None = None
        self._inactivity_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._submit_lock = asyncio.Lock()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _report(self, error: str) -> str:
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)
        return error

    def cancel_inactivity_timer(self) -> None:
        handle = self._inactivity_handle
        self._inactivity_handle = None
        if handle is not None:
            handle.cancel()

    def _reset_inactivity_timer(self) -> None:
        self.cancel_inactivity_timer()
        loop = asyncio.get_running_loop()
        self._inactivity_handle = loop.call_later(
            self.inactivity_seconds, self._on_inactive
        )

    def _on_inactive(self) -> None:
        self._inactivity_handle = None
        if self.state != ComposerState.TYPING:
            return
        self.state = ComposerState.IDLE
        user_id = self.session.user_id
        if user_id is not None:
            self._spawn(self.typing.release(user_id))

    async def on_input_changed(self, text: str) -> None:
        self.draft = text
        if self.state == ComposerState.SUBMITTING:
            return
        user_id = self.session.user_id
        if user_id is None:
            return
        self.state = ComposerState.TYPING
        self._reset_inactivity_timer()
        await self.typing.touch(user_id, self.session.username)

    async def submit(self, text: str | None = None) -> str | None:
        """Send the draft; returns an error text, or None on success or no-op.

        Submits made while another is in flight queue behind it and are sent
        in the order they were captured.
        """
        content = (self.draft if text is None else text).strip()
        if not content:
            return None
        user_id = self.session.user_id
        if user_id is None:
            return self._report(SIGN_IN_REQUIRED)

        self.draft = ""
        self.cancel_inactivity_timer()
        ai_mode = self.ai_mode
        async with self._submit_lock:
            self.state = ComposerState.SUBMITTING
            try:
                await self.typing.release(user_id)
                if ai_mode:
                    return await self._submit_ai(content)
                return await self._submit_plain(user_id, content)
            finally:
                self.state = ComposerState.IDLE

    async def _submit_plain(self, user_id: str, content: str) -> str | None:
        message = Message(
            user_id=user_id,
            content=content,
            is_ai_message=False,
            ai_output_mode="public",
        )
        saved, error = await self.store.insert_message(message)
        if saved is None:
            return self._report(error or "Could not send message.")
        self.messages.apply_confirmed(saved)
        return None

    async def _submit_ai(self, content: str) -> str | None:
        request = AIReplyRequest(message=content, outputMode=self.output_mode)
        response = await self.ai_service.reply(request, self.session.user)
        if not response.success:
            return self._report(response.error or "AI request failed.")
        await self.ai_store.refresh_on_ai_complete()
        return None

    def _owned_message(self, message_id: str) -> Message | None:
        message = self.messages.find(message_id)
        if message is None or not can_modify(message, self.session.user_id):
            return None
        return message

    async def handle_edit_message(
        self, message_id: str, new_content: str
    ) -> tuple[Message | None, str | None]:
        message = self._owned_message(message_id)
        if message is None:
            return None, self._report("You can only edit your own messages.")
        content = new_content.strip()
        if not content:
            return None, self._report("Message content cannot be empty.")
        if content == message.content:
            return message, None
        updated, error = await self.store.update_message(
            message.id,
            message.user_id,
            {"content": content, "updated_at": utc_now()},
        )
        if updated is None:
            return None, self._report(error or "Could not edit message.")
        self.messages.apply_confirmed(updated)
        return updated, None

    async def handle_delete_message(self, message_id: str) -> tuple[bool, str | None]:
        message = self._owned_message(message_id)
        if message is None:
            return False, self._report("You can only delete your own messages.")
        deleted, error = await self.store.delete_message(message.id, message.user_id)
        if not deleted:
            return False, self._report(error or "Could not delete message.")
        self.messages.on_delete(message.id)
        self.ai_store.on_delete(message.id)
        return True, None

    def toggle_ai_mode(self) -> bool:
        self.ai_mode = not self.ai_mode
        return self.ai_mode

    def set_output_mode(self, mode: str) -> OutputMode:
        normalized = mode.strip().lower()
        if normalized not in AI_OUTPUT_MODES:
            raise ValueError(f"Unknown output mode '{mode}'. Use public or private.")
        self.output_mode = normalized  # type: ignore[assignment]
        return self.output_mode

    async def close(self) -> None:
        self.cancel_inactivity_timer()
        self.state = ComposerState.IDLE
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
