from __future__ import annotations

from roomchat.models import AIInteraction, Message
from roomchat.services.storage_service import RoomStore
from roomchat.state import Session


def format_share_block(display_name: str, prompt: str, output: str) -> str:
    return f"User ({display_name}) prompted:\n{prompt}\n\nAI Assistant Output:\n{output}"


def is_interaction_row(message: Message, user_id: str | None) -> bool:
    return (
        message.is_ai_message
        and bool((message.ai_prompt or "").strip())
        and user_id is not None
        and message.user_id == user_id
    )


class AIInteractionStore:
    """The viewer's own AI prompt/response history, newest first."""

    def __init__(self, store: RoomStore, session: Session):
        self.store = store
        self.session = session
        self.interactions: list[AIInteraction] = []
        self.sharing_id: str | None = None
        self.mounted = False

    def mount(self) -> None:
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False

    def find(self, interaction_id: str) -> AIInteraction | None:
        for interaction in self.interactions:
            if interaction.id == interaction_id:
                return interaction
        return None

    async def load_for_user(self, user_id: str | None) -> list[AIInteraction]:
        if user_id is None:
            if self.mounted:
                self.interactions = []
            return []
        rows = await self.store.select_messages()
        interactions = [
            AIInteraction.from_message(message)
            for message in rows
            if is_interaction_row(message, user_id)
        ]
        interactions.sort(key=lambda item: (item.created_at, item.id), reverse=True)
        if self.mounted and user_id == self.session.user_id:
            self.interactions = interactions
        return interactions

    async def refresh_on_ai_complete(self) -> list[AIInteraction]:
        return await self.load_for_user(self.session.user_id)

    async def share_to_chat(
        self, interaction: AIInteraction
    ) -> tuple[Message | None, str | None]:
        user_id = self.session.user_id
        if user_id is None:
            return None, "Sign in to share with the chat."
        if self.sharing_id == interaction.id:
            return None, "This interaction is already being shared."
        self.sharing_id = interaction.id
        try:
            message = Message(
                user_id=user_id,
                content=format_share_block(
                    self.session.display_name, interaction.prompt, interaction.output
                ),
                is_ai_message=False,
                ai_output_mode="public",
            )
            return await self.store.insert_message(message)
        finally:
            if self.sharing_id == interaction.id:
                self.sharing_id = None

    def on_delete(self, raw_id: str) -> None:
        if not self.mounted:
            return
        self.interactions = [item for item in self.interactions if item.id != raw_id]
