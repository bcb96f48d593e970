from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from prompt_toolkit.application import Application
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout.containers import (
    Float,
    FloatContainer,
    HSplit,
    VSplit,
    Window,
)
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.layout import Layout
from prompt_toolkit.layout.menus import CompletionsMenu
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame, TextArea

from roomchat.ui import ChatLexer, SlashCompleter, format_relative_time, render_feed

if TYPE_CHECKING:
    from roomchat.controller import ChatRoom

SIDEBAR_WIDTH = 38
PREVIEW_LENGTH = 30


def clip(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


class PromptToolkitView:
    def __init__(self, room: "ChatRoom", style: Style):
        self.room = room
        self._clearing_input = False
        self._tasks: set[asyncio.Task[Any]] = set()

        self.output_field = TextArea(
            style="class:chat-area",
            focusable=False,
            wrap_lines=True,
            lexer=ChatLexer(),
        )
        self.typing_window = Window(
            content=FormattedTextControl(self.get_typing_fragments),
            height=1,
            style="class:typing",
        )
        self.input_field = TextArea(
            height=3,
            prompt="> ",
            style="class:input-area",
            multiline=False,
            wrap_lines=False,
            completer=SlashCompleter(),
            complete_while_typing=True,
        )
        self.input_field.buffer.on_text_changed += self._on_text_changed
        self.sidebar_window = Window(
            content=FormattedTextControl(self.get_sidebar_fragments),
            width=SIDEBAR_WIDTH,
            style="class:sidebar",
            wrap_lines=True,
        )

        self.key_bindings = KeyBindings()

        @self.key_bindings.add("enter")
        def _submit(_event: Any) -> None:
            self.submit_input()

        @self.key_bindings.add("tab")
        def _complete(event: Any) -> None:
            buffer = event.current_buffer
            complete_state = buffer.complete_state
            if complete_state is not None:
                completion = complete_state.current_completion
                if completion is None and complete_state.completions:
                    completion = complete_state.completions[0]
                if completion is not None:
                    buffer.apply_completion(completion)
                    return
            buffer.start_completion(select_first=True)

        @self.key_bindings.add("c-c")
        def _exit(event: Any) -> None:
            event.app.exit()

        root_container = HSplit(
            [
                VSplit(
                    [
                        HSplit(
                            [Frame(self.output_field, title="Chat"), self.typing_window]
                        ),
                        Frame(self.sidebar_window, title="AI Assistant"),
                    ]
                ),
                Frame(self.input_field, title=self.get_input_title),
            ]
        )

        self.layout_container = FloatContainer(
            content=root_container,
            floats=[
                Float(
                    xcursor=True,
                    ycursor=True,
                    content=CompletionsMenu(max_height=16, scroll_offset=1),
                )
            ],
        )
        self.application: Any = Application(
            layout=Layout(self.layout_container, focused_element=self.input_field),
            key_bindings=self.key_bindings,
            style=style,
            full_screen=True,
            mouse_support=True,
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_text_changed(self, _buffer: Any) -> None:
        if self._clearing_input:
            return
        self._spawn(self.room.on_input_changed(self.input_field.text))

    def submit_input(self) -> None:
        text = self.input_field.text
        if not text.strip():
            return
        self._clearing_input = True
        try:
            self.input_field.text = ""
        finally:
            self._clearing_input = False
        self._spawn(self.room.handle_input(text))

    def get_input_title(self) -> str:
        composer = self.room.composer
        if not self.room.session.is_authenticated:
            return "Sign in with /login <email> [username]"
        if composer.ai_mode:
            return f"Ask the AI assistant ({composer.output_mode} reply)"
        return "Type a message (/ for commands)"

    def get_typing_fragments(self) -> list[tuple[str, str]]:
        return [("class:typing", self.room.typing.label)]

    def get_sidebar_fragments(self) -> list[tuple[str, str]]:
        room = self.room
        state = room.view_state
        session = room.session
        identity = session.display_name if session.is_authenticated else "not signed in"
        ai_state = (
            f"AI mode: on ({room.composer.output_mode})"
            if room.composer.ai_mode
            else "AI mode: off"
        )
        fragments: list[tuple[str, str]] = [
            ("class:accent", clip(identity, SIDEBAR_WIDTH)),
            ("", "\n"),
            ("class:status.ai" if room.composer.ai_mode else "", ai_state),
            ("", "\n\n"),
        ]

        if state.summary_open:
            fragments.append(("class:accent", "Summary\n"))
            if state.summary_loading:
                fragments.append(("class:summary", "Generating summary...\n"))
            elif state.summary_error:
                fragments.append(("class:alert", f"{state.summary_error}\n"))
            elif state.summary_text:
                fragments.append(("class:summary", f"{state.summary_text}\n"))
            fragments.append(("", "\n"))

        if state.history_open:
            fragments.append(("class:accent", "AI History\n"))
            if not room.ai_store.interactions:
                fragments.append(("class:timestamp", "No AI interactions yet.\n"))
            for index, interaction in enumerate(room.ai_store.interactions, start=1):
                when = format_relative_time(interaction.created_at)
                fragments.append(
                    ("", f"{index}. {clip(interaction.prompt, PREVIEW_LENGTH)}\n")
                )
                fragments.append(("class:timestamp", f"   {when}\n"))
                if interaction.id == state.expanded_interaction_id:
                    fragments.append(("class:ai", f"{interaction.output}\n"))
            fragments.append(("", "\n"))

        for alert in state.alerts[-5:]:
            style = "class:alert" if alert.startswith("! ") else "class:timestamp"
            fragments.append((style, f"{alert}\n"))
        return fragments

    def refresh(self) -> None:
        text = render_feed(self.room.messages.messages, self.room.session.user_id)
        if text != self.output_field.text:
            self.output_field.text = text
            self.output_field.buffer.cursor_position = len(text)
        self.application.invalidate()

    def set_style(self, style: Style) -> None:
        self.application.style = style
        self.application.invalidate()

    async def run_async(self) -> Any:
        return await self.application.run_async()

    def exit(self, result: str | None = None) -> None:
        self.application.exit(result=result)
