from __future__ import annotations

import re
from datetime import datetime

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.lexers import Lexer

from roomchat.constants import (
    AI_PROVIDERS,
    MAX_RENDERED_MESSAGES,
    THEME_COLORS,
    THEME_MODES,
)
from roomchat.models import Message, ensure_aware, utc_now
from roomchat.services.message_reconciler import can_modify

OWN_MARKER = " ✎"
EDITED_MARKER = " (edited)"
LINE_PATTERN = re.compile(r"^(#\d+ )(\[[^\]]*\] )([^:]+:)(.*)$")

COMMANDS = [
    ("/ai", "Toggle AI mode (on|off)"),
    ("/private", "AI replies visible only to you"),
    ("/public", "AI replies visible to everyone"),
    ("/edit", "Edit your message (/edit 3 new text)"),
    ("/delete", "Delete your message (/delete 3)"),
    ("/history", "Toggle AI history or expand an entry"),
    ("/share", "Share an AI history entry with the chat"),
    ("/summary", "Summarize the conversation"),
    ("/theme", "Change theme mode or accent color"),
    ("/profile", "Show or edit your profile"),
    ("/aiconfig", "Manage local AI config"),
    ("/login", "Sign in (/login you@example.com name)"),
    ("/signup", "Create an account"),
    ("/logout", "Sign out"),
    ("/help", "List commands"),
    ("/exit", "Quit the application"),
]


def format_relative_time(value: datetime, now: datetime | None = None) -> str:
    now = ensure_aware(now) if now is not None else utc_now()
    seconds = int((now - ensure_aware(value)).total_seconds())
    if seconds < 60:
        return "just now"
    for size, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= size:
            count = seconds // size
            if unit == "day" and count >= 7:
                break
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return ensure_aware(value).astimezone().strftime("%Y-%m-%d")


def render_message(
    position: int, message: Message, viewer_id: str | None, now: datetime
) -> str:
    edited = EDITED_MARKER if message.updated_at is not None else ""
    marker = OWN_MARKER if can_modify(message, viewer_id) else ""
    when = format_relative_time(message.created_at, now)
    return f"#{position} [{when}] {message.author_name}{marker}: {message.content}{edited}"


def render_feed(
    messages: list[Message], viewer_id: str | None, now: datetime | None = None
) -> str:
    now = now or utc_now()
    start = max(0, len(messages) - MAX_RENDERED_MESSAGES)
    lines = [
        render_message(index + 1, message, viewer_id, now)
        for index, message in enumerate(messages[start:], start=start)
    ]
    return "\n".join(lines)


def lex_line(line_text: str) -> list[tuple[str, str]]:
    match = LINE_PATTERN.match(line_text)
    if match is None:
        return [("", line_text)]
    position, when, author, rest = match.groups()
    author_style = "class:own" if author.endswith(OWN_MARKER + ":") else "bold"
    return [
        ("class:timestamp", position),
        ("class:timestamp", when),
        (author_style, author),
        ("", rest),
    ]


class SlashCompleter(Completer):
    def __init__(self) -> None:
        self.model_hints = {
            "gemini": ["gemini-2.5-flash", "gemini-2.5-pro"],
            "openai": ["gpt-4o-mini", "gpt-4o"],
        }

    def _yield_candidates(
        self, prefix: str, options: list[str], metas: dict[str, str] | None = None
    ):
        metas = metas or {}
        for value in options:
            if value.startswith(prefix):
                yield Completion(
                    value,
                    start_position=-len(prefix),
                    display=value,
                    display_meta=metas.get(value, ""),
                )

    def _complete_aiconfig_command(self, text: str):
        tokens = text.split()
        trailing_space = text.endswith(" ")
        providers = list(AI_PROVIDERS)
        subcommands = ["set-key", "set-model", "set-provider"]
        if len(tokens) == 1 and not trailing_space:
            return self._yield_candidates(text, ["/aiconfig"])
        current = "" if trailing_space else tokens[-1]
        values = tokens if trailing_space else tokens[:-1]
        if len(values) == 1:
            return self._yield_candidates(
                current,
                subcommands,
                {
                    "set-key": "Set provider API key",
                    "set-model": "Set default model for provider",
                    "set-provider": "Set default active provider",
                },
            )
        if len(values) == 2 and values[1] in subcommands:
            return self._yield_candidates(current, providers)
        if len(values) == 3 and values[1] == "set-model":
            return self._yield_candidates(
                current, self.model_hints.get(values[2].lower(), [])
            )
        return []

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor
        if re.match(r"^/aiconfig(\s|$)", text):
            yield from self._complete_aiconfig_command(text)
            return

        if text.startswith("/theme "):
            yield from self._yield_candidates(
                text[7:].lower(), list(THEME_MODES) + list(THEME_COLORS)
            )
            return

        if text.startswith("/ai "):
            yield from self._yield_candidates(text[4:].lower(), ["on", "off"])
            return

        if text.startswith("/profile "):
            yield from self._yield_candidates(
                text[9:].lower(), ["name", "username", "avatar"]
            )
            return

        if text.startswith("/") and " " not in text:
            word = text.lower()
            for cmd, desc in COMMANDS:
                if cmd.startswith(word):
                    yield Completion(
                        cmd, start_position=-len(word), display=cmd, display_meta=desc
                    )


class ChatLexer(Lexer):
    def lex_document(self, document):
        def get_line_tokens(line_num):
            return lex_line(document.lines[line_num])

        return get_line_tokens
