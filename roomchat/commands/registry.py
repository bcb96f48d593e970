from __future__ import annotations

from typing import TYPE_CHECKING, Any

from roomchat.constants import THEME_COLORS, THEME_MODES

if TYPE_CHECKING:
    from roomchat.controller import ChatRoom

HELP_LINES = (
    "/ai [on|off]            toggle AI mode (messages go to the assistant)",
    "/private | /public      visibility of AI replies (private by default)",
    "/edit <n> <text>        edit your message #n",
    "/delete <n>             delete your message #n",
    "/history [n]            toggle the AI history panel or expand entry n",
    "/share <n>              share AI history entry n with the chat",
    "/summary [close]        summarize recent conversation",
    "/theme <mode|color>     light, dark, system or an accent color",
    "/profile [name|username|avatar <value>]",
    "/aiconfig ...           configure AI providers",
    "/login <email> [username], /signup <email> <username>, /logout",
    "/exit                   quit",
)


def parse_position(raw: str) -> int | None:
    raw = raw.strip().lstrip("#")
    if not raw.isdigit():
        return None
    return int(raw)


class CommandRegistry:
    def __init__(self, room: "ChatRoom"):
        self.room = room

    def build(self) -> dict[str, Any]:
        return {
            "/ai": self.command_ai,
            "/private": self.command_private,
            "/public": self.command_public,
            "/edit": self.command_edit,
            "/delete": self.command_delete,
            "/history": self.command_history,
            "/share": self.command_share,
            "/summary": self.command_summary,
            "/theme": self.command_theme,
            "/profile": self.command_profile,
            "/aiconfig": self.command_aiconfig,
            "/login": self.command_login,
            "/signup": self.command_signup,
            "/logout": self.command_logout,
            "/help": self.command_help,
            "/exit": self.command_exit,
            "/quit": self.command_exit,
        }

    def command_ai(self, args: str) -> None:
        composer = self.room.composer
        target = args.strip().lower()
        if target == "on":
            composer.ai_mode = True
        elif target == "off":
            composer.ai_mode = False
        elif not target:
            composer.toggle_ai_mode()
        else:
            self.room.notify("Usage: /ai [on|off]")
            return
        state = "on" if composer.ai_mode else "off"
        self.room.notify(f"AI mode {state} (replies are {composer.output_mode}).")

    def command_private(self, _args: str) -> None:
        self.room.composer.set_output_mode("private")
        self.room.notify("AI replies will be private.")

    def command_public(self, _args: str) -> None:
        self.room.composer.set_output_mode("public")
        self.room.notify("AI replies will be public.")

    async def command_edit(self, args: str) -> None:
        parts = args.strip().split(" ", 1)
        position = parse_position(parts[0]) if parts else None
        if position is None or len(parts) < 2 or not parts[1].strip():
            self.room.notify("Usage: /edit <n> <text>")
            return
        message = self.room.message_at(position)
        if message is None:
            self.room.notify(f"No message #{position}.")
            return
        updated, _error = await self.room.composer.handle_edit_message(
            message.id, parts[1]
        )
        if updated is not None:
            self.room.notify(f"Edited message #{position}.")

    async def command_delete(self, args: str) -> None:
        position = parse_position(args)
        if position is None:
            self.room.notify("Usage: /delete <n>")
            return
        message = self.room.message_at(position)
        if message is None:
            self.room.notify(f"No message #{position}.")
            return
        deleted, _error = await self.room.composer.handle_delete_message(message.id)
        if deleted:
            self.room.notify(f"Deleted message #{position}.")

    def command_history(self, args: str) -> None:
        state = self.room.view_state
        if not args.strip():
            state.history_open = not state.history_open
            return
        position = parse_position(args)
        interaction = self.room.interaction_at(position) if position else None
        if interaction is None:
            self.room.notify("Usage: /history [n] (n from the AI history panel)")
            return
        state.history_open = True
        if state.expanded_interaction_id == interaction.id:
            state.expanded_interaction_id = None
        else:
            state.expanded_interaction_id = interaction.id

    async def command_share(self, args: str) -> None:
        position = parse_position(args)
        interaction = self.room.interaction_at(position) if position else None
        if interaction is None:
            self.room.notify("Usage: /share <n> (n from the AI history panel)")
            return
        await self.room.share_interaction(interaction)

    async def command_summary(self, args: str) -> None:
        if args.strip().lower() == "close":
            self.room.close_summary()
            return
        await self.room.request_summary()

    async def command_theme(self, args: str) -> None:
        target = args.strip().lower()
        theme = self.room.theme
        if not target:
            current = theme.get()
            self.room.notify(
                f"Theme: mode={current.mode}, color={current.color}. "
                f"Modes: {', '.join(THEME_MODES)}. Colors: {', '.join(THEME_COLORS)}."
            )
            return
        if target in THEME_MODES:
            _preference, error = await theme.set(mode=target)
        elif target in THEME_COLORS:
            _preference, error = await theme.set(color=target)
        else:
            self.room.notify(f"Unknown theme '{target}'.")
            return
        if error:
            self.room.report_error(error)

    async def command_profile(self, args: str) -> None:
        session = self.room.session
        parts = args.strip().split(" ", 1)
        field = parts[0].lower() if parts and parts[0] else ""
        if not field:
            if session.profile is None:
                self.room.notify("Sign in to see your profile.")
                return
            profile = session.profile
            self.room.notify(
                f"Profile: username={profile.username}, "
                f"name={profile.display_name or '-'}, avatar={profile.avatar_url or '-'}"
            )
            return
        fields = {"name": "display_name", "username": "username", "avatar": "avatar_url"}
        if field not in fields or len(parts) < 2:
            self.room.notify("Usage: /profile name|username|avatar <value>")
            return
        profile, error = await self.room.auth.update_profile({fields[field]: parts[1]})
        if profile is None:
            self.room.report_error(error or "Could not update profile.")
            return
        self.room.messages.apply_profile(profile)
        self.room.notify("Profile updated.")

    def command_aiconfig(self, args: str) -> None:
        self.room.notify(self.room.ai_service.handle_aiconfig_command(args))

    async def command_login(self, args: str) -> None:
        parts = args.split()
        if not parts:
            self.room.notify("Usage: /login <email> [username]")
            return
        await self.room.sign_in(parts[0], parts[1] if len(parts) > 1 else None)

    async def command_signup(self, args: str) -> None:
        parts = args.split()
        if len(parts) < 2:
            self.room.notify("Usage: /signup <email> <username>")
            return
        user, error = await self.room.auth.sign_up(parts[0], parts[1])
        if user is None:
            self.room.report_error(error or "Sign up failed.")
            return
        await self.room.reload()
        self.room.notify(f"Welcome, {self.room.session.display_name}.")

    async def command_logout(self, _args: str) -> None:
        await self.room.sign_out()

    def command_help(self, _args: str) -> None:
        self.room.notify("\n".join(HELP_LINES))

    def command_exit(self, _args: str) -> None:
        self.room.exit()
