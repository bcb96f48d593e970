import asyncio

import pytest
from fakes import FakeStore, make_message

from roomchat.commands.registry import parse_position
from roomchat.controller import ChatRoom
from roomchat.models import ChangeEvent, Profile
from roomchat.providers import GeminiClient, OpenAIClient
from roomchat.repositories import ConfigRepository
from roomchat.services.ai_interaction_store import AIInteractionStore
from roomchat.services.ai_service import AIService
from roomchat.services.auth_service import AuthService, user_id_for_email
from roomchat.services.composer_service import Composer
from roomchat.services.message_reconciler import MessageReconciler
from roomchat.services.realtime_service import Subscription
from roomchat.services.theme_service import ThemeStore
from roomchat.services.typing_reconciler import TypingReconciler
from roomchat.state import Session

ANN_ID = user_id_for_email("ann@example.com")


class FakeFeed:
    def __init__(self):
        self.subscriptions: dict[str, list[Subscription]] = {}
        self.started = False

    def subscribe(self, table, callback):
        subscription = Subscription(self, table, callback)
        self.subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def remove_subscription(self, subscription):
        self.subscriptions[subscription.table].remove(subscription)

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False


class FakeView:
    def __init__(self):
        self.refreshes = 0
        self.styles = []
        self.exited = False

    def refresh(self):
        self.refreshes += 1

    def set_style(self, style):
        self.styles.append(style)

    def exit(self):
        self.exited = True


def gemini_post(text="ok"):
    calls = []

    def post(url, headers, payload):
        calls.append(payload)
        return {"candidates": [{"content": {"parts": [{"text": text}]}}]}

    post.calls = calls
    return post


def build(tmp_path, store=None, post=None):
    store = store or FakeStore()
    repo = ConfigRepository(
        config_file=str(tmp_path / "chat_config.json"),
        ai_config_file=str(tmp_path / "ai_config.json"),
    )
    config = repo.get_default_ai_config()
    config["providers"]["gemini"]["api_key"] = "g-key"
    repo.save_ai_config(config)

    session = Session()
    ai_service = AIService(
        store,
        repo,
        {"gemini": GeminiClient(), "openai": OpenAIClient()},
        http_post=post or gemini_post(),
    )
    ai_store = AIInteractionStore(store, session)
    messages = MessageReconciler(
        store, session, on_ai_change=ai_store.refresh_on_ai_complete
    )
    typing = TypingReconciler(store)
    composer = Composer(store, session, typing, messages, ai_store, ai_service)
    room = ChatRoom(
        session=session,
        feed=FakeFeed(),
        auth=AuthService(repo, store, session),
        messages=messages,
        typing=typing,
        ai_store=ai_store,
        composer=composer,
        ai_service=ai_service,
        theme=ThemeStore(repo, store, session, environ={}),
    )
    room.attach_view(FakeView())
    return room, store


def run_mounted(room, scenario):
    async def wrapper():
        await room.mount()
        try:
            await scenario()
        finally:
            await room.unmount()

    asyncio.run(wrapper())


def test_parse_position():
    assert parse_position("3") == 3
    assert parse_position("#12") == 12
    assert parse_position("x") is None


def test_mount_subscribes_and_unmount_releases(tmp_path):
    room, _ = build(tmp_path)

    async def scenario():
        assert room.feed.started is True
        assert sorted(room.feed.subscriptions) == ["messages", "profiles", "typing_indicators"]

    run_mounted(room, scenario)

    assert room.feed.started is False
    assert all(not subs for subs in room.feed.subscriptions.values())
    assert room.messages.mounted is False


def test_signed_out_message_is_refused_with_alert(tmp_path):
    room, store = build(tmp_path)

    async def scenario():
        await room.handle_input("hello")

    run_mounted(room, scenario)

    assert store.writes == []
    assert room.view_state.alerts == ["! Sign in to send messages."]


def test_login_then_send_lands_in_feed(tmp_path):
    room, store = build(tmp_path)

    async def scenario():
        await room.handle_input("/login ann@example.com ann")
        await room.handle_input("hello room")

    run_mounted(room, scenario)

    assert "Signed in as ann." in room.view_state.alerts
    assert [m.content for m in room.messages.messages] == ["hello room"]
    assert room.messages.messages[0].author_name == "ann"
    assert room.view.refreshes > 0


def test_unknown_command_is_reported(tmp_path):
    room, _ = build(tmp_path)

    async def scenario():
        await room.handle_input("/dance")

    run_mounted(room, scenario)

    assert room.view_state.alerts == ["Unknown command '/dance'. Run /help for the list."]


def test_edit_and_delete_by_position(tmp_path):
    store = FakeStore(
        messages=[
            make_message("theirs", "someone-else", "not mine", seconds=1),
            make_message("mine", ANN_ID, "draft", seconds=2),
        ]
    )
    room, store = build(tmp_path, store=store)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/edit 1 hijack")
        await room.handle_input("/edit #2 final")
        await room.handle_input("/delete 1")
        await room.handle_input("/delete 9")

    run_mounted(room, scenario)

    assert "! You can only edit your own messages." in room.view_state.alerts
    assert "Edited message #2." in room.view_state.alerts
    assert "! You can only delete your own messages." in room.view_state.alerts
    assert "No message #9." in room.view_state.alerts
    assert store.messages["mine"].content == "final"
    assert store.messages["theirs"].content == "not mine"
    assert "update_message" in store.write_names()
    assert "delete_message" not in store.write_names()


def test_ai_reply_history_and_share(tmp_path):
    post = gemini_post("the answer")
    room, store = build(tmp_path, post=post)

    async def scenario():
        await room.handle_input("/login ann@example.com Ann")
        await room.handle_input("/ai on")
        await room.handle_input("what is it?")
        await room.handle_input("/history 1")
        await room.handle_input("/share 1")

    run_mounted(room, scenario)

    [interaction] = room.ai_store.interactions
    assert interaction.prompt == "what is it?"
    assert interaction.output == "the answer"
    assert room.view_state.expanded_interaction_id == interaction.id
    feed = [m.content for m in room.messages.messages]
    assert feed == ["User (Ann) prompted:\nwhat is it?\n\nAI Assistant Output:\nthe answer"]
    assert "Shared AI output with the chat." in room.view_state.alerts
    private_rows = [m for m in store.messages.values() if m.is_ai_message]
    assert private_rows[0].ai_output_mode == "private"


def test_summary_success_and_close(tmp_path):
    store = FakeStore(messages=[make_message("m1", "bo", "hello all", seconds=1)])
    post = gemini_post("A greeting.")
    room, _ = build(tmp_path, store=store, post=post)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/summary")

    run_mounted(room, scenario)

    state = room.view_state
    assert state.summary_open is True
    assert state.summary_loading is False
    assert state.summary_text == "A greeting."
    assert post.calls[0]["contents"][0]["parts"][0]["text"].endswith("hello all")

    room.close_summary()
    assert state.summary_open is False
    assert state.summary_text is None


def test_summary_with_empty_feed_shows_error(tmp_path):
    room, _ = build(tmp_path)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/summary")

    run_mounted(room, scenario)

    assert room.view_state.summary_error == "No messages provided"


def test_theme_command_restyles_view_and_saves_to_profile(tmp_path):
    room, store = build(tmp_path)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/theme light")
        await room.handle_input("/theme plaid")

    run_mounted(room, scenario)

    assert room.theme.get().mode == "light"
    assert len(room.view.styles) == 1
    assert store.profiles[ANN_ID].theme_preference == {"mode": "light", "color": "default"}
    assert "Unknown theme 'plaid'." in room.view_state.alerts


def test_profile_change_event_updates_authors_and_session(tmp_path):
    store = FakeStore(messages=[make_message("m1", ANN_ID, "hi", seconds=1)])
    room, _ = build(tmp_path, store=store)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        renamed = Profile(id=ANN_ID, username="ann", display_name="Ann Smith")
        await room.on_profile_change(
            ChangeEvent(table="profiles", event_type="UPDATE", new=renamed.to_row())
        )
        await room.on_profile_change(
            ChangeEvent(table="profiles", event_type="UPDATE", new={"id": "broken"})
        )

    run_mounted(room, scenario)

    assert room.messages.messages[0].author_name == "Ann Smith"
    assert room.session.display_name == "Ann Smith"


def test_message_delete_event_drops_ai_history_entry(tmp_path):
    room, _ = build(tmp_path)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/ai")
        await room.handle_input("question")
        interaction_id = room.ai_store.interactions[0].id
        await room.on_message_change(
            ChangeEvent(table="messages", event_type="DELETE", old={"id": interaction_id})
        )

    run_mounted(room, scenario)

    assert room.ai_store.interactions == []


def test_logout_clears_session_and_history(tmp_path):
    room, store = build(tmp_path)

    async def scenario():
        await room.handle_input("/login ann@example.com")
        await room.handle_input("/ai")
        await room.handle_input("question")
        await room.handle_input("/logout")

    run_mounted(room, scenario)

    assert room.session.is_authenticated is False
    assert room.ai_store.interactions == []
    assert "Signed out." in room.view_state.alerts
    assert store.write_names()[-1] == "delete_typing"


@pytest.mark.parametrize("command", ["/exit", "/quit"])
def test_exit_commands_close_view(tmp_path, command):
    room, _ = build(tmp_path)

    async def scenario():
        await room.handle_input(command)

    run_mounted(room, scenario)

    assert room.view.exited is True
