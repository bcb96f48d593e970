import asyncio

import pytest
from fakes import FakeClock, FakeMonotonic, FakeStore, make_message

from roomchat.models import AIReplyResponse, AuthUser, Message, Profile
from roomchat.services.ai_interaction_store import AIInteractionStore
from roomchat.services.composer_service import SIGN_IN_REQUIRED, Composer, ComposerState
from roomchat.services.message_reconciler import MessageReconciler
from roomchat.services.typing_reconciler import TypingReconciler
from roomchat.state import Session

ANN = "a1b2c3d4e5f6"
BO = "b9c8d7e6f5a4"


class FakeAIService:
    def __init__(self, store: FakeStore, error: str | None = None, delay: float = 0):
        self.store = store
        self.error = error
        self.delay = delay
        self.requests = []

    async def reply(self, request, user):
        self.requests.append((request, user))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            return AIReplyResponse(success=False, error=self.error)
        saved, _ = await self.store.insert_message(
            Message(
                user_id=user.id,
                content="reply",
                is_ai_message=True,
                ai_output_mode=request.outputMode,
                ai_prompt=request.message,
            )
        )
        return AIReplyResponse(success=True, message=saved)


class SlowTypingStore(FakeStore):
    async def upsert_typing(self, indicator):
        await asyncio.sleep(0.01)
        return await super().upsert_typing(indicator)


def build(
    store: FakeStore,
    viewer: str | None = ANN,
    ai_error: str | None = None,
    ai_delay: float = 0,
):
    session = Session()
    if viewer is not None:
        session.set_user(
            AuthUser(id=viewer, email="ann@example.com"),
            Profile(id=viewer, username="ann"),
        )
    typing = TypingReconciler(store, clock=FakeClock(), monotonic=FakeMonotonic())
    messages = MessageReconciler(store, session)
    messages.mount()
    ai_store = AIInteractionStore(store, session)
    ai_store.mount()
    errors: list[str] = []
    composer = Composer(
        store,
        session,
        typing,
        messages,
        ai_store,
        FakeAIService(store, ai_error, ai_delay),
        on_error=errors.append,
        inactivity_seconds=0.01,
    )
    return composer, errors


def test_blank_submit_is_a_no_op():
    store = FakeStore()
    composer, errors = build(store)

    assert asyncio.run(composer.submit("   \n ")) is None
    assert store.writes == []
    assert errors == []


def test_signed_out_submit_is_refused_without_writes():
    store = FakeStore()
    composer, errors = build(store, viewer=None)

    assert asyncio.run(composer.submit("hello")) == SIGN_IN_REQUIRED
    assert store.writes == []
    assert errors == [SIGN_IN_REQUIRED]


def test_signed_out_typing_does_not_touch_presence():
    store = FakeStore()
    composer, _ = build(store, viewer=None)

    asyncio.run(composer.on_input_changed("h"))

    assert composer.draft == "h"
    assert composer.state == ComposerState.IDLE
    assert store.writes == []


def test_plain_submit_releases_typing_then_inserts_trimmed_public_message():
    store = FakeStore()
    composer, _ = build(store)

    async def scenario():
        await composer.on_input_changed("  hi there ")
        assert composer.state == ComposerState.TYPING
        return await composer.submit()

    assert asyncio.run(scenario()) is None
    assert store.write_names() == ["upsert_typing", "delete_typing", "insert_message"]
    sent = store.writes[-1][1]
    assert sent.content == "hi there"
    assert sent.is_ai_message is False
    assert sent.ai_output_mode == "public"
    assert composer.draft == ""
    assert composer.state == ComposerState.IDLE
    assert [m.content for m in composer.messages.messages] == ["hi there"]


def test_failed_send_is_reported():
    store = FakeStore()
    store.fail_writes = True
    composer, errors = build(store)

    error = asyncio.run(composer.submit("hello"))

    assert error == "Could not send message. Storage busy or unavailable."
    assert errors == [error]
    assert composer.last_error == error
    assert composer.messages.messages == []


def test_ai_submit_routes_to_reply_and_refreshes_history():
    store = FakeStore()
    composer, _ = build(store)
    composer.toggle_ai_mode()

    assert asyncio.run(composer.submit("what is up?")) is None

    request, user = composer.ai_service.requests[0]
    assert request.message == "what is up?"
    assert request.outputMode == "private"
    assert user.id == ANN
    assert [item.prompt for item in composer.ai_store.interactions] == ["what is up?"]
    assert composer.messages.messages == []


def test_ai_submit_with_public_output_mode():
    store = FakeStore()
    composer, _ = build(store)
    composer.toggle_ai_mode()
    composer.set_output_mode("PUBLIC")

    asyncio.run(composer.submit("share this"))

    assert composer.ai_service.requests[0][0].outputMode == "public"


def test_ai_failure_is_reported():
    store = FakeStore()
    composer, errors = build(store, ai_error="Provider 'gemini' is missing API key.")
    composer.toggle_ai_mode()

    error = asyncio.run(composer.submit("q"))

    assert error == "Provider 'gemini' is missing API key."
    assert errors == [error]
    assert composer.ai_store.interactions == []


def test_submit_during_slow_ai_reply_is_queued_and_sent():
    store = FakeStore()
    composer, errors = build(store, ai_delay=0.02)
    composer.toggle_ai_mode()

    async def scenario():
        first = asyncio.create_task(composer.submit("ask the ai"))
        await asyncio.sleep(0)
        composer.toggle_ai_mode()
        second = await composer.submit("hello room")
        return await first, second

    assert asyncio.run(scenario()) == (None, None)
    assert errors == []
    assert [request.message for request, _ in composer.ai_service.requests] == ["ask the ai"]
    sent = [call[1].content for call in store.writes if call[0] == "insert_message"]
    assert sent == ["reply", "hello room"]
    assert [m.content for m in composer.messages.messages] == ["hello room"]
    assert composer.state == ComposerState.IDLE


def test_submit_racing_a_slow_typing_upsert_leaves_no_indicator():
    store = SlowTypingStore()
    composer, _ = build(store)

    async def scenario():
        await asyncio.gather(
            asyncio.create_task(composer.on_input_changed("hi")),
            asyncio.create_task(composer.submit("hi")),
        )

    asyncio.run(scenario())

    assert store.typing == {}
    assert store.write_names() == ["upsert_typing", "delete_typing", "insert_message"]


def test_inactivity_releases_typing_indicator():
    store = FakeStore()
    composer, _ = build(store)

    async def scenario():
        await composer.on_input_changed("h")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert store.write_names() == ["upsert_typing", "delete_typing"]
    assert composer.state == ComposerState.IDLE


def test_edit_of_someone_elses_message_never_reaches_store():
    store = FakeStore(messages=[make_message("m1", BO, "theirs", seconds=1)])
    composer, errors = build(store)
    asyncio.run(composer.messages.load_all())

    updated, error = asyncio.run(composer.handle_edit_message("m1", "mine now"))

    assert updated is None
    assert error == "You can only edit your own messages."
    assert errors == [error]
    assert store.writes == []


def test_edit_own_message_updates_content_and_timestamp():
    store = FakeStore(messages=[make_message("m1", ANN, "draft", seconds=1)])
    composer, _ = build(store)
    asyncio.run(composer.messages.load_all())

    updated, error = asyncio.run(composer.handle_edit_message("m1", " final "))

    assert error is None
    assert updated.content == "final"
    assert updated.updated_at is not None
    assert composer.messages.messages[0].content == "final"


def test_edit_rejects_empty_and_skips_unchanged():
    store = FakeStore(messages=[make_message("m1", ANN, "same", seconds=1)])
    composer, _ = build(store)
    asyncio.run(composer.messages.load_all())

    assert asyncio.run(composer.handle_edit_message("m1", "  ")) == (
        None,
        "Message content cannot be empty.",
    )
    unchanged, error = asyncio.run(composer.handle_edit_message("m1", "same"))
    assert error is None
    assert unchanged.content == "same"
    assert store.writes == []


def test_delete_guard_and_own_delete():
    store = FakeStore(
        messages=[make_message("m1", BO, seconds=1), make_message("m2", ANN, seconds=2)]
    )
    composer, _ = build(store)
    asyncio.run(composer.messages.load_all())

    assert asyncio.run(composer.handle_delete_message("m1")) == (
        False,
        "You can only delete your own messages.",
    )
    assert store.writes == []

    assert asyncio.run(composer.handle_delete_message("m2")) == (True, None)
    assert [m.id for m in composer.messages.messages] == ["m1"]
    assert "m2" not in store.messages


def test_output_mode_validation_and_toggle():
    composer, _ = build(FakeStore())

    assert composer.output_mode == "private"
    assert composer.toggle_ai_mode() is True
    assert composer.toggle_ai_mode() is False
    with pytest.raises(ValueError):
        composer.set_output_mode("everyone")
