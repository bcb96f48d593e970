import asyncio

from fakes import FakeStore, at, make_message

from roomchat.models import AIInteraction, AuthUser, Profile
from roomchat.services.ai_interaction_store import (
    AIInteractionStore,
    format_share_block,
    is_interaction_row,
)
from roomchat.state import Session

DANA = "d4n4d4n4d4n4"
EVE = "e5e5e5e5e5e5"


def signed_in(user_id: str = DANA, display_name: str | None = "Dana") -> Session:
    session = Session()
    session.set_user(
        AuthUser(id=user_id, email="dana@example.com"),
        Profile(id=user_id, username="dana", display_name=display_name),
    )
    return session


def ai_row(message_id: str, user_id: str, seconds: float, prompt: str | None = "q"):
    return make_message(
        message_id, user_id, f"answer {message_id}", seconds=seconds,
        is_ai_message=True, ai_output_mode="private", ai_prompt=prompt,
    )


def test_format_share_block_layout():
    assert format_share_block("Dana", "P", "O") == (
        "User (Dana) prompted:\nP\n\nAI Assistant Output:\nO"
    )


def test_interaction_rows_need_prompt_and_owner():
    assert is_interaction_row(ai_row("a", DANA, 1), DANA) is True
    assert is_interaction_row(ai_row("a", DANA, 1), EVE) is False
    assert is_interaction_row(ai_row("a", DANA, 1, prompt="  "), DANA) is False
    assert is_interaction_row(make_message("p", DANA), DANA) is False
    assert is_interaction_row(ai_row("a", DANA, 1), None) is False


def test_load_for_user_filters_and_orders_newest_first():
    store = FakeStore(
        messages=[
            ai_row("old", DANA, 10),
            ai_row("new", DANA, 30),
            ai_row("mid", DANA, 20),
            ai_row("other", EVE, 40),
            make_message("plain", DANA, seconds=50),
        ]
    )
    ai_store = AIInteractionStore(store, signed_in())
    ai_store.mount()

    loaded = asyncio.run(ai_store.load_for_user(DANA))

    assert [item.id for item in loaded] == ["new", "mid", "old"]
    assert ai_store.interactions == loaded
    assert loaded[0].prompt == "q"
    assert loaded[0].output == "answer new"


def test_results_for_stale_user_are_not_applied():
    store = FakeStore(messages=[ai_row("x", EVE, 1)])
    ai_store = AIInteractionStore(store, signed_in(DANA))
    ai_store.mount()

    loaded = asyncio.run(ai_store.load_for_user(EVE))

    assert [item.id for item in loaded] == ["x"]
    assert ai_store.interactions == []


def test_signed_out_history_is_empty():
    ai_store = AIInteractionStore(FakeStore(messages=[ai_row("x", DANA, 1)]), Session())
    ai_store.mount()
    ai_store.interactions = [AIInteraction(id="x", prompt="q", output="o", created_at=at(1))]

    assert asyncio.run(ai_store.refresh_on_ai_complete()) == []
    assert ai_store.interactions == []


def test_share_inserts_plain_public_message_with_block():
    store = FakeStore()
    ai_store = AIInteractionStore(store, signed_in())
    interaction = AIInteraction(id="i1", prompt="P", output="O", created_at=at(1))

    message, error = asyncio.run(ai_store.share_to_chat(interaction))

    assert error is None
    assert message is not None
    assert message.content == "User (Dana) prompted:\nP\n\nAI Assistant Output:\nO"
    assert message.is_ai_message is False
    assert message.ai_output_mode == "public"
    assert message.user_id == DANA
    assert ai_store.sharing_id is None


def test_share_falls_back_to_username_without_display_name():
    store = FakeStore()
    ai_store = AIInteractionStore(store, signed_in(display_name=None))
    interaction = AIInteraction(id="i1", prompt="P", output="O", created_at=at(1))

    message, _ = asyncio.run(ai_store.share_to_chat(interaction))

    assert message.content.startswith("User (dana) prompted:")


def test_share_requires_sign_in():
    store = FakeStore()
    ai_store = AIInteractionStore(store, Session())
    interaction = AIInteraction(id="i1", prompt="P", output="O", created_at=at(1))

    message, error = asyncio.run(ai_store.share_to_chat(interaction))

    assert message is None
    assert error == "Sign in to share with the chat."
    assert store.writes == []


class SlowStore(FakeStore):
    async def insert_message(self, message):
        await asyncio.sleep(0.01)
        return await super().insert_message(message)


def test_concurrent_share_of_same_interaction_is_rejected():
    store = SlowStore()
    ai_store = AIInteractionStore(store, signed_in())
    interaction = AIInteraction(id="i1", prompt="P", output="O", created_at=at(1))

    async def scenario():
        return await asyncio.gather(
            ai_store.share_to_chat(interaction), ai_store.share_to_chat(interaction)
        )

    first, second = asyncio.run(scenario())

    assert first[1] is None
    assert second == (None, "This interaction is already being shared.")
    assert store.write_names() == ["insert_message"]
    assert ai_store.sharing_id is None


def test_failed_share_releases_lock():
    store = FakeStore()
    store.fail_writes = True
    ai_store = AIInteractionStore(store, signed_in())
    interaction = AIInteraction(id="i1", prompt="P", output="O", created_at=at(1))

    message, error = asyncio.run(ai_store.share_to_chat(interaction))

    assert message is None
    assert error is not None
    assert ai_store.sharing_id is None


def test_on_delete_drops_interaction_when_mounted():
    ai_store = AIInteractionStore(FakeStore(), signed_in())
    ai_store.interactions = [
        AIInteraction(id="a", prompt="q", output="o", created_at=at(2)),
        AIInteraction(id="b", prompt="q", output="o", created_at=at(1)),
    ]

    ai_store.on_delete("a")
    assert len(ai_store.interactions) == 2

    ai_store.mount()
    ai_store.on_delete("a")
    assert [item.id for item in ai_store.interactions] == ["b"]
    assert ai_store.find("b") is not None
    assert ai_store.find("a") is None
