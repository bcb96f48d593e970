import asyncio
import os

from fakes import at

from roomchat.models import Message, Profile, TypingIndicator
from roomchat.repositories import MessageRepository, ProfileRepository, TypingRepository
from roomchat.services.realtime_service import RealtimeService, StoreWatchHandler
from roomchat.services.storage_service import StorageService


def build(tmp_path):
    messages = MessageRepository(tmp_path)
    typing = TypingRepository(tmp_path)
    profiles = ProfileRepository(tmp_path)
    store = StorageService(messages, typing, profiles)
    store.ensure_paths()
    feed = RealtimeService(messages, typing, profiles, watch_files=False)
    return store, feed


def recorder(events):
    def record(event):
        events.append((event.table, event.event_type, event.row_id))

    return record


def bump_mtime(path):
    stat = os.stat(path)
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))


def test_prime_skips_existing_rows_and_delivers_later_message_ops(tmp_path):
    store, feed = build(tmp_path)
    events = []
    feed.subscribe("messages", recorder(events))

    async def scenario():
        await store.insert_message(Message(id="old", user_id="ann", content="before"))
        feed.prime()
        await store.insert_message(Message(id="m1", user_id="ann", content="hi"))
        await store.update_message("m1", "ann", {"content": "edited", "updated_at": at(1)})
        await store.delete_message("m1", "ann")
        return await feed.poll_once()

    assert asyncio.run(scenario()) == 3
    assert events == [
        ("messages", "INSERT", "m1"),
        ("messages", "UPDATE", "m1"),
        ("messages", "DELETE", "m1"),
    ]


def test_row_tables_produce_insert_update_delete(tmp_path):
    store, feed = build(tmp_path)
    events = []
    feed.subscribe("typing_indicators", recorder(events))
    feed.subscribe("profiles", recorder(events))
    feed.prime()

    async def scenario():
        await store.upsert_typing(TypingIndicator(user_id="ann", username="Ann"))
        await store.save_profile(Profile(id="ann", username="ann"))
        await feed.poll_once()
        bump_mtime(feed.profile_repository.get_row_path("ann"))
        await store.delete_typing("ann")
        await feed.poll_once()

    asyncio.run(scenario())

    assert events == [
        ("typing_indicators", "INSERT", "ann"),
        ("profiles", "INSERT", "ann"),
        ("typing_indicators", "DELETE", "ann"),
        ("profiles", "UPDATE", "ann"),
    ]


def test_unsubscribe_stops_delivery(tmp_path):
    store, feed = build(tmp_path)
    kept, dropped = [], []
    feed.subscribe("messages", recorder(kept))
    subscription = feed.subscribe("messages", recorder(dropped))
    feed.prime()
    subscription.unsubscribe()
    subscription.unsubscribe()

    async def scenario():
        await store.insert_message(Message(id="m1", user_id="ann"))
        await feed.poll_once()

    asyncio.run(scenario())

    assert kept == [("messages", "INSERT", "m1")]
    assert dropped == []


def test_failing_handler_does_not_block_other_subscribers(tmp_path, caplog):
    store, feed = build(tmp_path)
    delivered = []

    def explode(_event):
        raise RuntimeError("boom")

    async def record(event):
        delivered.append(event.row_id)

    feed.subscribe("messages", explode)
    feed.subscribe("messages", record)
    feed.prime()

    async def scenario():
        await store.insert_message(Message(id="m1", user_id="ann"))
        await feed.poll_once()

    asyncio.run(scenario())

    assert delivered == ["m1"]
    assert "Change handler failed" in caplog.text


def test_start_and_stop_run_the_poll_loop(tmp_path):
    store, feed = build(tmp_path)
    events = []
    feed.subscribe("messages", recorder(events))

    async def scenario():
        await feed.start()
        await store.insert_message(Message(id="m1", user_id="ann"))
        feed.signal_refresh()
        for _ in range(50):
            if events:
                break
            await asyncio.sleep(0.02)
        await feed.stop()

    asyncio.run(scenario())

    assert events == [("messages", "INSERT", "m1")]
    assert feed.running is False


def test_watch_handler_signals_for_store_paths_only():
    class Feed:
        def __init__(self):
            self.signals = 0

        def signal_refresh(self):
            self.signals += 1

    class Event:
        def __init__(self, src_path, is_directory=False):
            self.src_path = src_path
            self.is_directory = is_directory

    feed = Feed()
    handler = StoreWatchHandler(feed)
    handler.on_modified(Event("/data/messages.jsonl"))
    handler.on_created(Event("/data/typing_indicators/ann"))
    handler.on_deleted(Event("/data/profiles/ann"))
    handler.on_modified(Event("/data/notes.txt"))
    handler.on_modified(Event("/data/profiles", is_directory=True))

    assert feed.signals == 3
