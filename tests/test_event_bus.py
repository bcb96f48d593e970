import asyncio
from types import SimpleNamespace

from roomchat.event_bus import EventBus
from roomchat.event_helpers import emit_refresh_output, emit_system_message
from roomchat.events import RefreshOutputEvent, SystemMessageEvent


def test_critical_event_retries_handler_and_delivers() -> None:
    bus = EventBus(critical_handler_retries=1)
    calls = {"count": 0}

    def flaky_handler(event: SystemMessageEvent) -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("transient failure")
        assert event.text == "hello"

    bus.subscribe(SystemMessageEvent, flaky_handler)

    async def scenario():
        bus.start()
        ok = bus.publish(
            SystemMessageEvent(source="test", text="hello", critical=True),
            critical=True,
        )
        await bus.stop()
        return ok

    assert asyncio.run(scenario()) is True
    metrics = bus.snapshot_metrics()
    assert calls["count"] == 2
    assert metrics.retried >= 1
    assert metrics.delivered == 1
    assert metrics.handler_failures == 1


def test_non_critical_handler_failure_does_not_retry(caplog) -> None:
    bus = EventBus(critical_handler_retries=1)
    calls = {"count": 0}

    async def always_fails(_event: SystemMessageEvent) -> None:
        calls["count"] += 1
        raise RuntimeError("fail")

    bus.subscribe(SystemMessageEvent, always_fails)

    async def scenario():
        bus.start()
        assert bus.publish(SystemMessageEvent(source="test", text="hello")) is True
        await asyncio.sleep(0.01)
        await bus.stop()

    asyncio.run(scenario())

    assert calls["count"] == 1
    assert bus.snapshot_metrics().handler_failures == 1
    assert "Event handler failed" in caplog.text


def test_full_queue_drops_normal_events_and_dispatches_critical_ones() -> None:
    bus = EventBus(maxsize=1)
    seen: list[str] = []
    bus.subscribe(SystemMessageEvent, lambda event: seen.append(event.text))

    async def scenario():
        bus.start()
        results = [
            bus.publish(SystemMessageEvent(source="test", text="first")),
            bus.publish(SystemMessageEvent(source="test", text="dropped")),
            bus.publish(SystemMessageEvent(source="test", text="urgent"), critical=True),
        ]
        await asyncio.sleep(0.01)
        await bus.stop()
        return results

    assert asyncio.run(scenario()) == [True, False, True]
    metrics = bus.snapshot_metrics()
    assert metrics.queue_full == 2
    assert metrics.dropped == 1
    assert sorted(seen) == ["first", "urgent"]


def test_publish_before_start_is_refused() -> None:
    bus = EventBus()

    assert bus.publish(RefreshOutputEvent(source="test")) is False
    assert bus.running is False


def test_helpers_fall_back_to_direct_calls_when_bus_is_stopped() -> None:
    calls = []
    bus = EventBus()
    room = SimpleNamespace(
        event_bus=bus,
        append_system_message=lambda text, alert=False: calls.append((text, alert)),
        refresh_view=lambda: calls.append("refresh"),
    )

    emit_system_message(room, "hi", alert=True)
    emit_refresh_output(room)

    assert calls == [("hi", True), "refresh"]
    assert bus.snapshot_metrics().fallback_executed == 2


def test_helpers_publish_through_running_bus() -> None:
    calls = []
    bus = EventBus()
    bus.subscribe(SystemMessageEvent, lambda event: calls.append(event.text))
    room = SimpleNamespace(
        event_bus=bus,
        append_system_message=lambda text, alert=False: calls.append("direct"),
    )

    async def scenario():
        bus.start()
        emit_system_message(room, "queued")
        await bus.stop()

    asyncio.run(scenario())

    assert calls == ["queued"]
    assert bus.snapshot_metrics().fallback_executed == 0
