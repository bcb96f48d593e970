from __future__ import annotations

import logging
from typing import Any

from roomchat.events import RefreshOutputEvent, SystemMessageEvent, ThemeChangedEvent
from roomchat.models import ThemePreference

logger = logging.getLogger(__name__)


def _mark_fallback(bus: Any) -> None:
    marker = getattr(bus, "increment_fallback_executed", None)
    if callable(marker):
        marker()


def _publish(room: Any, event: Any, *, critical: bool = False) -> bool:
    bus = getattr(room, "event_bus", None)
    if bus is None:
        return False
    try:
        return bool(bus.publish(event, critical=critical))
    except Exception:
        logger.exception(
            "Failed publishing event topic=%s", getattr(event, "topic", "unknown")
        )
        return False


def emit_system_message(
    room: Any, text: str, source: str = "service", alert: bool = False
) -> None:
    event = SystemMessageEvent(source=source, text=text, alert=alert, critical=True)
    if _publish(room, event, critical=True):
        return
    bus = getattr(room, "event_bus", None)
    if bus is not None:
        _mark_fallback(bus)
    room.append_system_message(text, alert=alert)


def emit_refresh_output(room: Any, source: str = "service") -> None:
    if _publish(room, RefreshOutputEvent(source=source)):
        return
    bus = getattr(room, "event_bus", None)
    if bus is not None:
        _mark_fallback(bus)
    room.refresh_view()


def emit_theme_changed(
    room: Any, preference: ThemePreference, source: str = "theme"
) -> None:
    event = ThemeChangedEvent(
        source=source, mode=preference.mode, color=preference.color
    )
    if _publish(room, event):
        return
    bus = getattr(room, "event_bus", None)
    if bus is not None:
        _mark_fallback(bus)
    room.apply_theme()
