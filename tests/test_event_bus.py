"""Tests for the event bus."""

from __future__ import annotations

from chatterm.core.event_bus import Event, EventBus, SessionEvent, TransportEvent


def test_glob_patterns_route_events() -> None:
    bus = EventBus()
    session_events: list[Event] = []
    everything: list[Event] = []
    bus.subscribe("session.*", session_events.append)
    bus.subscribe("*", everything.append)

    bus.publish(SessionEvent(type="chats", data=[]))
    bus.publish(TransportEvent(type="ready"))

    assert [e.name for e in session_events] == ["session.chats"]
    assert [e.name for e in everything] == ["session.chats", "transport.ready"]


def test_subscription_order_and_failing_handler() -> None:
    bus = EventBus()
    calls: list[str] = []

    def broken(event: Event) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe("transport.ready", lambda e: calls.append("first"))
    bus.subscribe("transport.*", broken)
    bus.subscribe("transport.ready", lambda e: calls.append("second"))

    delivered = bus.publish(TransportEvent(type="ready"))

    assert calls == ["first", "second"]
    assert delivered == 2


def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[Event] = []
    sub = bus.subscribe("transport.*", seen.append)

    bus.publish(TransportEvent(type="qr"))
    sub.unsubscribe()
    bus.publish(TransportEvent(type="ready"))

    assert [e.type for e in seen] == ["qr"]
    assert not bus.unsubscribe(sub.id)
