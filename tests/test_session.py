"""Tests for ChatSession selection, ordering and send handling."""

from __future__ import annotations

import asyncio
import itertools

import pytest

from chatterm.core.errors import EmptyMessageError, NoChatSelectedError, TransportError
from chatterm.core.event_bus import Event, EventBus
from chatterm.core.session import ChatSession, order_messages

from conftest import StubChatService, make_message


def select(session: ChatSession, ref) -> bool:
    session.mark_manual_selection()
    return session.select_chat(ref)


def test_order_messages_sorts_and_limits() -> None:
    """Any input permutation yields the same oldest-first tail."""
    messages = [make_message("a", f"m{i}", float(i)) for i in range(5)]
    expected = [m.body for m in messages[-3:]]
    for perm in itertools.permutations(messages):
        assert [m.body for m in order_messages(list(perm), 3)] == expected


def test_order_messages_non_positive_limit() -> None:
    messages = [make_message("a", "m", 1.0)]
    assert order_messages(messages, 0) == []


@pytest.mark.asyncio
async def test_load_chats_never_selects(alice, bob) -> None:
    bus = EventBus()
    events: list[Event] = []
    bus.subscribe("session.chats", events.append)
    session = ChatSession(StubChatService(chats=[alice, bob]), bus=bus)

    chats = await session.load_chats()

    assert chats == [alice, bob]
    assert session.selected_chat is None
    assert events[-1].data == [alice, bob]


@pytest.mark.asyncio
async def test_load_chats_respects_limit(alice, bob) -> None:
    session = ChatSession(StubChatService(chats=[alice, bob]), chat_limit=1)
    assert await session.load_chats() == [alice]


@pytest.mark.asyncio
async def test_load_chats_failure_wraps_and_empties(alice) -> None:
    service = StubChatService(chats=[alice])
    session = ChatSession(service)
    await session.load_chats()

    service.fail_list = True
    with pytest.raises(TransportError, match="service rejected"):
        await session.load_chats()
    assert session.chats == []


def test_select_requires_manual_flag(alice) -> None:
    session = ChatSession(StubChatService(chats=[alice]))

    assert session.select_chat(alice) is False
    assert session.selected_chat is None

    session.mark_manual_selection()
    assert session.is_manual_selection
    assert session.select_chat(alice) is True
    assert session.selected_chat == alice
    assert not session.is_manual_selection

    # The flag is consumed; a second automatic attempt is ignored.
    assert session.select_chat(alice) is False


@pytest.mark.asyncio
async def test_load_messages_sorted_and_limited(alice) -> None:
    messages = [make_message("alice", f"m{i}", float(t)) for i, t in enumerate([5, 1, 4, 2, 3])]
    session = ChatSession(StubChatService(chats=[alice], messages={"alice": messages}), message_limit=3)
    select(session, alice)

    loaded = await session.load_messages()

    assert [m.timestamp for m in loaded] == [3.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_load_messages_publishes_event(alice) -> None:
    bus = EventBus()
    events: list[Event] = []
    bus.subscribe("session.messages", events.append)
    messages = [make_message("alice", "hi", 1.0)]
    session = ChatSession(StubChatService(chats=[alice], messages={"alice": messages}), bus=bus)
    select(session, alice)

    await session.load_messages()

    assert events[-1].data["chat"] == alice
    assert [m.body for m in events[-1].data["messages"]] == ["hi"]


@pytest.mark.asyncio
async def test_last_issued_selection_wins(alice, bob) -> None:
    """A slow load for an older selection never overwrites the newer one."""
    service = StubChatService(
        chats=[alice, bob],
        messages={
            "alice": [make_message("alice", "from alice", 1.0)],
            "bob": [make_message("bob", "from bob", 2.0)],
        },
    )
    gate = asyncio.Event()
    service.gates["alice"] = gate
    session = ChatSession(service)

    select(session, alice)
    slow = asyncio.create_task(session.load_messages())
    await asyncio.sleep(0)

    select(session, bob)
    await session.load_messages()
    assert [m.body for m in session.messages] == ["from bob"]

    gate.set()
    await slow
    assert session.selected_chat == bob
    assert [m.body for m in session.messages] == ["from bob"]


@pytest.mark.asyncio
async def test_load_failure_keeps_previous_list(alice) -> None:
    notices: list[str] = []
    service = StubChatService(chats=[alice], messages={"alice": [make_message("alice", "kept", 1.0)]})
    session = ChatSession(service, notify=notices.append)
    select(session, alice)
    await session.load_messages()

    service.fail_fetch = True
    loaded = await session.load_messages()

    assert [m.body for m in loaded] == ["kept"]
    assert notices and "fetch failed" in notices[0]


@pytest.mark.asyncio
async def test_send_without_selection() -> None:
    service = StubChatService()
    session = ChatSession(service)
    with pytest.raises(NoChatSelectedError):
        await session.send("hi")
    assert service.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_send_empty_text(alice, text: str) -> None:
    history = [make_message("alice", "lunch?", 1.0), make_message("alice", "noon", 2.0)]
    service = StubChatService(chats=[alice], messages={"alice": history})
    session = ChatSession(service, send_refresh_delay=0.0)
    select(session, alice)
    await session.load_messages()

    with pytest.raises(EmptyMessageError):
        await session.send(text)
    for _ in range(5):
        await asyncio.sleep(0)

    assert service.sent == []
    assert [m.body for m in session.messages] == ["lunch?", "noon"]
    assert len(service.messages["alice"]) == 2
    await session.close()


@pytest.mark.asyncio
async def test_send_refreshes_after_delay(alice) -> None:
    service = StubChatService(chats=[alice], messages={"alice": []})
    session = ChatSession(service, send_refresh_delay=0.0)
    select(session, alice)

    await session.send("hello")
    for _ in range(5):
        await asyncio.sleep(0)

    assert service.sent == [("alice", "hello")]
    assert [m.body for m in session.messages] == ["hello"]
    await session.close()


@pytest.mark.asyncio
async def test_send_transport_failure(alice) -> None:
    service = StubChatService(chats=[alice])
    service.fail_send = True
    session = ChatSession(service)
    select(session, alice)
    with pytest.raises(TransportError):
        await session.send("hello")


@pytest.mark.asyncio
async def test_handle_disconnected_clears_everything(alice) -> None:
    session = ChatSession(StubChatService(chats=[alice]))
    await session.load_chats()
    select(session, alice)
    session.mark_manual_selection()

    session.handle_disconnected()

    assert session.chats == []
    assert session.selected_chat is None
    assert not session.is_manual_selection
