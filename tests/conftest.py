from __future__ import annotations

import asyncio
import time
import uuid
from typing import Optional, Sequence

import pytest

from chatterm.config.schema import ChattermConfig
from chatterm.core.errors import TransportError
from chatterm.services.base import ChatRef, ChatService, CompletionService, Message


def make_message(
    chat_id: str,
    body: str,
    timestamp: float,
    from_me: bool = False,
    sender: str = "Ann",
) -> Message:
    return Message(
        id=uuid.uuid4().hex,
        chat_id=chat_id,
        body=body,
        timestamp=timestamp,
        from_me=from_me,
        sender=sender,
    )


class RecordingSurface:
    """Surface stub that records everything painted on it."""

    def __init__(self, width: int = 40, height: int = 12) -> None:
        self.content = ""
        self.paints: list[str] = []
        self.status: tuple[str, str] = ("", "")
        self.label = ""
        self.visibility = (True, True, True)
        self.chat_items: list[str] = []
        self.cursor = 0
        self.scrolled = 0
        self.input_value = ""
        self.input_focused = False
        self.notices: list[tuple[str, str]] = []
        self.size = (width, height)

    def set_content(self, markup: str) -> None:
        self.content = markup
        self.paints.append(markup)

    def get_content(self) -> str:
        return self.content

    def set_status(self, label: str, text: str) -> None:
        self.status = (label, text)

    def set_label(self, text: str) -> None:
        self.label = text

    def set_visibility(self, chat_list: bool, messages: bool, input_box: bool) -> None:
        self.visibility = (chat_list, messages, input_box)

    def set_chat_items(self, items: Sequence[str]) -> None:
        self.chat_items = list(items)
        self.cursor = min(self.cursor, max(len(self.chat_items) - 1, 0))

    def move_cursor(self, delta: int) -> int:
        if self.chat_items:
            self.cursor = max(0, min(self.cursor + delta, len(self.chat_items) - 1))
        return self.cursor

    def get_cursor(self) -> int:
        return self.cursor

    def scroll_messages(self, delta: int) -> None:
        self.scrolled += delta

    def focus_input(self) -> None:
        self.input_focused = True

    def blur_input(self) -> None:
        self.input_focused = False

    def get_input_value(self) -> str:
        return self.input_value

    def set_input_value(self, value: str) -> None:
        self.input_value = value

    def content_size(self) -> tuple[int, int]:
        return self.size

    def notify(self, text: str, severity: str = "information") -> None:
        self.notices.append((severity, text))


class StubChatService(ChatService):
    """In-memory chat service. Fetches can be held back with gates."""

    def __init__(
        self,
        chats: Optional[list[ChatRef]] = None,
        messages: Optional[dict[str, list[Message]]] = None,
    ) -> None:
        super().__init__()
        self.chats = chats or []
        self.messages = messages or {}
        self.sent: list[tuple[str, str]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.fail_list = False
        self.fail_fetch = False
        self.fail_send = False
        self.started = False

    @property
    def name(self) -> str:
        return "stub"

    async def start(self) -> None:
        self.started = True
        self._emit("authenticated")
        self._emit("ready")

    async def stop(self) -> None:
        self.started = False
        self._emit("disconnected", "stopped")

    async def list_chats(self, limit: int) -> list[ChatRef]:
        if self.fail_list:
            raise RuntimeError("service rejected")
        return self.chats[:limit]

    async def fetch_messages(self, chat: ChatRef, limit: int) -> list[Message]:
        gate = self.gates.get(chat.id)
        if gate is not None:
            await gate.wait()
        if self.fail_fetch:
            raise TransportError("fetch failed")
        return list(self.messages.get(chat.id, []))

    async def send_message(self, chat: ChatRef, text: str) -> Message:
        if self.fail_send:
            raise TransportError("send rejected")
        message = make_message(chat.id, text, time.time(), from_me=True, sender="YOU")
        self.sent.append((chat.id, text))
        self.messages.setdefault(chat.id, []).append(message)
        return message


class StubCompletion(CompletionService):
    """Completion stub returning a canned response."""

    def __init__(
        self,
        response: str = "**Hello** <b>there</b>",
        error: Optional[Exception] = None,
        available: bool = True,
        models: Optional[list[str]] = None,
    ):
        self.response = response
        self.error = error
        self.available = available
        self.models = models or []
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def generate(self, model: str, prompt: str) -> str:
        self.calls.append((model, prompt))
        if self.error is not None:
            raise self.error
        return self.response

    async def is_available(self) -> bool:
        return self.available

    async def list_models(self) -> list[str]:
        return list(self.models)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def alice() -> ChatRef:
    return ChatRef(id="alice", name="Alice")


@pytest.fixture
def bob() -> ChatRef:
    return ChatRef(id="bob", name="Bob")


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def quiet_config(tmp_path) -> ChattermConfig:
    """Config with the animation off and every path under tmp_path."""
    return ChattermConfig(
        general={"log_dir": tmp_path / "logs"},
        session={"send_refresh_delay": 0.0},
        ai={"prompts_dir": tmp_path / "prompts"},
        metrics={"log_dir": tmp_path / "logs"},
        ui={"animation_enabled": False},
        transport={"data_dir": tmp_path / "chats"},
        prompts={"store_path": tmp_path / "prompts.json"},
    )
