"""File-backed chat transport.

A JSON mailbox in ``data_dir/mailbox.json``. It needs no pairing, so
``start()`` goes straight to ``authenticated`` and ``ready``. Other tools (or
a second chatterm) can drop messages into the file and a refresh picks them
up.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from chatterm.core.errors import TransportError
from chatterm.core.event_bus import EventBus
from chatterm.services.base import ChatRef, ChatService, Message

logger = logging.getLogger(__name__)

MAILBOX_FILE = "mailbox.json"
SEED_CHAT = ChatRef(id="notes", name="Notes")


class LocalChatService(ChatService):
    """ChatService persisting chats and messages to a JSON file."""

    def __init__(self, data_dir: Path, bus: Optional[EventBus] = None) -> None:
        super().__init__(bus)
        self.data_dir = Path(data_dir)
        self._chats: dict[str, ChatRef] = {}
        self._messages: dict[str, list[Message]] = {}
        self._started = False

    @property
    def name(self) -> str:
        return "local"

    @property
    def path(self) -> Path:
        return self.data_dir / MAILBOX_FILE

    async def start(self) -> None:
        self._load()
        if not self._chats:
            self._chats[SEED_CHAT.id] = SEED_CHAT
            self._messages[SEED_CHAT.id] = []
            self._save()
        self._started = True
        logger.info(f"Local mailbox ready at {self.path} ({len(self._chats)} chats)")
        self._emit("authenticated")
        self._emit("ready")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._emit("disconnected", "stopped")
        logger.info("Local mailbox closed")

    async def list_chats(self, limit: int) -> list[ChatRef]:
        self._require_started()
        self._load()
        chats = sorted(self._chats.values(), key=self._last_activity, reverse=True)
        return chats[:limit]

    async def fetch_messages(self, chat: ChatRef, limit: int) -> list[Message]:
        self._require_started()
        self._load()
        if chat.id not in self._chats:
            raise TransportError(f"Unknown chat {chat.id}")
        messages = self._messages.get(chat.id, [])
        return messages[-limit:] if limit > 0 else []

    async def send_message(self, chat: ChatRef, text: str) -> Message:
        self._require_started()
        self._load()
        if chat.id not in self._chats:
            raise TransportError(f"Unknown chat {chat.id}")
        message = Message(
            id=uuid.uuid4().hex,
            chat_id=chat.id,
            body=text,
            timestamp=time.time(),
            from_me=True,
            sender="YOU",
        )
        self._messages.setdefault(chat.id, []).append(message)
        self._save()
        return message

    def add_chat(self, ref: ChatRef) -> None:
        """Register a chat (used for seeding and by tests)."""
        self._load()
        self._chats[ref.id] = ref
        self._messages.setdefault(ref.id, [])
        self._save()

    def _last_activity(self, chat: ChatRef) -> float:
        messages = self._messages.get(chat.id)
        return max((m.timestamp for m in messages), default=0.0) if messages else 0.0

    def _require_started(self) -> None:
        if not self._started:
            raise TransportError("Local mailbox is not started")

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw: dict[str, Any] = json.loads(self.path.read_text(encoding="utf-8"))
            chats = [ChatRef.model_validate(c) for c in raw.get("chats", [])]
            messages = {
                chat_id: [Message.model_validate(m) for m in items]
                for chat_id, items in raw.get("messages", {}).items()
            }
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise TransportError(f"Failed to read mailbox {self.path}: {e}") from e
        self._chats = {c.id: c for c in chats}
        self._messages = messages

    def _save(self) -> None:
        payload = {
            "chats": [c.model_dump() for c in self._chats.values()],
            "messages": {
                chat_id: [m.model_dump() for m in items]
                for chat_id, items in self._messages.items()
            },
        }
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise TransportError(f"Failed to write mailbox {self.path}: {e}") from e
