"""Chat session: the selected chat and its most recent messages.

All reads and writes to the chat transport go through ``ChatSession``. Every
message load is tagged with the selection generation it was issued for; a
load that resolves after the selection has moved on is dropped, so the
message list always belongs to the most recently issued selection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from chatterm.core.errors import (
    EmptyMessageError,
    NoChatSelectedError,
    TransportError,
)
from chatterm.core.event_bus import EventBus, SessionEvent
from chatterm.services.base import ChatRef, ChatService, Message

logger = logging.getLogger(__name__)


def order_messages(messages: list[Message], limit: int) -> list[Message]:
    """Sort oldest first and keep the ``limit`` most recent."""
    ordered = sorted(messages, key=lambda m: m.timestamp)
    if limit <= 0:
        return []
    return ordered[-limit:]


class ChatSession:
    """Mediates between the dashboard and a ``ChatService``."""

    def __init__(
        self,
        service: ChatService,
        bus: Optional[EventBus] = None,
        notify: Optional[Callable[[str], None]] = None,
        chat_limit: int = 10,
        message_limit: int = 10,
        send_refresh_delay: float = 0.5,
    ) -> None:
        self.service = service
        self.chat_limit = chat_limit
        self.message_limit = message_limit
        self.send_refresh_delay = send_refresh_delay
        self._bus = bus
        self._notify = notify
        self._chats: list[ChatRef] = []
        self._selected: Optional[ChatRef] = None
        self._messages: list[Message] = []
        self._manual_selection = False
        self._generation = 0
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def chats(self) -> list[ChatRef]:
        return list(self._chats)

    @property
    def selected_chat(self) -> Optional[ChatRef]:
        return self._selected

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def is_manual_selection(self) -> bool:
        return self._manual_selection

    async def load_chats(self) -> list[ChatRef]:
        """Populate the selectable chat list. Never auto-selects.

        Raises:
            TransportError: The service rejected the request; the list is
                left empty.
        """
        try:
            chats = await self.service.list_chats(self.chat_limit)
        except TransportError:
            self._set_chats([])
            raise
        except Exception as e:
            self._set_chats([])
            raise TransportError(f"Failed to load chats: {e}") from e
        self._set_chats(list(chats)[: self.chat_limit])
        logger.info(f"Loaded {len(self._chats)} chats from {self.service.name}")
        return self.chats

    def mark_manual_selection(self) -> None:
        """Flag the next ``select_chat`` as user-initiated."""
        self._manual_selection = True

    def select_chat(self, ref: ChatRef) -> bool:
        """Select ``ref`` if the attempt was user-initiated.

        The manual flag is consumed by every attempt, successful or not.

        Returns:
            True if the selection changed and a message load should follow.
        """
        manual, self._manual_selection = self._manual_selection, False
        if not manual:
            logger.debug(f"Ignoring automatic selection of {ref.id}")
            return False
        self._generation += 1
        self._selected = ref
        self._messages = []
        logger.info(f"Selected chat {ref.display_name}")
        return True

    def clear_selection(self) -> None:
        self._generation += 1
        self._selected = None
        self._messages = []
        self._cancel_refresh()

    def handle_disconnected(self) -> None:
        """Forget everything tied to the dead connection."""
        self.clear_selection()
        self._manual_selection = False
        self._set_chats([])

    async def load_messages(self, limit: Optional[int] = None) -> list[Message]:
        """Fetch messages of the selected chat, oldest first.

        On failure the previous list is returned unchanged and a notice is
        raised. A result that arrives after the selection changed is dropped.
        """
        chat = self._selected
        if chat is None:
            return []
        limit = self.message_limit if limit is None else limit
        generation = self._generation

        try:
            fetched = await self.service.fetch_messages(chat, limit)
        except Exception as e:
            logger.warning(f"Failed to load messages for {chat.id}: {e}")
            if generation == self._generation:
                self._emit_notice(f"Failed to load messages: {e}")
            return self.messages

        if generation != self._generation:
            logger.debug(f"Dropping stale message load for {chat.id}")
            return self.messages

        self._messages = order_messages(list(fetched), limit)
        self._publish("messages", {"chat": chat, "messages": self.messages})
        return self.messages

    async def send(self, text: str) -> Message:
        """Send ``text`` to the selected chat, then refresh after a debounce.

        Raises:
            NoChatSelectedError: No chat is selected.
            EmptyMessageError: ``text`` is blank.
            TransportError: The service failed to send.
        """
        chat = self._selected
        if chat is None:
            raise NoChatSelectedError()
        if not text or not text.strip():
            raise EmptyMessageError()

        try:
            message = await self.service.send_message(chat, text)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Failed to send message: {e}") from e

        logger.info(f"Sent {len(text)} chars to {chat.id}")
        self._schedule_refresh()
        return message

    async def close(self) -> None:
        self._cancel_refresh()

    def _schedule_refresh(self) -> None:
        self._cancel_refresh()
        self._refresh_task = asyncio.create_task(self._delayed_refresh(self._generation))

    async def _delayed_refresh(self, generation: int) -> None:
        await asyncio.sleep(self.send_refresh_delay)
        if generation != self._generation:
            return
        await self.load_messages()

    def _cancel_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()

    def _set_chats(self, chats: list[ChatRef]) -> None:
        self._chats = chats
        self._publish("chats", self.chats)

    def _publish(self, kind: str, data: object) -> None:
        if self._bus is not None:
            self._bus.publish(SessionEvent(type=kind, data=data))

    def _emit_notice(self, text: str) -> None:
        if self._notify is not None:
            self._notify(text)
