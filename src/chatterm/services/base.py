"""Service boundary: chat models and the abstract external collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from chatterm.core.event_bus import EventBus


class ChatRef(BaseModel):
    """A selectable chat thread."""

    id: str
    name: str = ""
    is_group: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def display_name(self) -> str:
        name = self.name or self.id
        return f"{name} (Group)" if self.is_group else name


class Message(BaseModel):
    """A single chat message. ``timestamp`` is in epoch seconds."""

    id: str
    chat_id: str
    body: str
    timestamp: float
    from_me: bool = False
    sender: str = ""

    model_config = ConfigDict(frozen=True)

    @property
    def sender_label(self) -> str:
        if self.from_me:
            return "YOU"
        return self.sender or "THEM"

    @property
    def time_label(self) -> str:
        return datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")


class SendStatus(str, Enum):
    """Delivery outcome of an AI draft."""

    UNKNOWN = "unknown"
    SENT = "sent"
    FAILED = "failed"


class ChatService(ABC):
    """Abstract chat transport.

    Implementations publish lifecycle events on the bus given to them
    (``transport.qr``, ``transport.authenticated``, ``transport.ready``,
    ``transport.disconnected``) and raise ``TransportError`` when the
    underlying service rejects a request.
    """

    def __init__(self, bus: Optional["EventBus"] = None) -> None:
        self._bus = bus

    def attach_bus(self, bus: "EventBus") -> None:
        self._bus = bus

    def _emit(self, kind: str, data: Any = None) -> None:
        if self._bus is None:
            return
        from chatterm.core.event_bus import TransportEvent

        self._bus.publish(TransportEvent(type=kind, data=data))

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique transport identifier."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Connect to the transport and emit lifecycle events."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Tear the connection down."""
        pass

    @abstractmethod
    async def list_chats(self, limit: int) -> list[ChatRef]:
        """Return up to ``limit`` chats, most recently active first."""
        pass

    @abstractmethod
    async def fetch_messages(self, chat: ChatRef, limit: int) -> list[Message]:
        """Return up to ``limit`` recent messages of ``chat`` in any order."""
        pass

    @abstractmethod
    async def send_message(self, chat: ChatRef, text: str) -> Message:
        """Send ``text`` to ``chat`` and return the stored message."""
        pass


class CompletionService(ABC):
    """Abstract generative-text backend."""

    @abstractmethod
    async def generate(self, model: str, prompt: str) -> str:
        """Complete ``prompt`` with ``model`` and return the response text.

        Raises:
            CompletionError: The backend failed or returned unparsable data.
        """
        pass

    async def is_available(self) -> bool:
        """Whether the backend answers at all."""
        return True

    async def list_models(self) -> list[str]:
        """Names of the installed models; empty when the backend cannot tell."""
        return []

    async def close(self) -> None:
        """Release network resources."""
        return None


class MetricsSink(ABC):
    """Abstract store for AI interaction records and aggregate counters."""

    @abstractmethod
    def record_interaction(self, data: dict[str, Any]) -> str:
        """Record a completed AI interaction and return its id."""
        pass

    @abstractmethod
    def record_error(self, data: dict[str, Any]) -> None:
        """Record a failed pipeline attempt."""
        pass

    @abstractmethod
    def record_feedback(self, interaction_id: str, positive: bool, note: str = "") -> None:
        """Attach feedback to an interaction (last write wins)."""
        pass

    @abstractmethod
    def update_send_status(
        self,
        interaction_id: str,
        status: SendStatus,
        error: Optional[str] = None,
    ) -> None:
        """Record the delivery outcome of an interaction."""
        pass

    @abstractmethod
    def get_metrics(self) -> dict[str, Any]:
        """Return aggregate counters as a plain dictionary."""
        pass


class AIInteraction(BaseModel):
    """One recorded AI completion attempt."""

    id: str
    prompt_slug: Optional[str] = None
    content: str = ""
    context: str = ""
    prompt: str = ""
    response: str = ""
    draft: str = ""
    model: str = ""
    response_time_ms: int = 0
    sent_status: SendStatus = SendStatus.UNKNOWN
    error: Optional[str] = None
    created: datetime = Field(default_factory=datetime.now)

    def resolve(self, status: SendStatus, error: Optional[str] = None) -> bool:
        """Move ``sent_status`` out of UNKNOWN exactly once.

        Returns:
            False if the status had already been resolved.
        """
        if self.sent_status is not SendStatus.UNKNOWN or status is SendStatus.UNKNOWN:
            return False
        self.sent_status = status
        self.error = error
        return True
