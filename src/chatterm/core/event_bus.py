"""Event Bus - pub/sub for genuinely many-to-many notifications.

Direct method calls are used wherever a single caller talks to a single
component. The bus only carries notifications that several parts of the
dashboard may care about:

- transport: chat service lifecycle (qr, authenticated, ready, disconnected)
- session: chat list or message list changed

Usage:
    bus = EventBus()

    sub = bus.subscribe("session.*", lambda e: print(e.data))
    bus.publish(SessionEvent(type="chats", data=[...]))
    sub.unsubscribe()

The bus is constructed once at startup and passed to the components that need
it; there is no module-level instance.
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventCategory(str, Enum):
    """Event categories for routing."""
    TRANSPORT = "transport"
    SESSION = "session"
    SYSTEM = "system"


@dataclass
class Event:
    """Base event class for the event bus.

    The full event name is "{category}.{type}" for pattern matching.
    """
    category: EventCategory = EventCategory.SYSTEM
    type: str = "event"
    data: Any = None

    @property
    def name(self) -> str:
        """Full event name for pattern matching."""
        return f"{self.category.value}.{self.type}"


@dataclass
class TransportEvent(Event):
    """Chat service lifecycle event.

    ``type`` is one of "qr", "authenticated", "ready", "disconnected".
    """

    def __post_init__(self):
        self.category = EventCategory.TRANSPORT


@dataclass
class SessionEvent(Event):
    """Chat session change event ("chats" or "messages")."""

    def __post_init__(self):
        self.category = EventCategory.SESSION


EventHandler = Callable[[Event], None]


@dataclass
class Subscription:
    """A subscription to events on the event bus."""
    id: str
    pattern: str
    handler: EventHandler
    _bus: Optional["EventBus"] = field(default=None, repr=False)

    def unsubscribe(self) -> None:
        """Unsubscribe from the event bus."""
        if self._bus:
            self._bus.unsubscribe(self.id)


class EventBus:
    """Synchronous pattern-matching event bus.

    Supports glob patterns:
    - "session.*" matches all session events
    - "transport.ready" matches only the ready event
    - "*" matches all events

    Handlers run in subscription order on the caller's stack, which is the
    single UI event loop.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Subscription] = {}
        self._pattern_cache: Dict[str, List[str]] = {}

    def subscribe(
        self,
        pattern: str,
        handler: EventHandler,
    ) -> Subscription:
        """Subscribe to events matching a pattern.

        Args:
            pattern: Glob pattern to match event names (e.g., "session.*").
            handler: Callback invoked with each matching event.

        Returns:
            Subscription object that can be used to unsubscribe.
        """
        sub_id = str(uuid.uuid4())[:8]
        subscription = Subscription(
            id=sub_id,
            pattern=pattern,
            handler=handler,
            _bus=self,
        )
        self._subscriptions[sub_id] = subscription
        self._pattern_cache.clear()
        logger.debug(f"EventBus: Subscribed {sub_id} to pattern '{pattern}'")
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription by ID."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            self._pattern_cache.clear()
            logger.debug(f"EventBus: Unsubscribed {subscription_id}")
            return True
        return False

    def publish(self, event: Event) -> int:
        """Publish an event to all matching subscribers.

        A failing handler is logged and does not stop delivery to the rest.

        Returns:
            Number of handlers that received the event.
        """
        count = 0
        for sub in self._get_matching_subscriptions(event.name):
            try:
                sub.handler(event)
                count += 1
            except Exception as e:
                logger.exception(f"EventBus: Handler error for {sub.id}: {e}")

        logger.debug(f"EventBus: Published {event.name} to {count} handlers")
        return count

    def _get_matching_subscriptions(self, event_name: str) -> List[Subscription]:
        """Get all subscriptions matching an event name."""
        if event_name in self._pattern_cache:
            sub_ids = self._pattern_cache[event_name]
            return [self._subscriptions[sid] for sid in sub_ids if sid in self._subscriptions]

        matching_ids = [
            sub_id
            for sub_id, sub in self._subscriptions.items()
            if fnmatch.fnmatch(event_name, sub.pattern)
        ]

        self._pattern_cache[event_name] = matching_ids
        return [self._subscriptions[sid] for sid in matching_ids]
