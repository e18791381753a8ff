"""Error taxonomy for chatterm.

Every error raised at a component boundary derives from ``ChattermError`` so
the dashboard can turn it into a transient notice instead of crashing.
"""

from __future__ import annotations

from typing import Iterable


class ChattermError(Exception):
    """Base class for all expected, user-facing failures."""


class TransportError(ChattermError):
    """The chat service is unreachable or rejected the request."""


class NoChatSelectedError(ChattermError):
    """A message was sent while no chat was selected."""

    def __init__(self, message: str = "No chat selected") -> None:
        super().__init__(message)


class EmptyMessageError(ChattermError):
    """The text to send (or save) is empty after trimming."""

    def __init__(self, message: str = "Message is empty") -> None:
        super().__init__(message)


class TemplateNotFoundError(ChattermError):
    """A prompt template slug did not match any loaded template."""

    def __init__(self, slug: str, available: Iterable[str]) -> None:
        self.slug = slug
        self.available = sorted(available)
        listing = ", ".join(self.available) or "none"
        super().__init__(
            f'Prompt template "{slug}" not found. Available prompts: {listing}'
        )


class CompletionError(ChattermError):
    """The completion backend failed or returned unparsable data."""


class PersistenceError(ChattermError):
    """Writing logs or metrics to disk failed."""
