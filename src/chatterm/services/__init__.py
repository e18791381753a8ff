"""Service boundary for chatterm.

Abstract chat, completion and metrics capabilities plus the concrete
implementations used by the CLI.
"""

from chatterm.services.base import (
    AIInteraction,
    ChatRef,
    ChatService,
    CompletionService,
    Message,
    MetricsSink,
    SendStatus,
)
from chatterm.services.local_chat import LocalChatService
from chatterm.services.metrics import JsonMetricsSink
from chatterm.services.ollama_client import OllamaCompletionService

__all__ = [
    "AIInteraction",
    "ChatRef",
    "ChatService",
    "CompletionService",
    "JsonMetricsSink",
    "LocalChatService",
    "Message",
    "MetricsSink",
    "OllamaCompletionService",
    "SendStatus",
]
