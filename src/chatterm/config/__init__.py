"""Configuration for chatterm."""

from chatterm.config.loader import load_config
from chatterm.config.schema import (
    AIConfig,
    ChattermConfig,
    GeneralConfig,
    MetricsConfig,
    PromptStoreConfig,
    SessionConfig,
    TransportConfig,
    UIConfig,
)

__all__ = [
    "AIConfig",
    "ChattermConfig",
    "GeneralConfig",
    "MetricsConfig",
    "PromptStoreConfig",
    "SessionConfig",
    "TransportConfig",
    "UIConfig",
    "load_config",
]
