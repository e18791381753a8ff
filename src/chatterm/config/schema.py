"""Pydantic configuration models for chatterm."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


def _data_home() -> Path:
    return Path.home() / ".local" / "share" / "chatterm"


class GeneralConfig(BaseModel):
    """General application settings."""

    log_level: str = "INFO"
    log_dir: Path = Field(default_factory=lambda: Path("logs"))


class SessionConfig(BaseModel):
    """Chat session limits and timing."""

    chat_limit: int = 10
    message_limit: int = 10
    # Seconds to wait after a send before refreshing, to catch the echo.
    send_refresh_delay: float = 0.5


class AIConfig(BaseModel):
    """Local completion backend and draft pipeline settings."""

    host: str = "http://localhost:11434"
    model: str = "llama3.2"
    timeout_seconds: float = 300.0
    context_limit: int = 10
    prompts_dir: Path = Field(default_factory=lambda: Path("prompts"))


class MetricsConfig(BaseModel):
    """AI interaction metrics storage."""

    enabled: bool = True
    log_dir: Path = Field(default_factory=lambda: Path("logs"))
    recent_limit: int = 20


class UIConfig(BaseModel):
    """Terminal UI settings."""

    animation_interval: float = 0.05
    matrix_density: float = 0.5
    animation_enabled: bool = True


class TransportConfig(BaseModel):
    """Chat transport selection."""

    backend: Literal["local"] = "local"
    data_dir: Path = Field(default_factory=lambda: _data_home() / "chats")


class PromptStoreConfig(BaseModel):
    """Saved prompts shown in PROMPT mode."""

    store_path: Path = Field(default_factory=lambda: _data_home() / "prompts.json")


class ChattermConfig(BaseModel):
    """Root configuration model."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    prompts: PromptStoreConfig = Field(default_factory=PromptStoreConfig)
