"""Main chatterm TUI application."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Input

from chatterm.config.schema import ChattermConfig
from chatterm.core.dashboard import Dashboard
from chatterm.services.base import ChatService, CompletionService, MetricsSink
from chatterm.ui.surface import TextualSurface
from chatterm.ui.widgets import ChatListPanel, MessagePane, StatusBar

logger = logging.getLogger(__name__)


class ChattermApp(App):
    """Terminal chat dashboard.

    All keys are forwarded to the Dashboard. The only Textual-side key logic
    is that ``enter`` during text entry is left to the Input widget, whose
    ``Submitted`` message is the single commit path.
    """

    TITLE = "chatterm"
    ENABLE_COMMAND_PALETTE = False
    # Focus stays off the input until the dashboard enters text entry.
    AUTO_FOCUS = None

    CSS = """
    Screen {
        layout: vertical;
    }

    #main {
        height: 1fr;
    }

    #message-input {
        dock: bottom;
        margin-bottom: 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "graceful_quit", "Quit", show=False, priority=True),
    ]

    def __init__(
        self,
        config: ChattermConfig,
        service: ChatService,
        completion: CompletionService,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__()
        self.config = config
        self._service = service
        self._completion = completion
        self._metrics = metrics
        self.dashboard: Optional[Dashboard] = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="main"):
            yield ChatListPanel(id="chat-list")
            yield MessagePane(id="messages")
        yield Input(placeholder="Press i to write a message", id="message-input")
        yield StatusBar(id="status-bar")

    async def on_mount(self) -> None:
        surface = TextualSurface(self)
        self.dashboard = Dashboard(
            surface,
            self._service,
            self._completion,
            metrics=self._metrics,
            config=self.config,
            on_quit=lambda: self.exit(0),
        )
        self.set_focus(None)
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self.action_graceful_quit)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler not supported on this platform")
        await self.dashboard.start()
        logger.info("chatterm started")

    def on_unmount(self) -> None:
        try:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            logger.debug("No SIGINT handler to remove")

    def on_key(self, event: events.Key) -> None:
        dashboard = self.dashboard
        if dashboard is None:
            return
        if dashboard.machine.text_entry and event.key == "enter":
            return
        if dashboard.handle_key(event.key, event.character):
            event.stop()
            event.prevent_default()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if self.dashboard is not None and self.dashboard.machine.text_entry:
            self.dashboard.submit_input(event.value)

    def action_graceful_quit(self) -> None:
        if self.dashboard is None:
            self.exit(0)
            return
        self.dashboard.request_quit()
