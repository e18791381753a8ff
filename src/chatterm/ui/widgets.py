"""Widgets for the chatterm dashboard.

None of these widgets take focus. Keystrokes reach the app (and from there
the dashboard) unless the input box has been focused for text entry.
"""

from __future__ import annotations

from typing import Sequence

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.reactive import reactive
from textual.widgets import Static


class ModeIndicator(Static):
    """Vim-style mode badge, color coded per mode."""

    DEFAULT_CSS = """
    ModeIndicator {
        width: auto;
        height: 1;
        text-style: bold;
        background: $primary;
        color: $text;
    }

    ModeIndicator.mode-insert {
        background: $success;
    }

    ModeIndicator.mode-chat {
        background: $accent;
    }

    ModeIndicator.mode-prompt, ModeIndicator.mode-prompt-edit {
        background: $warning;
        color: $background;
    }

    ModeIndicator.mode-help {
        background: $secondary;
    }
    """

    label: reactive[str] = reactive(" NORMAL ")

    def render(self) -> str:
        return self.label

    def watch_label(self, old_label: str, new_label: str) -> None:
        self.remove_class(_mode_class(old_label))
        self.add_class(_mode_class(new_label))

    def on_mount(self) -> None:
        self.add_class(_mode_class(self.label))


def _mode_class(label: str) -> str:
    return "mode-" + label.strip().lower().replace(" ", "-").replace("_", "-")


class StatusBar(Horizontal):
    """Mode badge plus key hints or a transient message."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        dock: bottom;
        background: $surface;
    }

    StatusBar #status-text {
        width: 1fr;
        padding: 0 1;
        color: $text-muted;
    }
    """

    def compose(self) -> ComposeResult:
        yield ModeIndicator(id="mode-indicator")
        yield Static("", id="status-text", markup=False)

    def update_status(self, label: str, text: str) -> None:
        self.query_one(ModeIndicator).label = label
        self.query_one("#status-text", Static).update(text)


class ChatListPanel(Static):
    """Chat list with a cursor. The cursor is moved by the dashboard."""

    DEFAULT_CSS = """
    ChatListPanel {
        width: 30;
        height: 100%;
        border: round $primary;
        border-title-color: $accent;
        padding: 0 1;
    }
    """

    can_focus = False

    def __init__(self, id: str | None = None) -> None:
        super().__init__("", id=id)
        self.border_title = "Chats"
        self._items: list[str] = []
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    def set_items(self, items: Sequence[str]) -> None:
        self._items = list(items)
        self._cursor = min(self._cursor, max(len(self._items) - 1, 0))
        self._redraw()

    def move_cursor(self, delta: int) -> int:
        if self._items:
            self._cursor = max(0, min(self._cursor + delta, len(self._items) - 1))
            self._redraw()
        return self._cursor

    def _redraw(self) -> None:
        if not self._items:
            self.update(Text("Loading chats...", style="dim"))
            return
        lines = []
        for i, item in enumerate(self._items):
            if i == self._cursor:
                lines.append(f"[reverse]{item}[/]")
            else:
                lines.append(item)
        self.update("\n".join(lines))


class MessagePane(VerticalScroll):
    """Scrollable message surface shared by every view."""

    DEFAULT_CSS = """
    MessagePane {
        width: 1fr;
        height: 100%;
        border: round $primary;
        border-title-color: $accent;
    }

    MessagePane #message-content {
        width: 100%;
    }
    """

    can_focus = False

    def __init__(self, id: str | None = None) -> None:
        super().__init__(id=id)
        self._markup = ""

    def compose(self) -> ComposeResult:
        yield Static("", id="message-content")

    @property
    def markup(self) -> str:
        return self._markup

    def set_markup(self, markup: str) -> None:
        self._markup = markup
        self.query_one("#message-content", Static).update(markup)

    def set_label(self, text: str) -> None:
        self.border_title = text

    def scroll_lines(self, delta: int) -> None:
        self.scroll_relative(y=delta, animate=False)
