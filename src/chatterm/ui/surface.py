"""Textual implementation of the dashboard ``Surface``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from textual.widgets import Input

from chatterm.ui.widgets import ChatListPanel, MessagePane, StatusBar

if TYPE_CHECKING:
    from textual.app import App


class TextualSurface:
    """Adapts the app's widgets to what RenderCoordinator expects."""

    def __init__(self, app: "App") -> None:
        self.app = app
        self.chat_list = app.query_one(ChatListPanel)
        self.messages = app.query_one(MessagePane)
        self.input = app.query_one("#message-input", Input)
        self.status_bar = app.query_one(StatusBar)

    def set_content(self, markup: str) -> None:
        self.messages.set_markup(markup)

    def get_content(self) -> str:
        return self.messages.markup

    def set_status(self, label: str, text: str) -> None:
        self.status_bar.update_status(label, text)

    def set_label(self, text: str) -> None:
        self.messages.set_label(text)

    def set_visibility(self, chat_list: bool, messages: bool, input_box: bool) -> None:
        self.chat_list.display = chat_list
        self.messages.display = messages
        self.input.display = input_box

    def set_chat_items(self, items: Sequence[str]) -> None:
        self.chat_list.set_items(items)

    def move_cursor(self, delta: int) -> int:
        return self.chat_list.move_cursor(delta)

    def get_cursor(self) -> int:
        return self.chat_list.cursor

    def scroll_messages(self, delta: int) -> None:
        self.messages.scroll_lines(delta)

    def focus_input(self) -> None:
        self.input.focus()

    def blur_input(self) -> None:
        self.app.set_focus(None)

    def get_input_value(self) -> str:
        return self.input.value

    def set_input_value(self, value: str) -> None:
        self.input.value = value

    def content_size(self) -> tuple[int, int]:
        region = self.messages.content_region
        return region.width, region.height

    def notify(self, text: str, severity: str = "information") -> None:
        self.app.notify(text, severity=severity)
