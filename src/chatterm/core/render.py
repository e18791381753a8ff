"""Render coordinator: the one place that decides what the surface shows.

Components never write to the surface directly. They ask the coordinator,
which knows the current view and keeps the idle animation from painting over
anything else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from rich.markup import escape

from chatterm.core.modes import KEY_HINTS, ModeChange, ModeStateMachine, View
from chatterm.services.base import ChatRef, Message

if TYPE_CHECKING:
    from chatterm.core.animation import BackgroundAnimation
    from chatterm.core.prompts import PromptStore

logger = logging.getLogger(__name__)


class Surface(Protocol):
    """What the coordinator needs from a terminal front end."""

    def set_content(self, markup: str) -> None: ...

    def get_content(self) -> str: ...

    def set_status(self, label: str, text: str) -> None: ...

    def set_label(self, text: str) -> None: ...

    def set_visibility(self, chat_list: bool, messages: bool, input_box: bool) -> None: ...

    def set_chat_items(self, items: Sequence[str]) -> None: ...

    def move_cursor(self, delta: int) -> int: ...

    def get_cursor(self) -> int: ...

    def scroll_messages(self, delta: int) -> None: ...

    def focus_input(self) -> None: ...

    def blur_input(self) -> None: ...

    def get_input_value(self) -> str: ...

    def set_input_value(self, value: str) -> None: ...

    def content_size(self) -> tuple[int, int]: ...

    def notify(self, text: str, severity: str = "information") -> None: ...


@dataclass(frozen=True)
class Layout:
    chat_list: bool
    messages: bool
    input_box: bool


LAYOUTS: dict[View, Layout] = {
    View.MATRIX: Layout(chat_list=True, messages=True, input_box=True),
    View.CHAT_LIST: Layout(chat_list=True, messages=True, input_box=True),
    View.CHAT: Layout(chat_list=False, messages=True, input_box=True),
    View.HELP: Layout(chat_list=False, messages=True, input_box=False),
    View.PROMPT: Layout(chat_list=False, messages=True, input_box=True),
}

HELP_TEXT = """\
[bold green]=== chatterm help ===[/]

[yellow]Command mode (:)[/]
  :p, :prompts      Show saved prompts
  :w                Save the prompt being edited
  :metrics          Show AI usage metrics
  :good [note]      Rate the last AI draft as good
  :bad [note]       Rate the last AI draft as bad
  :q                Quit
  :help             Show this help

[yellow]Normal / chat[/]
  h                 Show the chat list
  j, k              Move down / up
  enter             Open the chat under the cursor
  l                 Show the message pane
  i                 Write a message
  r                 Refresh messages
  Esc               Back to normal mode

[yellow]Insert mode[/]
  enter             Send message
  /p -ct "text" -p slug -m model
                    Draft with AI and send
  Esc               Leave insert mode

[yellow]AI feedback[/]
  ctrl+p, ctrl+n    Rate the last draft good / bad

[yellow]Prompts[/]
  o                 Create prompt
  e + number        Edit prompt (e.g. e1 enter)
  dd + number       Delete prompt
  y + number        Yank prompt
  p                 Paste yanked prompt
  /, n, N           Search, next, previous
  ctrl+s, :w        Save while editing

Press any key to return"""


def format_messages(chat: Optional[ChatRef], messages: Sequence[Message]) -> str:
    if chat is None:
        return "[dim]No chat selected. Press h to pick one.[/]"
    header = f"[bold green]═══ {escape(chat.display_name)} ═══[/]\n\n"
    if not messages:
        return header + "No messages in this chat yet."
    parts = []
    for msg in messages:
        if msg.from_me:
            marker, color = "►", "green"
        else:
            marker, color = "◄", "yellow"
        parts.append(
            f"[{color}]{marker}[/] [white]\\[{msg.time_label}][/] "
            f"[bold]{escape(msg.sender_label)}[/]\n[{color}]{escape(msg.body)}[/]"
        )
    return header + "\n\n".join(parts)


def format_chat_item(chat: ChatRef, selected: bool = False) -> str:
    marker = "● " if selected else "  "
    return f"{marker}{escape(chat.display_name)}"


def format_prompts(store: "PromptStore") -> str:
    prompts = store.prompts
    if not prompts:
        return (
            '[yellow]No prompts saved yet. Press "o" to create a new prompt.[/]\n\n'
            "[dim]Type :help for command list[/]"
        )
    highlighted = store.highlighted
    lines = ["[bold green]=== Saved Prompts ===[/]", ""]
    for i, prompt in enumerate(prompts):
        label = f"\\[{i + 1}]"
        if i == highlighted:
            lines.append(f"[black on yellow]{label} {escape(prompt.content)}[/]")
        else:
            lines.append(f"[white]{label}[/] {escape(prompt.content)}")
        lines.append(f"[dim]Created: {_stamp(prompt.created)}[/]")
        if prompt.updated:
            lines.append(f"[dim]Updated: {_stamp(prompt.updated)}[/]")
        lines.append("")
    if store.search_term:
        if store.match_count:
            lines.append(
                f"[yellow]Search: {escape(store.search_term)} "
                f"({store.match_position}/{store.match_count})[/]"
            )
        else:
            lines.append(f"[red]No matches for: {escape(store.search_term)}[/]")
    lines.append("[dim]Type :help for command list[/]")
    return "\n".join(lines)


def format_prompt_editor(index: Optional[int]) -> str:
    title = "Create New Prompt" if index is None else f"Edit Prompt {index}"
    return (
        f"[bold green]=== {title} ===[/]\n\n"
        "Type in the input below. Enter or Ctrl+S saves, :w saves from command mode.\n"
        "Esc leaves the input, Esc again cancels.\n\n"
        "[yellow]-- INSERT --[/]"
    )


def format_metrics(metrics: dict[str, Any]) -> str:
    lines = ["[bold green]=== AI Metrics ===[/]", ""]
    lines.append(f"Requests:          {metrics.get('total_requests', 0)}")
    lines.append(f"Estimated tokens:  {metrics.get('total_tokens', 0)}")
    lines.append(f"Avg response:      {metrics.get('average_response_time_ms', 0):.0f} ms")
    lines.append(f"Error rate:        {metrics.get('error_rate', 0.0):.1%}")
    lines.append(f"Delivery rate:     {metrics.get('delivery_rate', 0.0):.1%}")
    feedback = metrics.get("feedback", {})
    lines.append(
        f"Feedback:          +{feedback.get('positive', 0)} / -{feedback.get('negative', 0)}"
    )
    by_slug = metrics.get("prompt_usage", {})
    if by_slug:
        lines.append("")
        lines.append("[yellow]Prompt usage[/]")
        for slug, count in sorted(by_slug.items(), key=lambda kv: -kv[1]):
            lines.append(f"  {escape(slug)}: {count}")
    recent = metrics.get("recent_interactions", [])
    if recent:
        lines.append("")
        lines.append("[yellow]Recent[/]")
        for item in recent[:5]:
            slug = item.get("prompt_slug") or "-"
            lines.append(
                f"  {escape(str(item.get('timestamp', ''))[:19])}  {escape(slug)}  "
                f"{item.get('response_time_ms', 0)} ms  {item.get('sent_status', 'unknown')}"
            )
    lines.append("")
    lines.append("Press any key to return")
    return "\n".join(lines)


def _stamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


class RenderCoordinator:
    """Maps Mode/View to surface content and component visibility."""

    def __init__(
        self,
        surface: Surface,
        machine: ModeStateMachine,
        animation: Optional["BackgroundAnimation"] = None,
    ) -> None:
        self.surface = surface
        self.machine = machine
        self.animation = animation
        self._overlay_return: Optional[View] = None
        self._overlay_snapshot = ""
        self._transient = False
        machine.add_view_listener(self._on_view_change)

    def attach_animation(self, animation: "BackgroundAnimation") -> None:
        self.animation = animation

    # -- view ---------------------------------------------------------------

    def _on_view_change(self, previous: View, current: View) -> None:
        if previous is View.MATRIX and self.animation is not None:
            # Must happen before anything new is painted.
            self.animation.stop()
        self.apply_layout(current)
        if current is View.MATRIX:
            self.surface.set_content("")
            self.surface.set_label("")
            if self.animation is not None:
                self.animation.start()

    def apply_layout(self, view: Optional[View] = None) -> None:
        layout = LAYOUTS[view or self.machine.view]
        self.surface.set_visibility(layout.chat_list, layout.messages, layout.input_box)

    def start(self) -> None:
        """Initial paint for the MATRIX view."""
        self.apply_layout()
        self.show_mode()
        if self.machine.view is View.MATRIX and self.animation is not None:
            self.animation.start()

    # -- painting -----------------------------------------------------------

    def paint_animation(self, frame: str) -> None:
        if self.machine.view is View.MATRIX:
            self.surface.set_content(frame)

    def clear_animation(self) -> None:
        self.surface.set_content("")

    def show(self, markup: str, label: Optional[str] = None) -> bool:
        """Paint ``markup`` unless the idle animation owns the surface."""
        if self.machine.view is View.MATRIX:
            return False
        self.surface.set_content(markup)
        if label is not None:
            self.surface.set_label(label)
        return True

    def show_messages(self, chat: Optional[ChatRef], messages: Sequence[Message]) -> None:
        if self.machine.view in (View.CHAT, View.CHAT_LIST):
            label = chat.display_name if chat is not None else ""
            self.show(format_messages(chat, messages), label=label)

    def show_chat_list(self, chats: Sequence[ChatRef], selected: Optional[ChatRef]) -> None:
        selected_id = selected.id if selected is not None else None
        self.surface.set_chat_items([format_chat_item(c, c.id == selected_id) for c in chats])

    def show_prompts(self, store: "PromptStore") -> None:
        if self.machine.view is View.PROMPT:
            self.show(format_prompts(store), label="Prompts")

    def show_prompt_editor(self, index: Optional[int]) -> None:
        if self.machine.view is View.PROMPT:
            self.show(format_prompt_editor(index), label="Prompts")

    # -- overlays -------------------------------------------------------------

    @property
    def overlay_open(self) -> bool:
        return self._overlay_return is not None

    def open_overlay(self, markup: str, label: str = "") -> None:
        """Show a dismissable overlay (help, metrics) over the current view."""
        if self._overlay_return is None:
            self._overlay_return = self.machine.view
            self._overlay_snapshot = self.surface.get_content()
        self.machine.set_view(View.HELP)
        self.surface.set_content(markup)
        self.surface.set_label(label)

    def close_overlay(self) -> None:
        """Return to the view and content that were showing before."""
        target, self._overlay_return = self._overlay_return, None
        if target is None:
            return
        snapshot, self._overlay_snapshot = self._overlay_snapshot, ""
        self.machine.set_view(target)
        if target is not View.MATRIX:
            self.surface.set_content(snapshot)

    # -- status line ----------------------------------------------------------

    def show_mode(self, change: Optional[ModeChange] = None) -> None:
        mode = change.current if change is not None else self.machine.mode
        hint = change.hint if change is not None else KEY_HINTS.get(mode, "")
        self._transient = False
        self.surface.set_status(mode.label, hint)

    def status(self, text: str) -> None:
        """Transient status text; empty restores the mode hint."""
        if not text:
            if self._transient:
                self.show_mode()
            return
        self._transient = True
        self.surface.set_status(self.machine.mode.label, text)

    def notice(self, text: str, severity: str = "information") -> None:
        logger.info(f"Notice ({severity}): {text}")
        self.status(text)
        if severity != "information":
            self.surface.notify(text, severity=severity)

    def show_error(self, title: str, detail: str) -> None:
        """Display an unexpected failure with its traceback."""
        body = f"[bold red]{escape(title)}[/]\n\n{escape(detail)}"
        if not self.show(body, label="Error"):
            self.surface.notify(f"{title}\n{detail}", severity="error")
        self.status(title)
