"""Mode/View state machine.

The machine owns the current ``Mode`` and ``View`` and is the only place they
change. Components register entry/exit hooks per mode, so every side effect
(focus change, animation start/stop, buffer clear) is a consequence of a
transition instead of a scattered call.

Command mode is not a standalone mode: it is the ``in_command_mode`` flag
layered on top of whichever mode was active when ``:`` was pressed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """Input-interpretation regime."""

    NORMAL = "NORMAL"
    INSERT = "INSERT"
    CHAT = "CHAT"
    PROMPT = "PROMPT"
    PROMPT_EDIT = "PROMPT_EDIT"
    HELP = "HELP"
    # Never a transition target; see ModeStateMachine.in_command_mode.
    COMMAND = "COMMAND"

    @property
    def label(self) -> str:
        return f" {self.value.replace('_', ' ')} "


class View(str, Enum):
    """What the message surface currently shows."""

    MATRIX = "MATRIX"
    CHAT_LIST = "CHAT_LIST"
    CHAT = "CHAT"
    HELP = "HELP"
    PROMPT = "PROMPT"


# Legal edges. HELP is reachable from every mode and handled separately:
# leaving HELP is only allowed back to the mode it was entered from.
TRANSITIONS: dict[Mode, frozenset[Mode]] = {
    Mode.NORMAL: frozenset({Mode.INSERT, Mode.CHAT, Mode.PROMPT}),
    Mode.CHAT: frozenset({Mode.NORMAL, Mode.INSERT, Mode.CHAT, Mode.PROMPT}),
    Mode.INSERT: frozenset({Mode.NORMAL, Mode.CHAT}),
    Mode.PROMPT: frozenset({Mode.NORMAL, Mode.PROMPT_EDIT}),
    Mode.PROMPT_EDIT: frozenset({Mode.PROMPT}),
    Mode.HELP: frozenset(),
}

KEY_HINTS: dict[Mode, str] = {
    Mode.NORMAL: "h: chats │ i: write │ :help for commands │ :p for prompts",
    Mode.INSERT: "Esc: back │ Enter: send │ /p -ct \"text\" -p slug: AI draft",
    Mode.CHAT: "i: write │ h: chats │ l: messages │ r: refresh │ Esc: back",
    Mode.PROMPT: "o: new │ e: edit │ dd: delete │ y: yank │ p: paste │ /: search",
    Mode.PROMPT_EDIT: "Enter or Ctrl+S: save │ Esc: leave input │ :w: save",
    Mode.HELP: "Press any key to close",
}


@dataclass(frozen=True)
class ModeChange:
    """Description of a completed transition."""

    previous: Mode
    current: Mode
    hint: str


ModeHook = Callable[[ModeChange], None]
ViewListener = Callable[[View, View], None]


class ModeStateMachine:
    """Owns Mode and View and validates every transition.

    An invalid transition request is a silent no-op (logged at debug) so a
    stray keystroke can never crash the terminal.
    """

    def __init__(self, on_change: Optional[Callable[[ModeChange], None]] = None) -> None:
        self._mode = Mode.NORMAL
        self._view = View.MATRIX
        self._previous_mode: Optional[Mode] = None
        self._in_command_mode = False
        self._text_entry = False
        self._on_change = on_change
        self._entry_hooks: dict[Mode, list[ModeHook]] = {}
        self._exit_hooks: dict[Mode, list[ModeHook]] = {}
        self._view_listeners: list[ViewListener] = []

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def view(self) -> View:
        return self._view

    @property
    def previous_mode(self) -> Optional[Mode]:
        """Mode to return to from HELP or INSERT, if any."""
        return self._previous_mode

    @property
    def in_command_mode(self) -> bool:
        return self._in_command_mode

    @property
    def text_entry(self) -> bool:
        """True while the input box owns ordinary keystrokes."""
        return self._text_entry

    def set_command_mode(self, active: bool) -> None:
        self._in_command_mode = active

    def set_text_entry(self, active: bool) -> None:
        self._text_entry = active

    def add_entry_hook(self, mode: Mode, hook: ModeHook) -> None:
        self._entry_hooks.setdefault(mode, []).append(hook)

    def add_exit_hook(self, mode: Mode, hook: ModeHook) -> None:
        self._exit_hooks.setdefault(mode, []).append(hook)

    def add_view_listener(self, listener: ViewListener) -> None:
        self._view_listeners.append(listener)

    def can_transition(self, target: Mode) -> bool:
        """Check whether ``target`` is reachable from the current mode."""
        if target is Mode.COMMAND:
            return False
        if self._mode is Mode.HELP:
            return self._previous_mode is not None and target is self._previous_mode
        if target is Mode.HELP:
            return True
        return target in TRANSITIONS.get(self._mode, frozenset())

    def transition(self, target: Mode) -> bool:
        """Move to ``target`` if the edge is legal.

        Returns:
            True if the transition happened.
        """
        if not self.can_transition(target):
            logger.debug(f"Ignoring illegal transition {self._mode.value} -> {target.value}")
            return False

        previous = self._mode
        if target in (Mode.HELP, Mode.INSERT):
            self._previous_mode = previous
        elif previous in (Mode.HELP, Mode.INSERT):
            self._previous_mode = None

        change = ModeChange(previous=previous, current=target, hint=KEY_HINTS.get(target, ""))

        for hook in self._exit_hooks.get(previous, []):
            hook(change)
        self._mode = target
        logger.debug(f"Mode {previous.value} -> {target.value}")
        if self._on_change is not None:
            self._on_change(change)
        for hook in self._entry_hooks.get(target, []):
            hook(change)
        return True

    def set_view(self, view: View) -> bool:
        """Switch the view; re-entering the current view is a no-op.

        Returns:
            True if the view changed and listeners ran.
        """
        if view is self._view:
            return False
        previous = self._view
        self._view = view
        logger.debug(f"View {previous.value} -> {view.value}")
        for listener in self._view_listeners:
            listener(previous, view)
        return True
