"""Keystroke multiplexer with a single armed-capture slot.

Every raw keystroke enters through ``InputMultiplexer.feed``. Dispatch order
is fixed:

1. An armed non-command capture (number, search, help dismiss) owns the key.
2. Command mode feeds the ``:`` command-line buffer.
3. In text entry (INSERT, PROMPT_EDIT while editing) only the commit/cancel
   keys are intercepted; everything else belongs to the input widget.
4. Otherwise the key is looked up in the mode's binding table.

There is exactly one capture slot. Arming a capture replaces whatever was
armed before, so two handlers can never consume the same keystroke.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Iterable, Optional

from chatterm.core.modes import Mode, ModeStateMachine

logger = logging.getLogger(__name__)

Action = Callable[[], None]
CommandHandler = Callable[[str], None]
StatusCallback = Callable[[str], None]


@dataclass(frozen=True)
class KeyPress:
    """A keystroke as delivered by the terminal driver.

    ``key`` is the driver's key name ("j", "escape", "ctrl+p"); ``character``
    is the printable character, if any.
    """

    key: str
    character: Optional[str] = None

    @property
    def is_printable(self) -> bool:
        ch = self.character
        return bool(ch) and len(ch) == 1 and ch.isprintable() and not self.key.startswith("ctrl+")

    @property
    def token(self) -> str:
        """Lookup token: the character for printable keys, the key name otherwise."""
        if self.is_printable:
            return self.character  # type: ignore[return-value]
        return self.key


class CaptureKind(str, Enum):
    """Categories of capture handler."""

    COMMAND = "command"
    SEARCH = "search"
    NUMBER = "number"
    HELP_DISMISS = "help_dismiss"


class Capture(ABC):
    """A temporarily armed keystroke consumer.

    ``feed`` returns True once the capture is finished. Any follow-up work is
    queued with ``_finish`` and run by the multiplexer after the slot has been
    cleared, so a completion that arms a new capture never races the old one.
    """

    kind: ClassVar[CaptureKind]

    def __init__(self) -> None:
        self._completion: Optional[Action] = None

    @abstractmethod
    def feed(self, key: KeyPress) -> bool:
        """Consume one keystroke; return True when finished."""

    def _finish(self, callback: Optional[Callable[..., None]], *args: object) -> bool:
        if callback is not None:
            self._completion = lambda: callback(*args)
        return True

    def run_completion(self) -> None:
        completion, self._completion = self._completion, None
        if completion is not None:
            completion()


class TextCapture(Capture):
    """Line-editing capture shared by the command line and search."""

    prefix = ""
    exit_on_empty = False

    def __init__(
        self,
        on_commit: Callable[[str], None],
        on_cancel: Optional[Action] = None,
        on_change: Optional[StatusCallback] = None,
    ) -> None:
        super().__init__()
        self.buffer = ""
        self._on_commit = on_commit
        self._on_cancel = on_cancel
        self._on_change = on_change

    @property
    def display(self) -> str:
        return f"{self.prefix}{self.buffer}"

    def feed(self, key: KeyPress) -> bool:
        if key.key == "escape":
            return self._finish(self._on_cancel)
        if key.key == "enter":
            return self._finish(self._on_commit, self.buffer)
        if key.key == "backspace":
            if not self.buffer and self.exit_on_empty:
                return self._finish(self._on_cancel)
            self.buffer = self.buffer[:-1]
        elif key.is_printable:
            self.buffer += key.character  # type: ignore[operator]
        if self._on_change is not None:
            self._on_change(self.display)
        return False


class CommandCapture(TextCapture):
    """``:`` command line. Backspacing past the colon leaves command mode."""

    kind = CaptureKind.COMMAND
    prefix = ":"
    exit_on_empty = True


class SearchCapture(TextCapture):
    """``/`` search-term entry in PROMPT mode."""

    kind = CaptureKind.SEARCH
    prefix = "Search: "


class OperatorKind(str, Enum):
    """PROMPT-mode operators that take a numeric argument."""

    EDIT = "e"
    DELETE = "dd"
    YANK = "y"


@dataclass
class PendingOperator:
    """An operator waiting for its numeric argument."""

    kind: OperatorKind
    digits_buffer: str = field(default="")


class NumberCapture(Capture):
    """Collects digits for a pending operator until enter or escape."""

    kind = CaptureKind.NUMBER

    def __init__(
        self,
        operator: PendingOperator,
        on_commit: Callable[[OperatorKind, int], None],
        on_cancel: Optional[Action] = None,
        on_change: Optional[StatusCallback] = None,
    ) -> None:
        super().__init__()
        self.operator = operator
        self._on_commit = on_commit
        self._on_cancel = on_cancel
        self._on_change = on_change

    def feed(self, key: KeyPress) -> bool:
        op = self.operator
        if key.key == "escape":
            return self._finish(self._on_cancel)
        if key.key == "enter":
            if not op.digits_buffer:
                return False
            return self._finish(self._on_commit, op.kind, int(op.digits_buffer))
        if key.key == "backspace":
            op.digits_buffer = op.digits_buffer[:-1]
        elif key.is_printable and key.character.isdigit():  # type: ignore[union-attr]
            op.digits_buffer += key.character  # type: ignore[operator]
        else:
            return False
        if self._on_change is not None:
            self._on_change(f"{op.kind.value}{op.digits_buffer}")
        return False


class HelpDismissCapture(Capture):
    """Any key closes the help (or metrics) overlay."""

    kind = CaptureKind.HELP_DISMISS

    def __init__(self, on_dismiss: Action) -> None:
        super().__init__()
        self._on_dismiss = on_dismiss

    def feed(self, key: KeyPress) -> bool:
        return self._finish(self._on_dismiss)


@dataclass
class _CommandEntry:
    handler: CommandHandler
    modes: Optional[frozenset[Mode]] = None


class InputMultiplexer:
    """Routes keystrokes by mode, command flag and the armed capture."""

    def __init__(
        self,
        machine: ModeStateMachine,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        self._machine = machine
        self._on_status = on_status
        self._armed: Optional[Capture] = None
        self._bindings: dict[Mode, dict[str, Action]] = {}
        self._text_entry_bindings: dict[Mode, dict[str, Action]] = {}
        self._global_bindings: dict[str, Action] = {}
        self._commands: dict[str, _CommandEntry] = {}
        self.keypress_count = 0

    # -- registration -----------------------------------------------------

    def bind(self, modes: Mode | Iterable[Mode], keys: str | Iterable[str], action: Action) -> None:
        """Bind ``keys`` to ``action`` in the given mode(s)."""
        for mode in _as_tuple(modes):
            table = self._bindings.setdefault(mode, {})
            for key in _as_tuple(keys):
                table[key] = action

    def bind_text_entry(self, mode: Mode, keys: str | Iterable[str], action: Action) -> None:
        """Bind a commit/cancel key honoured while the input box has focus."""
        table = self._text_entry_bindings.setdefault(mode, {})
        for key in _as_tuple(keys):
            table[key] = action

    def bind_global(self, keys: str | Iterable[str], action: Action) -> None:
        """Bind keys in every non-text-entry mode (after mode bindings)."""
        for key in _as_tuple(keys):
            self._global_bindings[key] = action

    def register_command(
        self,
        names: str | Iterable[str],
        handler: CommandHandler,
        modes: Optional[Iterable[Mode]] = None,
    ) -> None:
        """Register a ``:`` command, optionally restricted to some modes."""
        entry = _CommandEntry(handler=handler, modes=frozenset(modes) if modes else None)
        for name in _as_tuple(names):
            self._commands[name.lower()] = entry

    # -- capture slot -----------------------------------------------------

    @property
    def armed(self) -> Optional[Capture]:
        return self._armed

    def arm(self, capture: Capture) -> None:
        """Arm ``capture``, displacing any capture armed before it."""
        if self._armed is not None:
            logger.debug(
                f"Capture {self._armed.kind.value} displaced by {capture.kind.value}"
            )
        self._armed = capture
        self._machine.set_command_mode(capture.kind is CaptureKind.COMMAND)

    def disarm(self) -> None:
        self._armed = None
        self._machine.set_command_mode(False)

    def start_command(self) -> None:
        """Enter command mode with an empty ``:`` buffer."""
        self.arm(
            CommandCapture(
                on_commit=self.dispatch_command,
                on_cancel=lambda: self._status(""),
                on_change=self._status,
            )
        )
        self._status(":")

    # -- dispatch ---------------------------------------------------------

    def feed(self, key: KeyPress) -> bool:
        """Route one keystroke.

        Returns:
            True if the keystroke was consumed; False if it belongs to the
            focused text widget.
        """
        self.keypress_count += 1
        machine = self._machine
        logger.debug(
            "Keypress %d key=%s char=%r mode=%s view=%s command=%s",
            self.keypress_count,
            key.key,
            key.character,
            machine.mode.value,
            machine.view.value,
            machine.in_command_mode,
        )

        capture = self._armed
        if capture is not None and capture.kind is not CaptureKind.COMMAND:
            self._feed_capture(capture, key)
            return True

        if machine.in_command_mode and capture is not None:
            self._feed_capture(capture, key)
            return True

        if machine.text_entry:
            action = self._text_entry_bindings.get(machine.mode, {}).get(key.key)
            if action is None:
                return False
            action()
            return True

        if key.token == ":":
            self.start_command()
            return True

        action = self._bindings.get(machine.mode, {}).get(key.token)
        if action is None:
            action = self._global_bindings.get(key.token)
        if action is None:
            return False
        action()
        return True

    def _feed_capture(self, capture: Capture, key: KeyPress) -> None:
        if not capture.feed(key):
            return
        if self._armed is capture:
            self.disarm()
        capture.run_completion()

    def dispatch_command(self, text: str) -> None:
        """Run a committed command line (without the leading colon)."""
        parts = text.strip().split(maxsplit=1)
        if not parts:
            self._status("")
            return
        name = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""
        entry = self._commands.get(name)
        if entry is None:
            logger.info(f"Unknown command: {name}")
            self._status(f"Unknown command: {text.strip()}")
            return
        if entry.modes is not None and self._machine.mode not in entry.modes:
            self._status(f":{name} is not available in {self._machine.mode.value} mode")
            return
        self._status("")
        entry.handler(args)

    def _status(self, text: str) -> None:
        if self._on_status is not None:
            self._on_status(text)


def _as_tuple(value):
    if isinstance(value, (str, Mode)):
        return (value,)
    return tuple(value)
