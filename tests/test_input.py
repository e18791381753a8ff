"""Tests for keystroke routing and capture handlers."""

from __future__ import annotations

from chatterm.core.input import (
    CaptureKind,
    HelpDismissCapture,
    InputMultiplexer,
    KeyPress,
    NumberCapture,
    OperatorKind,
    PendingOperator,
    SearchCapture,
)
from chatterm.core.modes import Mode, ModeStateMachine

NAMED_KEYS = {"enter", "escape", "backspace", "down", "up", "ctrl+p", "ctrl+n", "ctrl+s"}
KEY_NAMES = {":": "colon", "/": "slash", " ": "space"}


def key(token: str) -> KeyPress:
    if token in NAMED_KEYS:
        return KeyPress(token)
    return KeyPress(KEY_NAMES.get(token, token), token)


def press(mux: InputMultiplexer, *tokens: str) -> list[bool]:
    return [mux.feed(key(t)) for t in tokens]


def type_text(mux: InputMultiplexer, text: str) -> None:
    press(mux, *list(text))


def make_mux() -> tuple[ModeStateMachine, InputMultiplexer, list[str]]:
    statuses: list[str] = []
    machine = ModeStateMachine()
    return machine, InputMultiplexer(machine, on_status=statuses.append), statuses


def test_keypress_token() -> None:
    assert key("j").token == "j"
    assert key(":").token == ":"
    assert KeyPress("enter", "\r").token == "enter"
    assert KeyPress("ctrl+p", "\x10").token == "ctrl+p"


def test_command_line_dispatches_handler() -> None:
    machine, mux, statuses = make_mux()
    seen: list[str] = []
    mux.register_command("good", seen.append)

    press(mux, ":")
    assert machine.in_command_mode
    type_text(mux, "good nice reply")
    assert statuses[-1] == ":good nice reply"
    press(mux, "enter")

    assert seen == ["nice reply"]
    assert not machine.in_command_mode
    assert mux.armed is None


def test_command_line_backspace_past_colon_exits() -> None:
    machine, mux, statuses = make_mux()
    press(mux, ":", "q", "backspace")
    assert machine.in_command_mode
    press(mux, "backspace")
    assert not machine.in_command_mode
    assert statuses[-1] == ""


def test_command_line_escape_cancels() -> None:
    machine, mux, _ = make_mux()
    seen: list[str] = []
    mux.register_command("q", seen.append)
    press(mux, ":", "q", "escape")
    assert seen == []
    assert not machine.in_command_mode


def test_unknown_command_reports_status() -> None:
    _, mux, statuses = make_mux()
    press(mux, ":")
    type_text(mux, "frobnicate")
    press(mux, "enter")
    assert statuses[-1] == "Unknown command: frobnicate"


def test_mode_restricted_command() -> None:
    machine, mux, statuses = make_mux()
    seen: list[str] = []
    mux.register_command("w", seen.append, modes=[Mode.PROMPT_EDIT])
    press(mux, ":", "w", "enter")
    assert seen == []
    assert statuses[-1] == ":w is not available in NORMAL mode"


def test_command_names_are_case_insensitive() -> None:
    _, mux, _ = make_mux()
    seen: list[str] = []
    mux.register_command(["help", "h"], seen.append)
    press(mux, ":", "H", "e", "L", "p", "enter")
    assert seen == [""]


def test_mode_bindings_take_precedence_over_global() -> None:
    machine, mux, _ = make_mux()
    calls: list[str] = []
    mux.bind(Mode.NORMAL, "x", lambda: calls.append("mode"))
    mux.bind_global("x", lambda: calls.append("global"))
    mux.bind_global("z", lambda: calls.append("global-z"))

    assert press(mux, "x", "z", "q") == [True, True, False]
    assert calls == ["mode", "global-z"]


def test_text_entry_only_intercepts_commit_keys() -> None:
    machine, mux, _ = make_mux()
    calls: list[str] = []
    mux.bind(Mode.INSERT, "j", lambda: calls.append("j"))
    mux.bind_text_entry(Mode.INSERT, "escape", lambda: calls.append("escape"))
    machine.transition(Mode.INSERT)
    machine.set_text_entry(True)

    assert press(mux, "j", ":", "escape") == [False, False, True]
    assert calls == ["escape"]
    assert not machine.in_command_mode


def test_number_capture_collects_digits() -> None:
    _, mux, statuses = make_mux()
    committed: list[tuple[OperatorKind, int]] = []
    mux.arm(NumberCapture(PendingOperator(OperatorKind.EDIT), lambda k, n: committed.append((k, n)), on_change=statuses.append))

    press(mux, "1", "x", "2", "backspace", "3")
    assert statuses[-1] == "e13"
    press(mux, "enter")
    assert committed == [(OperatorKind.EDIT, 13)]
    assert mux.armed is None


def test_number_capture_ignores_enter_without_digits() -> None:
    _, mux, _ = make_mux()
    committed: list[tuple[OperatorKind, int]] = []
    capture = NumberCapture(PendingOperator(OperatorKind.YANK), lambda k, n: committed.append((k, n)))
    mux.arm(capture)

    press(mux, "enter")
    assert committed == []
    assert mux.armed is capture

    press(mux, "escape")
    assert mux.armed is None
    assert committed == []


def test_armed_capture_owns_colon() -> None:
    machine, mux, _ = make_mux()
    mux.arm(NumberCapture(PendingOperator(OperatorKind.YANK), lambda k, n: None))
    press(mux, ":")
    assert not machine.in_command_mode
    assert mux.armed is not None and mux.armed.kind is CaptureKind.NUMBER


def test_last_armed_capture_wins() -> None:
    """Only the most recently armed capture sees the following keystrokes."""
    _, mux, _ = make_mux()
    committed: list[tuple[OperatorKind, int]] = []
    first = NumberCapture(PendingOperator(OperatorKind.YANK), lambda k, n: committed.append((k, n)))
    second = NumberCapture(PendingOperator(OperatorKind.DELETE), lambda k, n: committed.append((k, n)))
    mux.arm(first)
    mux.arm(second)

    press(mux, "3", "enter")

    assert committed == [(OperatorKind.DELETE, 3)]
    assert first.operator.digits_buffer == ""
    assert mux.armed is None


def test_arming_over_command_line_leaves_command_mode() -> None:
    machine, mux, _ = make_mux()
    press(mux, ":")
    mux.arm(SearchCapture(on_commit=lambda term: None))
    assert not machine.in_command_mode
    assert mux.armed is not None and mux.armed.kind is CaptureKind.SEARCH


def test_completion_may_arm_a_new_capture() -> None:
    """A command that arms a capture keeps it armed after the command line closes."""
    _, mux, _ = make_mux()
    dismissed: list[bool] = []

    def open_help(args: str) -> None:
        mux.arm(HelpDismissCapture(lambda: dismissed.append(True)))

    mux.register_command("help", open_help)
    press(mux, ":", "h", "e", "l", "p", "enter")
    assert mux.armed is not None and mux.armed.kind is CaptureKind.HELP_DISMISS

    press(mux, "j")
    assert dismissed == [True]
    assert mux.armed is None


def test_search_capture_commits_term() -> None:
    _, mux, statuses = make_mux()
    terms: list[str] = []
    mux.arm(SearchCapture(on_commit=terms.append, on_change=statuses.append))
    type_text(mux, "reply")
    assert statuses[-1] == "Search: reply"
    press(mux, "enter")
    assert terms == ["reply"]


def test_keypresses_are_counted() -> None:
    _, mux, _ = make_mux()
    press(mux, "j", "k", "l")
    assert mux.keypress_count == 3
