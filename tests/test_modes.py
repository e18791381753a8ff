"""Tests for the Mode/View state machine."""

from __future__ import annotations

from chatterm.core.modes import KEY_HINTS, Mode, ModeChange, ModeStateMachine, View


def test_initial_state() -> None:
    machine = ModeStateMachine()
    assert machine.mode is Mode.NORMAL
    assert machine.view is View.MATRIX
    assert machine.previous_mode is None
    assert not machine.in_command_mode
    assert not machine.text_entry


def test_illegal_transition_is_noop() -> None:
    """Undefined edges leave mode, view and flags untouched."""
    changes: list[ModeChange] = []
    machine = ModeStateMachine(on_change=changes.append)

    assert machine.transition(Mode.PROMPT_EDIT) is False
    assert machine.mode is Mode.NORMAL
    assert machine.view is View.MATRIX
    assert changes == []


def test_command_is_never_a_target() -> None:
    machine = ModeStateMachine()
    assert machine.can_transition(Mode.COMMAND) is False
    assert machine.transition(Mode.COMMAND) is False
    assert machine.mode is Mode.NORMAL


def test_insert_remembers_previous_mode() -> None:
    machine = ModeStateMachine()
    machine.transition(Mode.CHAT)
    machine.transition(Mode.INSERT)
    assert machine.previous_mode is Mode.CHAT

    machine.transition(Mode.CHAT)
    assert machine.mode is Mode.CHAT
    assert machine.previous_mode is None


def test_help_returns_only_to_origin() -> None:
    machine = ModeStateMachine()
    machine.transition(Mode.PROMPT)
    assert machine.transition(Mode.HELP)
    assert machine.previous_mode is Mode.PROMPT

    assert machine.transition(Mode.NORMAL) is False
    assert machine.mode is Mode.HELP

    assert machine.transition(Mode.PROMPT)
    assert machine.mode is Mode.PROMPT
    assert machine.previous_mode is None


def test_help_is_reachable_from_every_mode() -> None:
    for path in ([], [Mode.INSERT], [Mode.CHAT], [Mode.PROMPT], [Mode.PROMPT, Mode.PROMPT_EDIT]):
        machine = ModeStateMachine()
        for step in path:
            assert machine.transition(step)
        origin = machine.mode
        assert machine.transition(Mode.HELP)
        assert machine.transition(origin)


def test_hooks_run_exit_change_entry_in_order() -> None:
    calls: list[str] = []
    machine = ModeStateMachine(on_change=lambda change: calls.append(f"change:{change.current.value}"))
    machine.add_exit_hook(Mode.NORMAL, lambda change: calls.append("exit:NORMAL"))
    machine.add_entry_hook(Mode.INSERT, lambda change: calls.append("enter:INSERT"))

    machine.transition(Mode.INSERT)

    assert calls == ["exit:NORMAL", "change:INSERT", "enter:INSERT"]


def test_change_carries_key_hint() -> None:
    changes: list[ModeChange] = []
    machine = ModeStateMachine(on_change=changes.append)
    machine.transition(Mode.PROMPT)

    assert changes[-1].previous is Mode.NORMAL
    assert changes[-1].hint == KEY_HINTS[Mode.PROMPT]


def test_set_view_same_view_is_noop() -> None:
    seen: list[tuple[View, View]] = []
    machine = ModeStateMachine()
    machine.add_view_listener(lambda old, new: seen.append((old, new)))

    assert machine.set_view(View.MATRIX) is False
    assert machine.set_view(View.CHAT_LIST) is True
    assert seen == [(View.MATRIX, View.CHAT_LIST)]


def test_mode_label_formatting() -> None:
    assert Mode.PROMPT_EDIT.label == " PROMPT EDIT "
    assert Mode.NORMAL.label == " NORMAL "
