"""Tests for the saved prompt store."""

from __future__ import annotations

import pytest

from chatterm.core.errors import EmptyMessageError, PersistenceError
from chatterm.core.prompts import PromptStore


@pytest.fixture
def store(tmp_path) -> PromptStore:
    store = PromptStore(tmp_path / "prompts.json")
    for text in ("Reply politely", "Decline the meeting", "Reply with a joke"):
        store.create(text)
    return store


def test_create_update_delete(store: PromptStore) -> None:
    assert len(store) == 3
    updated = store.update(2, "  Accept the meeting  ")
    assert updated is not None and updated.content == "Accept the meeting"
    assert updated.updated is not None

    removed = store.delete(1)
    assert removed is not None and removed.content == "Reply politely"
    assert [p.content for p in store.prompts] == ["Accept the meeting", "Reply with a joke"]


def test_out_of_range_is_noop(store: PromptStore) -> None:
    assert store.get(0) is None
    assert store.get(4) is None
    assert store.update(9, "x") is None
    assert store.delete(9) is None
    assert store.yank(9) is None
    assert len(store) == 3


def test_empty_content_rejected(store: PromptStore) -> None:
    with pytest.raises(EmptyMessageError, match="Prompt cannot be empty"):
        store.create("   ")
    with pytest.raises(EmptyMessageError):
        store.update(1, "")
    assert len(store) == 3


def test_yank_and_paste(store: PromptStore) -> None:
    assert PromptStore().paste() is None
    store.yank(2)
    assert store.yank_buffer == "Decline the meeting"
    pasted = store.paste()
    assert pasted is not None
    assert store.prompts[-1].content == "Decline the meeting"
    assert len(store) == 4


def test_search_cycles_matches(store: PromptStore) -> None:
    assert store.search("REPLY") == 2
    assert store.highlighted == 0
    assert store.match_position == 1
    assert store.next_match() == 2
    assert store.next_match() == 0
    assert store.prev_match() == 2

    assert store.search("nothing") == 0
    assert store.highlighted is None
    assert store.next_match() is None


def test_mutation_resets_search(store: PromptStore) -> None:
    store.search("reply")
    store.create("Another reply")
    assert store.search_term == ""
    assert store.match_count == 0


def test_persistence_round_trip(store: PromptStore, tmp_path) -> None:
    reloaded = PromptStore(tmp_path / "prompts.json")
    assert reloaded.load() == 3
    assert [p.id for p in reloaded.prompts] == [p.id for p in store.prompts]


def test_corrupt_file_loads_empty(tmp_path) -> None:
    path = tmp_path / "prompts.json"
    path.write_text("{not json")
    store = PromptStore(path)
    assert store.load() == 0
    assert store.prompts == []


def test_save_failure_raises(tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = PromptStore(blocker / "prompts.json")
    with pytest.raises(PersistenceError):
        store.create("hello")
    assert len(store) == 0


def test_failed_save_leaves_memory_unchanged(store: PromptStore, tmp_path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("")
    store.path = blocker / "prompts.json"

    with pytest.raises(PersistenceError):
        store.update(1, "Reply rudely")
    with pytest.raises(PersistenceError):
        store.delete(2)
    with pytest.raises(PersistenceError):
        store.create("Reply later")

    assert [p.content for p in store.prompts] == [
        "Reply politely",
        "Decline the meeting",
        "Reply with a joke",
    ]
    assert store.get(1).updated is None
