"""Saved prompts listed and edited in PROMPT mode.

Indices taken from the user are 1-based, matching the ``[n]`` labels on
screen. An out-of-range index is a no-op: the method returns None and the
caller shows a notice.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from chatterm.core.errors import EmptyMessageError, PersistenceError

logger = logging.getLogger(__name__)


class SavedPrompt(BaseModel):
    """A user-authored prompt."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    content: str
    created: datetime = Field(default_factory=datetime.now)
    updated: Optional[datetime] = None


class PromptStore:
    """Ordered list of saved prompts with yank buffer and search cursor."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._prompts: list[SavedPrompt] = []
        self.yank_buffer: Optional[str] = None
        self.search_term = ""
        self._hits: list[int] = []
        self._hit_pos = -1

    @property
    def prompts(self) -> list[SavedPrompt]:
        return list(self._prompts)

    def __len__(self) -> int:
        return len(self._prompts)

    def load(self) -> int:
        """Load prompts from disk. A missing or corrupt file yields an empty list."""
        self._prompts = []
        if self.path is None or not self.path.exists():
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._prompts = [SavedPrompt.model_validate(item) for item in raw]
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"Failed to load saved prompts from {self.path}: {e}")
            self._prompts = []
        return len(self._prompts)

    def save(self) -> None:
        if self.path is None:
            return
        payload = [p.model_dump(mode="json") for p in self._prompts]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Error saving prompts: {e}") from e

    def get(self, index: int) -> Optional[SavedPrompt]:
        if 1 <= index <= len(self._prompts):
            return self._prompts[index - 1]
        return None

    def create(self, content: str) -> SavedPrompt:
        text = _require_content(content)
        prompt = SavedPrompt(content=text)
        self._prompts.append(prompt)
        try:
            self.save()
        except PersistenceError:
            self._prompts.pop()
            raise
        self._reset_search()
        return prompt

    def update(self, index: int, content: str) -> Optional[SavedPrompt]:
        text = _require_content(content)
        prompt = self.get(index)
        if prompt is None:
            return None
        previous = (prompt.content, prompt.updated)
        prompt.content = text
        prompt.updated = datetime.now()
        try:
            self.save()
        except PersistenceError:
            prompt.content, prompt.updated = previous
            raise
        self._reset_search()
        return prompt

    def delete(self, index: int) -> Optional[SavedPrompt]:
        if self.get(index) is None:
            return None
        removed = self._prompts.pop(index - 1)
        try:
            self.save()
        except PersistenceError:
            self._prompts.insert(index - 1, removed)
            raise
        self._reset_search()
        return removed

    def yank(self, index: int) -> Optional[SavedPrompt]:
        prompt = self.get(index)
        if prompt is not None:
            self.yank_buffer = prompt.content
        return prompt

    def paste(self) -> Optional[SavedPrompt]:
        if not self.yank_buffer:
            return None
        return self.create(self.yank_buffer)

    # -- search -----------------------------------------------------------

    def search(self, term: str) -> int:
        """Case-insensitive substring search; the cursor moves to the first hit.

        Returns:
            Number of matches.
        """
        self.search_term = term
        needle = term.lower()
        self._hits = [
            i for i, p in enumerate(self._prompts) if needle and needle in p.content.lower()
        ]
        self._hit_pos = 0 if self._hits else -1
        return len(self._hits)

    def next_match(self) -> Optional[int]:
        if not self._hits:
            return None
        self._hit_pos = (self._hit_pos + 1) % len(self._hits)
        return self.highlighted

    def prev_match(self) -> Optional[int]:
        if not self._hits:
            return None
        self._hit_pos = (self._hit_pos - 1) % len(self._hits)
        return self.highlighted

    @property
    def highlighted(self) -> Optional[int]:
        """0-based index of the current match, if any."""
        if self._hit_pos < 0:
            return None
        return self._hits[self._hit_pos]

    @property
    def match_count(self) -> int:
        return len(self._hits)

    @property
    def match_position(self) -> int:
        return self._hit_pos + 1

    def _reset_search(self) -> None:
        self.search_term = ""
        self._hits = []
        self._hit_pos = -1


def _require_content(content: str) -> str:
    text = (content or "").strip()
    if not text:
        raise EmptyMessageError("Prompt cannot be empty")
    return text
