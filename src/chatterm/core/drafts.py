"""AI draft pipeline.

``/p [-ct "content"] [-p slug] [-m model]`` runs, per invocation:

    PARSE -> CONTEXT -> COMPLETE -> SANITIZE -> RECORD -> SEND

PARSE and CONTEXT are synchronous. COMPLETE is the only suspension point and
each invocation is an independent coroutine, so two overlapping drafts never
block each other. The interaction is always recorded before the send attempt
and its delivery status is resolved exactly once afterwards.
"""

from __future__ import annotations

import logging
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from chatterm.core.errors import (
    ChattermError,
    CompletionError,
    TemplateNotFoundError,
)
from chatterm.core.session import ChatSession
from chatterm.services.base import (
    AIInteraction,
    CompletionService,
    Message,
    MetricsSink,
    SendStatus,
)
from chatterm.services.metrics import new_interaction_id

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".md", ".txt")
CONTEXT_PLACEHOLDER = "{{CONTEXT}}"
CONTENT_PLACEHOLDER = "{{CONTENT}}"

# Lines the dashboard itself produces; never fed back to the model.
SENTINEL_PHRASES = ("processing with ai", "[ai draft]", "ai draft failed")

_TAG_RE = re.compile(r"<[^>]*>")
_LEADING_COMMAND_RE = re.compile(r"^\s*[/:][a-z]+\b\s*", re.IGNORECASE)
_TRAILING_COMMAND_RE = re.compile(r"\s*:[qw]\s*$", re.IGNORECASE)
_FENCE_RE = re.compile(r"```[a-zA-Z]*\n?|```")
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*", re.DOTALL)
_ITALIC_RE = re.compile(r"\*(.*?)\*", re.DOTALL)
_UNDERLINE_RE = re.compile(r"__(.*?)__", re.DOTALL)


@dataclass(frozen=True)
class DraftRequest:
    """Parsed ``/p`` command."""

    content: str = ""
    prompt_slug: Optional[str] = None
    model: str = "llama3.2"


def parse_draft_command(command: str, default_model: str = "llama3.2") -> DraftRequest:
    """Parse ``/p [-ct "content"] [-p slug] [-m model]``.

    Quoted values may span several words. A flag takes the next token as its
    value unless that token is itself a flag, in which case the value is
    empty. Unknown flags swallow their value and are otherwise ignored. A bare
    word is taken as the slug when no ``-p`` flag is given.
    """
    try:
        tokens = shlex.split(command)
    except ValueError:
        # Unbalanced quotes
        tokens = command.split()

    if tokens and tokens[0].lower() in ("/p", "/prompt"):
        tokens = tokens[1:]

    content = ""
    slug: Optional[str] = None
    positional: Optional[str] = None
    model = default_model

    i = 0
    while i < len(tokens):
        token = tokens[i]
        if _is_flag(token):
            value = ""
            i += 1
            if i < len(tokens) and not _is_flag(tokens[i]):
                value = tokens[i]
                i += 1
            if token == "-ct":
                content = value
            elif token == "-p":
                slug = value or None
            elif token == "-m":
                model = value or default_model
            else:
                logger.debug(f"Ignoring unknown draft flag {token}")
            continue
        if positional is None:
            positional = token
        i += 1

    if slug is None and positional:
        slug = positional

    return DraftRequest(content=content, prompt_slug=slug, model=model)


def _is_flag(token: str) -> bool:
    return token.startswith("-") and len(token) > 1


def is_control_line(body: str) -> bool:
    """True for command fragments and dashboard-generated lines."""
    text = body.strip()
    if text.startswith(("/", ":")):
        return True
    lowered = text.lower()
    return any(phrase in lowered for phrase in SENTINEL_PHRASES)


def assemble_context(messages: Iterable[Message], limit: int = 10) -> str:
    """Format the last ``limit`` messages as ``sender [time]\\nbody`` blocks."""
    recent = list(messages)[-limit:] if limit > 0 else []
    blocks = [
        f"{m.sender_label} [{m.time_label}]\n{m.body}"
        for m in recent
        if not is_control_line(m.body)
    ]
    return "\n\n".join(blocks)


def _sanitize_once(text: str) -> str:
    text = _TAG_RE.sub("", text)
    text = _LEADING_COMMAND_RE.sub("", text)
    text = _TRAILING_COMMAND_RE.sub("", text)
    text = _FENCE_RE.sub("", text)
    text = _BOLD_RE.sub(r"\1", text)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _UNDERLINE_RE.sub(r"\1", text)
    return text.strip()


def sanitize(text: Optional[str]) -> str:
    """Strip markup, command fragments and emphasis from a completion.

    Applied until nothing changes, so ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if not text:
        return ""
    current = text
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


class PromptLibrary:
    """Prompt templates addressed by file-stem slug, loaded once."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._templates: dict[str, str] = {}

    def load(self) -> int:
        """Read every template file in the directory.

        Returns:
            Number of templates loaded.
        """
        self._templates.clear()
        if not self.directory.is_dir():
            logger.info(f"Prompt directory {self.directory} does not exist")
            return 0
        for path in sorted(self.directory.iterdir()):
            if path.suffix not in TEMPLATE_SUFFIXES or not path.is_file():
                continue
            try:
                self._templates[path.stem] = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Failed to read prompt template {path}: {e}")
        logger.info(f"Loaded {len(self._templates)} prompt templates")
        return len(self._templates)

    def add(self, slug: str, template: str) -> None:
        self._templates[slug] = template

    @property
    def slugs(self) -> list[str]:
        return sorted(self._templates)

    def get(self, slug: str) -> str:
        try:
            return self._templates[slug]
        except KeyError:
            raise TemplateNotFoundError(slug, self._templates) from None

    def build_prompt(self, slug: Optional[str], context: str, content: str) -> str:
        """Fill a template, or fall back to a plain context/content prompt."""
        if slug:
            template = self.get(slug)
            return template.replace(CONTEXT_PLACEHOLDER, context).replace(
                CONTENT_PLACEHOLDER, content
            )
        if context:
            return f"Context:\n{context}\n\nContent:\n{content}"
        return content


class DraftPipeline:
    """Turns a ``/p`` command into a sent, recorded AI draft."""

    def __init__(
        self,
        session: ChatSession,
        completion: CompletionService,
        library: PromptLibrary,
        metrics: Optional[MetricsSink] = None,
        model: str = "llama3.2",
        context_limit: int = 10,
    ) -> None:
        self.session = session
        self.completion = completion
        self.library = library
        self.metrics = metrics
        self.model = model
        self.context_limit = context_limit
        self.last_interaction_id: Optional[str] = None

    async def run(self, command: str) -> AIInteraction:
        """Run one draft end to end.

        Raises:
            TemplateNotFoundError: Unknown slug; nothing is sent.
            CompletionError: Backend failure; nothing is sent.
            ChattermError: The send failed (the interaction is still recorded).
        """
        request = parse_draft_command(command, default_model=self.model)
        chat = self.session.selected_chat
        context = ""
        if request.prompt_slug:
            context = assemble_context(self.session.messages, self.context_limit)

        logger.info(
            f"Draft requested slug={request.prompt_slug} model={request.model} "
            f"content_len={len(request.content)}"
        )

        started = time.monotonic()
        prompt = ""
        try:
            prompt = self.library.build_prompt(request.prompt_slug, context, request.content)
            response = await self._complete(request.model, prompt)
        except (TemplateNotFoundError, CompletionError) as e:
            self._record_error(request, context, prompt, e, started, chat)
            raise
        elapsed_ms = int((time.monotonic() - started) * 1000)

        draft = sanitize(response)
        interaction = AIInteraction(
            id="",
            prompt_slug=request.prompt_slug,
            content=request.content,
            context=context,
            prompt=prompt,
            response=response,
            draft=draft,
            model=request.model,
            response_time_ms=elapsed_ms,
        )
        interaction.id = self._record(interaction, chat)
        # Last to complete wins when drafts overlap.
        self.last_interaction_id = interaction.id

        try:
            await self.session.send(draft)
        except ChattermError as e:
            interaction.resolve(SendStatus.FAILED, str(e))
            self._update_status(interaction)
            raise
        interaction.resolve(SendStatus.SENT)
        self._update_status(interaction)
        logger.info(f"Draft {interaction.id} sent in {elapsed_ms}ms")
        return interaction

    def record_feedback(self, positive: bool, note: str = "") -> Optional[str]:
        """Attach feedback to the last interaction.

        Returns:
            The interaction id, or None when there is nothing to rate.
        """
        interaction_id = self.last_interaction_id
        if interaction_id is None:
            return None
        if self.metrics is not None:
            self.metrics.record_feedback(interaction_id, positive, note)
        logger.info(f"Feedback for {interaction_id}: {'positive' if positive else 'negative'}")
        return interaction_id

    async def _complete(self, model: str, prompt: str) -> str:
        try:
            return await self.completion.generate(model, prompt)
        except CompletionError:
            raise
        except Exception as e:
            raise CompletionError(f"Completion failed: {e}") from e

    def _record(self, interaction: AIInteraction, chat) -> str:
        if self.metrics is None:
            return new_interaction_id()
        data = interaction.model_dump(mode="json", exclude={"id", "sent_status", "error"})
        data["chat_id"] = chat.id if chat is not None else None
        data["chat_name"] = chat.display_name if chat is not None else None
        return self.metrics.record_interaction(data) or new_interaction_id()

    def _update_status(self, interaction: AIInteraction) -> None:
        if self.metrics is not None:
            self.metrics.update_send_status(
                interaction.id, interaction.sent_status, interaction.error
            )

    def _record_error(self, request, context, prompt, error, started, chat) -> None:
        logger.error(f"Draft failed: {error}")
        if self.metrics is None:
            return
        self.metrics.record_error(
            {
                "prompt_slug": request.prompt_slug,
                "content": request.content,
                "context": context,
                "prompt": prompt,
                "model": request.model,
                "error": str(error),
                "error_type": type(error).__name__,
                "response_time_ms": int((time.monotonic() - started) * 1000),
                "chat_id": chat.id if chat is not None else None,
            }
        )
