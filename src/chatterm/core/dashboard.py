"""Dashboard controller.

Builds the engine (state machine, multiplexer, session, draft pipeline,
prompt store, render coordinator, animation) and owns every key binding and
``:`` command. It knows nothing about Textual: a front end hands it a
``Surface`` and forwards keystrokes to ``handle_key``.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any, Awaitable, Callable, Optional

from chatterm.config.schema import ChattermConfig
from chatterm.core.animation import BackgroundAnimation
from chatterm.core.drafts import DraftPipeline, PromptLibrary
from chatterm.core.errors import ChattermError, EmptyMessageError, PersistenceError
from chatterm.core.event_bus import Event, EventBus, Subscription
from chatterm.core.input import (
    HelpDismissCapture,
    InputMultiplexer,
    KeyPress,
    NumberCapture,
    OperatorKind,
    PendingOperator,
    SearchCapture,
)
from chatterm.core.modes import Mode, ModeChange, ModeStateMachine, View
from chatterm.core.prompts import PromptStore
from chatterm.core.render import HELP_TEXT, RenderCoordinator, Surface, format_metrics
from chatterm.core.session import ChatSession
from chatterm.services.base import ChatService, CompletionService, MetricsSink

logger = logging.getLogger(__name__)

DRAFT_PREFIXES = ("/p", "/prompt")


def is_draft_command(text: str) -> bool:
    head = text.strip().split(maxsplit=1)
    return bool(head) and head[0].lower() in DRAFT_PREFIXES


class Dashboard:
    """Keystroke-driven controller for the chat dashboard."""

    def __init__(
        self,
        surface: Surface,
        service: ChatService,
        completion: CompletionService,
        metrics: Optional[MetricsSink] = None,
        config: Optional[ChattermConfig] = None,
        bus: Optional[EventBus] = None,
        library: Optional[PromptLibrary] = None,
        prompt_store: Optional[PromptStore] = None,
        on_quit: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config or ChattermConfig()
        self.bus = bus or EventBus()
        self.surface = surface
        self.service = service
        self.completion = completion
        self.metrics = metrics
        self._on_quit = on_quit

        self.machine = ModeStateMachine(on_change=self._on_mode_change)
        self.render = RenderCoordinator(surface, self.machine)
        self.animation: Optional[BackgroundAnimation] = None
        if self.config.ui.animation_enabled:
            self.animation = BackgroundAnimation(
                paint=self.render.paint_animation,
                clear=self.render.clear_animation,
                size=surface.content_size,
                interval=self.config.ui.animation_interval,
                density=self.config.ui.matrix_density,
            )
            self.render.attach_animation(self.animation)

        self.input = InputMultiplexer(self.machine, on_status=self.render.status)

        service.attach_bus(self.bus)
        session_cfg = self.config.session
        self.session = ChatSession(
            service,
            bus=self.bus,
            notify=lambda text: self.render.notice(text, "warning"),
            chat_limit=session_cfg.chat_limit,
            message_limit=session_cfg.message_limit,
            send_refresh_delay=session_cfg.send_refresh_delay,
        )
        self.library = library or PromptLibrary(self.config.ai.prompts_dir)
        self.pipeline = DraftPipeline(
            self.session,
            completion,
            self.library,
            metrics=metrics,
            model=self.config.ai.model,
            context_limit=self.config.ai.context_limit,
        )
        self.prompts = prompt_store or PromptStore(self.config.prompts.store_path)

        self._tasks: set[asyncio.Task] = set()
        self._editing_index: Optional[int] = None
        self._pending_delete = False
        self._closing = False
        self._subscriptions: list[Subscription] = []

        self._register_hooks()
        self._register_bindings()
        self._register_commands()
        self._subscribe()

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Load templates and prompts, paint the idle view, connect."""
        self.library.load()
        self.prompts.load()
        self.render.start()
        self.render.show_chat_list([], None)
        self.spawn(self._check_completion(), "completion check")
        try:
            await self.service.start()
        except ChattermError as e:
            self.render.notice(f"Connection failed: {e}", "error")

    async def _check_completion(self) -> None:
        """Warn early when /p drafts cannot work."""
        model = self.config.ai.model
        if not await self.completion.is_available():
            self.render.notice(f"AI backend unreachable at {self.config.ai.host}", "warning")
            return
        installed = await self.completion.list_models()
        if installed and not any(name == model or name.split(":")[0] == model for name in installed):
            self.render.notice(f"Model {model} is not installed", "warning")

    async def shutdown(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True
        logger.info("Shutting down")
        self._unsubscribe()
        if self.animation is not None:
            self.animation.stop()
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        await self.session.close()
        try:
            await self.service.stop()
        except Exception as e:
            logger.error(f"Error stopping chat service: {e}")
        try:
            await self.completion.close()
        except Exception as e:
            logger.error(f"Error closing completion service: {e}")
        if self._on_quit is not None:
            self._on_quit()

    @property
    def closing(self) -> bool:
        return self._closing

    def spawn(self, coro: Awaitable, description: str = "task") -> asyncio.Task:
        """Run ``coro`` in the background with the error policy applied."""
        task = asyncio.get_running_loop().create_task(self._guard(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every spawned task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _guard(self, coro: Awaitable, description: str):
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except PersistenceError as e:
            logger.warning(f"{description}: {e}")
        except ChattermError as e:
            logger.warning(f"{description} failed: {e}")
            self.render.notice(str(e), "warning")
        except Exception as e:
            logger.exception(f"Unexpected error in {description}")
            self.render.show_error(f"Error: {e}", traceback.format_exc())
        return None

    # -- input ----------------------------------------------------------------

    def handle_key(self, key: str, character: Optional[str] = None) -> bool:
        """Route one keystroke; False means the focused input should handle it."""
        handled = self._run_guarded(
            lambda: self.input.feed(KeyPress(key=key, character=character)),
            f"key {key}",
        )
        return True if handled is None else handled

    def submit_input(self, value: Optional[str] = None) -> None:
        """Commit the input box (enter pressed in the text widget)."""
        self._run_guarded(lambda: self._submit(value), "input submit")

    def _submit(self, value: Optional[str]) -> None:
        if value is not None:
            self.surface.set_input_value(value)
        if self.machine.mode is Mode.INSERT:
            self._commit_insert()
        elif self.machine.mode is Mode.PROMPT_EDIT:
            self._save_prompt()

    def _run_guarded(self, action: Callable[[], Any], description: str) -> Any:
        """Synchronous counterpart of ``_guard`` for key and input handlers."""
        try:
            return action()
        except ChattermError as e:
            logger.warning(f"{description} failed: {e}")
            self.render.notice(str(e), "warning")
        except Exception as e:
            logger.exception(f"Unexpected error handling {description}")
            self.render.show_error(f"Error: {e}", traceback.format_exc())
        return None

    # -- mode hooks -----------------------------------------------------------

    def _on_mode_change(self, change: ModeChange) -> None:
        self.render.show_mode(change)

    def _register_hooks(self) -> None:
        m = self.machine
        m.add_entry_hook(Mode.INSERT, self._enter_insert)
        m.add_exit_hook(Mode.INSERT, self._exit_text_entry)
        m.add_entry_hook(Mode.PROMPT, self._enter_prompt)
        m.add_exit_hook(Mode.PROMPT, lambda change: self._reset_operator())
        m.add_entry_hook(Mode.PROMPT_EDIT, self._enter_prompt_edit)
        m.add_exit_hook(Mode.PROMPT_EDIT, self._exit_prompt_edit)
        m.add_exit_hook(Mode.HELP, lambda change: self.render.close_overlay())

    def _enter_insert(self, change: ModeChange) -> None:
        self.surface.set_input_value("")
        self.machine.set_text_entry(True)
        self.surface.focus_input()

    def _exit_text_entry(self, change: ModeChange) -> None:
        self.machine.set_text_entry(False)
        self.surface.set_input_value("")
        self.surface.blur_input()

    def _enter_prompt(self, change: ModeChange) -> None:
        if change.previous is Mode.HELP:
            return
        self.machine.set_view(View.PROMPT)
        self.render.show_prompts(self.prompts)

    def _enter_prompt_edit(self, change: ModeChange) -> None:
        if change.previous is Mode.HELP:
            return
        prefill = ""
        if self._editing_index is not None:
            prompt = self.prompts.get(self._editing_index)
            prefill = prompt.content if prompt is not None else ""
        self.surface.set_input_value(prefill)
        self.machine.set_text_entry(True)
        self.surface.focus_input()
        self.render.show_prompt_editor(self._editing_index)

    def _exit_prompt_edit(self, change: ModeChange) -> None:
        if change.current is Mode.HELP:
            return
        self._editing_index = None
        self._exit_text_entry(change)

    # -- bindings -------------------------------------------------------------

    def _register_bindings(self) -> None:
        inp = self.input
        browse = (Mode.NORMAL, Mode.CHAT)

        inp.bind(browse, "i", lambda: self.machine.transition(Mode.INSERT))
        inp.bind(browse, "h", self._show_chat_list)
        inp.bind(browse, "l", self._show_chat)
        inp.bind(browse, ("j", "down"), lambda: self._move(1))
        inp.bind(browse, ("k", "up"), lambda: self._move(-1))
        inp.bind(browse, "enter", self._select_under_cursor)
        inp.bind(browse, "r", self._refresh)
        inp.bind(Mode.NORMAL, "escape", self._back_to_matrix)
        inp.bind(Mode.CHAT, "escape", self._leave_chat)

        inp.bind_text_entry(Mode.INSERT, "escape", self._cancel_insert)
        inp.bind_text_entry(Mode.INSERT, "enter", self._commit_insert)
        for mode in (Mode.INSERT, Mode.PROMPT_EDIT):
            inp.bind_text_entry(mode, "ctrl+p", lambda: self._feedback(True))
            inp.bind_text_entry(mode, "ctrl+n", lambda: self._feedback(False))
        inp.bind_global("ctrl+p", lambda: self._feedback(True))
        inp.bind_global("ctrl+n", lambda: self._feedback(False))

        self._bind_prompt("o", self._create_prompt)
        self._bind_prompt("e", lambda: self._arm_operator(OperatorKind.EDIT))
        self._bind_prompt("y", lambda: self._arm_operator(OperatorKind.YANK))
        self._bind_prompt("p", self._paste_prompt)
        self._bind_prompt("/", self._start_search)
        self._bind_prompt("n", lambda: self._step_match(1))
        self._bind_prompt("N", lambda: self._step_match(-1))
        self._bind_prompt(("j", "down"), lambda: self.surface.scroll_messages(1))
        self._bind_prompt(("k", "up"), lambda: self.surface.scroll_messages(-1))
        self._bind_prompt("escape", self._leave_prompts)
        inp.bind(Mode.PROMPT, "d", self._delete_key)

        inp.bind_text_entry(Mode.PROMPT_EDIT, ("enter", "ctrl+s"), self._save_prompt)
        inp.bind_text_entry(Mode.PROMPT_EDIT, "escape", self._leave_prompt_input)
        inp.bind(Mode.PROMPT_EDIT, "ctrl+s", self._save_prompt)
        inp.bind(Mode.PROMPT_EDIT, "i", self._refocus_prompt_input)
        inp.bind(Mode.PROMPT_EDIT, "escape", lambda: self.machine.transition(Mode.PROMPT))

    def _bind_prompt(self, keys, action: Callable[[], None]) -> None:
        def wrapped() -> None:
            self._pending_delete = False
            action()

        self.input.bind(Mode.PROMPT, keys, wrapped)

    def _register_commands(self) -> None:
        inp = self.input
        inp.register_command("help", lambda args: self._open_overlay(HELP_TEXT, "Help"))
        inp.register_command(("p", "prompts"), lambda args: self._open_prompts())
        inp.register_command("w", lambda args: self._save_prompt(), modes=[Mode.PROMPT_EDIT])
        inp.register_command(("q", "quit"), lambda args: self.request_quit())
        inp.register_command("metrics", lambda args: self._show_metrics())
        inp.register_command("good", lambda args: self._feedback(True, args))
        inp.register_command("bad", lambda args: self._feedback(False, args))

    def request_quit(self) -> None:
        self.spawn(self.shutdown(), "shutdown")

    # -- chat list / chat -----------------------------------------------------

    def _show_chat_list(self) -> None:
        self.machine.set_view(View.CHAT_LIST)
        self.render.show_chat_list(self.session.chats, self.session.selected_chat)
        self.render.show_messages(self.session.selected_chat, self.session.messages)

    def _show_chat(self) -> None:
        if self.session.selected_chat is None:
            self.render.notice("No chat selected")
            return
        self.machine.set_view(View.CHAT)
        self.render.show_messages(self.session.selected_chat, self.session.messages)

    def _move(self, delta: int) -> None:
        if self.machine.view is View.CHAT:
            self.surface.scroll_messages(delta)
        else:
            self.surface.move_cursor(delta)

    def _select_under_cursor(self) -> None:
        chats = self.session.chats
        if not chats:
            self.render.notice("No chats loaded")
            return
        index = min(max(self.surface.get_cursor(), 0), len(chats) - 1)
        ref = chats[index]
        self.session.mark_manual_selection()
        if not self.session.select_chat(ref):
            return
        self.machine.transition(Mode.CHAT)
        if self.machine.view not in (View.CHAT, View.CHAT_LIST):
            self.machine.set_view(View.CHAT_LIST)
        self.render.show_chat_list(chats, ref)
        self.render.show(f"Loading messages for {ref.display_name}...", label=ref.display_name)
        self.spawn(self.session.load_messages(), "load messages")

    def _refresh(self) -> None:
        if self.session.selected_chat is not None:
            self.spawn(self.session.load_messages(), "refresh messages")
        else:
            self.spawn(self.session.load_chats(), "load chats")

    def _leave_chat(self) -> None:
        self.session.clear_selection()
        self.machine.transition(Mode.NORMAL)
        self.machine.set_view(View.MATRIX)
        self.render.show_chat_list(self.session.chats, None)

    def _back_to_matrix(self) -> None:
        self.machine.set_view(View.MATRIX)

    # -- insert ---------------------------------------------------------------

    def _cancel_insert(self) -> None:
        self.machine.transition(self.machine.previous_mode or Mode.NORMAL)

    def _commit_insert(self) -> None:
        text = self.surface.get_input_value()
        self.surface.set_input_value("")
        self.surface.focus_input()
        if not text.strip():
            return
        if is_draft_command(text):
            self.render.notice("Processing with AI...")
            self.spawn(self._run_draft(text), "AI draft")
        else:
            self.spawn(self.session.send(text), "send message")

    async def _run_draft(self, command: str) -> None:
        interaction = await self.pipeline.run(command)
        self.render.notice(f"AI draft sent ({interaction.response_time_ms} ms)")

    def _feedback(self, positive: bool, note: str = "") -> None:
        interaction_id = self.pipeline.record_feedback(positive, note.strip())
        if interaction_id is None:
            self.render.notice("No AI interaction to rate")
            return
        self.render.notice("Thanks! Positive feedback recorded" if positive else "Negative feedback recorded")

    # -- overlays -------------------------------------------------------------

    def _open_overlay(self, markup: str, label: str) -> None:
        if not self.machine.transition(Mode.HELP):
            return
        self.render.open_overlay(markup, label)
        self.input.arm(HelpDismissCapture(self._dismiss_overlay))

    def _dismiss_overlay(self) -> None:
        previous = self.machine.previous_mode
        if previous is not None:
            self.machine.transition(previous)

    def _show_metrics(self) -> None:
        if self.metrics is None:
            self.render.notice("Metrics are disabled")
            return
        self._open_overlay(format_metrics(self.metrics.get_metrics()), "AI Metrics")

    # -- prompts --------------------------------------------------------------

    def _open_prompts(self) -> None:
        if not self.machine.transition(Mode.PROMPT):
            self.render.notice("Prompts are available from normal mode")

    def _leave_prompts(self) -> None:
        self.machine.transition(Mode.NORMAL)
        self.machine.set_view(View.MATRIX)

    def _create_prompt(self) -> None:
        self._editing_index = None
        self.machine.transition(Mode.PROMPT_EDIT)

    def _delete_key(self) -> None:
        if self._pending_delete:
            self._pending_delete = False
            self._arm_operator(OperatorKind.DELETE)
        else:
            self._pending_delete = True
            self.render.status("d")

    def _reset_operator(self) -> None:
        self._pending_delete = False

    def _arm_operator(self, kind: OperatorKind) -> None:
        self.input.arm(
            NumberCapture(
                PendingOperator(kind),
                on_commit=self._apply_operator,
                on_cancel=lambda: self.render.status(""),
                on_change=self.render.status,
            )
        )
        self.render.status(kind.value)

    def _apply_operator(self, kind: OperatorKind, number: int) -> None:
        self.render.status("")
        if self.prompts.get(number) is None:
            self.render.notice(f"No prompt {number}")
            return
        if kind is OperatorKind.EDIT:
            self._editing_index = number
            self.machine.transition(Mode.PROMPT_EDIT)
            return
        if kind is OperatorKind.DELETE:
            self.prompts.delete(number)
            self.render.notice(f"Deleted prompt {number}")
        elif kind is OperatorKind.YANK:
            self.prompts.yank(number)
            self.render.notice(f"Yanked prompt {number}")
        self.render.show_prompts(self.prompts)

    def _paste_prompt(self) -> None:
        if self.prompts.paste() is None:
            self.render.notice("Nothing yanked")
            return
        self.render.show_prompts(self.prompts)

    def _start_search(self) -> None:
        self.input.arm(
            SearchCapture(
                on_commit=self._search,
                on_cancel=lambda: self.render.status(""),
                on_change=self.render.status,
            )
        )
        self.render.status("Search: ")

    def _search(self, term: str) -> None:
        self.render.status("")
        if not term:
            return
        self.prompts.search(term)
        self.render.show_prompts(self.prompts)

    def _step_match(self, step: int) -> None:
        moved = self.prompts.next_match() if step > 0 else self.prompts.prev_match()
        if moved is None:
            self.render.notice("No search results")
            return
        self.render.show_prompts(self.prompts)

    def _save_prompt(self) -> None:
        content = self.surface.get_input_value()
        try:
            if self._editing_index is None:
                self.prompts.create(content)
            elif self.prompts.update(self._editing_index, content) is None:
                self.render.notice(f"No prompt {self._editing_index}")
                return
        except EmptyMessageError as e:
            self.render.notice(str(e), "warning")
            return
        self.machine.transition(Mode.PROMPT)
        self.render.notice("Prompt saved")

    def _leave_prompt_input(self) -> None:
        self.machine.set_text_entry(False)
        self.surface.blur_input()
        self.render.status("Input left. i: back to input │ Esc: cancel")

    def _refocus_prompt_input(self) -> None:
        self.machine.set_text_entry(True)
        self.surface.focus_input()
        self.render.show_mode()

    # -- bus ------------------------------------------------------------------

    def _subscribe(self) -> None:
        handlers = [
            ("transport.qr", lambda e: self.render.notice("Scan the pairing code to log in")),
            ("transport.authenticated", lambda e: self.render.notice("Authenticated")),
            ("transport.ready", self._on_ready),
            ("transport.disconnected", self._on_disconnected),
            ("session.chats", self._on_chats),
            ("session.messages", self._on_messages),
        ]
        self._subscriptions = [self.bus.subscribe(p, h) for p, h in handlers]

    def _unsubscribe(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def _on_ready(self, event: Event) -> None:
        self.render.notice(f"Connected to {self.service.name}")
        self.spawn(self.session.load_chats(), "load chats")

    def _on_disconnected(self, event: Event) -> None:
        self.render.notice(f"Disconnected: {event.data or 'unknown reason'}", "warning")
        self.session.handle_disconnected()
        self.input.disarm()
        self._return_to_normal()

    def _return_to_normal(self) -> None:
        m = self.machine
        for _ in range(3):
            if m.mode is Mode.HELP and m.previous_mode is not None:
                m.transition(m.previous_mode)
            elif m.mode is Mode.PROMPT_EDIT:
                m.transition(Mode.PROMPT)
            elif m.mode is not Mode.NORMAL:
                m.transition(Mode.NORMAL)
        m.set_view(View.MATRIX)

    def _on_chats(self, event: Event) -> None:
        self.render.show_chat_list(event.data or [], self.session.selected_chat)

    def _on_messages(self, event: Event) -> None:
        data = event.data or {}
        self.render.show_messages(data.get("chat"), data.get("messages", []))
