"""Translate Codex thread events into A2A task updates."""

from __future__ import annotations

import contextlib
import inspect
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from .backend import CodexLike, ThreadLike, ThreadOptions
from .bus import ExecutionEventBus
from .cancellation import CancellationTracker
from .config import (
    DEFAULT_CODEX_CONFIG,
    CodexConfig,
    ConfigOverride,
    ConfigResolver,
    normalize_working_directory,
)
from .events import (
    AgentMessageItem,
    CommandExecutionItem,
    ErrorItem,
    FileChangeItem,
    ItemCompletedEvent,
    ItemStartedEvent,
    ItemUpdatedEvent,
    McpToolCallItem,
    ReasoningItem,
    ThreadEvent,
    TodoListItem,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnStartedEvent,
    WebSearchItem,
    parse_thread_event,
)
from .models import Message, Task, TextPart
from .sessions import SessionRegistry
from .updates import (
    KIND_STATE_CHANGE,
    KIND_TURN_COMPLETED,
    KIND_TURN_STARTED,
    TaskUpdatePublisher,
    stringify_output,
)

logger = logging.getLogger("codex_a2a.executor")

WEB_SEARCH_MODE = "live"


@dataclass(slots=True)
class RequestContext:
    task_id: str
    context_id: str
    user_message: Message
    task: Task | None = None


@dataclass(slots=True)
class ItemState:
    """Per-execution bookkeeping: sent text lengths and tool lifecycle tags."""

    sent_lengths: dict[str, int] = field(default_factory=dict)
    lifecycle: dict[str, str] = field(default_factory=dict)

    def delta(self, key: str, text: str) -> str:
        delta = text[self.sent_lengths.get(key, 0) :]
        if delta:
            self.sent_lengths[key] = len(text)
        return delta


def extract_text(message: Message) -> str:
    return "\n".join(part.text for part in message.parts if isinstance(part, TextPart))


def _on_text_item(
    item: AgentMessageItem | ReasoningItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    if not item.text:
        return
    delta = items.delta(item.id, item.text)
    if not delta:
        return
    if isinstance(item, ReasoningItem):
        publisher.thought(delta)
    else:
        publisher.text_content(delta)


def _on_command_execution(
    item: CommandExecutionItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    state_key = f"{item.id}:state"
    last_state = items.lifecycle.get(state_key)
    if last_state is None:
        items.lifecycle[state_key] = "started"
        publisher.tool_update(
            item.id,
            "command_execution",
            {"status": item.status, "command": item.command},
        )
    if item.aggregated_output:
        delta = items.delta(f"{item.id}:output", item.aggregated_output)
        if delta:
            publisher.tool_output(item.id, delta, append=True, last_chunk=completed)
    if completed and last_state != "completed":
        items.lifecycle[state_key] = "completed"
        publisher.tool_update(
            item.id,
            "command_execution",
            {"status": item.status, "command": item.command, "exitCode": item.exit_code},
        )


def _on_file_change(
    item: FileChangeItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    state_key = f"{item.id}:state"
    if not completed or items.lifecycle.get(state_key) == "completed":
        return
    items.lifecycle[state_key] = "completed"
    publisher.tool_output(
        item.id,
        stringify_output({"changes": item.changes}),
        append=False,
        last_chunk=True,
    )
    publisher.tool_update(item.id, "file_change", {"status": item.status, "changes": item.changes})


def _on_mcp_tool_call(
    item: McpToolCallItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    state_key = f"{item.id}:state"
    last_state = items.lifecycle.get(state_key)
    if last_state is None:
        items.lifecycle[state_key] = "started"
        publisher.tool_update(
            item.id,
            "mcp_tool_call",
            {
                "status": item.status,
                "server": item.server,
                "tool": item.tool,
                "arguments": item.arguments,
            },
        )
    if not completed or last_state == "completed":
        return
    items.lifecycle[state_key] = "completed"
    if item.error is not None:
        publisher.tool_update(item.id, "mcp_tool_call", {"status": "failed", "error": item.error})
        return
    if item.result is not None:
        publisher.tool_output(item.id, stringify_output(item.result), append=False, last_chunk=True)
    publisher.tool_update(
        item.id,
        "mcp_tool_call",
        {"status": "completed", "result": item.result, "output": item.result},
    )


def _on_web_search(
    item: WebSearchItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    publisher.tool_update(item.id, "web_search", {"status": "completed", "query": item.query})


def _on_todo_list(
    item: TodoListItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    publisher.tool_output(item.id, stringify_output({"items": item.items}), append=False, last_chunk=True)
    publisher.tool_update(item.id, "todo_list", {"status": "updated", "items": item.items})


def _on_error_item(
    item: ErrorItem,
    completed: bool,
    publisher: TaskUpdatePublisher,
    items: ItemState,
) -> None:
    publisher.text_content(f"Error: {item.message}")


ItemHandler = Callable[[Any, bool, TaskUpdatePublisher, ItemState], None]

_ITEM_HANDLERS: dict[str, ItemHandler] = {
    "agent_message": _on_text_item,
    "reasoning": _on_text_item,
    "command_execution": _on_command_execution,
    "file_change": _on_file_change,
    "mcp_tool_call": _on_mcp_tool_call,
    "web_search": _on_web_search,
    "todo_list": _on_todo_list,
    "error": _on_error_item,
}


@contextlib.asynccontextmanager
async def _closing(stream: AsyncIterator[Any]):
    try:
        yield stream
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


class CodexExecutor:
    """Runs A2A tasks on Codex threads, one thread per context and working directory."""

    def __init__(
        self,
        *,
        codex: CodexLike,
        get_config: ConfigOverride | None = None,
        get_working_directory: Callable[[str], str | None] | None = None,
        default_config: CodexConfig = DEFAULT_CODEX_CONFIG,
        default_working_directory: str | None = None,
        sessions: SessionRegistry[ThreadLike] | None = None,
        cancellations: CancellationTracker | None = None,
    ) -> None:
        self._codex = codex
        self._config = ConfigResolver(default=default_config, override=get_config)
        self._get_working_directory = get_working_directory
        self._default_working_directory = default_working_directory
        self._sessions: SessionRegistry[ThreadLike] = sessions or SessionRegistry()
        self._cancellations = cancellations or CancellationTracker()

    @property
    def sessions(self) -> SessionRegistry[ThreadLike]:
        return self._sessions

    @property
    def cancellations(self) -> CancellationTracker:
        return self._cancellations

    async def execute(self, context: RequestContext, bus: ExecutionEventBus) -> None:
        task_id = context.task_id
        publisher = TaskUpdatePublisher(bus, task_id, context.context_id)
        try:
            self._cancellations.bind_context(task_id, context.context_id)
            self._cancellations.begin(task_id)
        except (ValueError, RuntimeError) as exc:
            # The binding and running state belong to another execution; leave them alone.
            logger.error(
                "execution_rejected",
                extra={"task_id": task_id, "context_id": context.context_id, "exception": exc},
            )
            publisher.failed(str(exc))
            await bus.finished()
            raise
        try:
            await self._run(context, publisher)
        except Exception as exc:
            logger.error(
                "execution_failed",
                extra={"task_id": task_id, "context_id": context.context_id, "exception": exc},
            )
            if self._cancellations.is_marked(task_id):
                publisher.canceled()
            else:
                publisher.failed(str(exc) or type(exc).__name__)
        finally:
            self._cancellations.end(task_id)
            if publisher.terminal_state is not None:
                self._cancellations.clear(task_id)
                self._cancellations.finish(task_id)
                logger.info(
                    "task_finished",
                    extra={"task_id": task_id, "state": publisher.terminal_state.value},
                )
                await bus.finished()

    async def cancel_task(self, task_id: str) -> bool:
        """Request cooperative cancellation of ``task_id``.

        Returns ``False`` when the task already published a terminal state; such
        a task is not moved to canceled, so a task never gets a second terminal
        state even though a late cancel is otherwise always honored. In
        every other case the execution for the task (running now or started
        later) publishes exactly one canceled update and finishes its bus.
        """

        running = self._cancellations.is_running(task_id)
        if not running and self._cancellations.is_finished(task_id):
            self._cancellations.clear(task_id)
            logger.info("task_cancel_ignored", extra={"task_id": task_id, "reason": "finished"})
            return False
        self._cancellations.mark(task_id)
        logger.info("task_cancel_requested", extra={"task_id": task_id, "running": running})
        return True

    def resolve_working_directory(self, context_id: str, config: CodexConfig) -> str | None:
        override = None
        if self._get_working_directory is not None:
            override = normalize_working_directory(self._get_working_directory(context_id))
        return override or normalize_working_directory(config.working_directory)

    async def _run(self, context: RequestContext, publisher: TaskUpdatePublisher) -> None:
        task_id, context_id = context.task_id, context.context_id
        if context.task is None:
            publisher.submitted(context.user_message)
        publisher.working(KIND_STATE_CHANGE)

        if self._cancellations.is_marked(task_id):
            publisher.canceled()
            return

        text = extract_text(context.user_message)
        if not text:
            publisher.failed("No text content")
            return

        config = self._config.resolve(context_id)
        working_directory = self.resolve_working_directory(context_id, config)
        binding_key = f"{context_id}:{working_directory or self._default_directory()}"
        thread = await self._sessions.get_or_create(
            context_id,
            binding_key,
            lambda: self._start_thread(context_id, config, working_directory),
        )

        stream = thread.run_streamed(text)
        if inspect.isawaitable(stream):
            stream = await stream
        items = ItemState()
        async with _closing(stream):
            async for raw_event in stream:
                if self._cancellations.is_marked(task_id):
                    publisher.canceled()
                    return
                event = parse_thread_event(raw_event)
                logger.debug("codex_event", extra={"task_id": task_id, "event_type": event.type})
                if not self._dispatch(event, publisher, items):
                    return

        if self._cancellations.is_marked(task_id):
            publisher.canceled()
            return
        publisher.completed()

    def _dispatch(self, event: ThreadEvent, publisher: TaskUpdatePublisher, items: ItemState) -> bool:
        """Publish the updates for one event; ``False`` once a terminal state was published."""

        if isinstance(event, TurnStartedEvent):
            publisher.working(KIND_TURN_STARTED)
            return True
        if isinstance(event, TurnCompletedEvent):
            publisher.tool_output(
                "turn-usage",
                stringify_output({"usage": event.usage}),
                append=False,
                last_chunk=True,
            )
            publisher.working(KIND_TURN_COMPLETED)
            return True
        if isinstance(event, TurnFailedEvent):
            publisher.failed(event.error.message)
            return False
        if isinstance(event, ItemStartedEvent | ItemUpdatedEvent | ItemCompletedEvent):
            handler = _ITEM_HANDLERS.get(event.item.type)
            if handler is None:
                logger.debug("codex_item_ignored", extra={"item_type": event.item.type})
                return True
            handler(event.item, isinstance(event, ItemCompletedEvent), publisher, items)
            return publisher.terminal_state is None
        logger.debug("codex_event_ignored", extra={"event_type": event.type})
        return True

    def _start_thread(self, context_id: str, config: CodexConfig, working_directory: str | None) -> Any:
        options = ThreadOptions(
            model=config.model,
            sandbox_mode=config.sandbox_mode,
            working_directory=working_directory,
            skip_git_repo_check=True,
            network_access_enabled=config.network_access,
            web_search_enabled=config.web_search_enabled,
            web_search_mode=WEB_SEARCH_MODE,
            approval_policy=config.approval_policy,
            model_reasoning_effort=config.model_reasoning_effort,
            writable_roots=config.writable_roots,
            max_output_tokens=config.max_tokens,
        )
        logger.info(
            "thread_started",
            extra={
                "context_id": context_id,
                "working_directory": working_directory or self._default_directory(),
                "sandbox_mode": config.sandbox_mode.value,
                "network_access": config.network_access,
                "web_search_enabled": config.web_search_enabled,
            },
        )
        return self._codex.start_thread(options)

    def _default_directory(self) -> str:
        return self._default_working_directory or os.getcwd()


__all__ = ["CodexExecutor", "ItemState", "RequestContext", "extract_text"]
