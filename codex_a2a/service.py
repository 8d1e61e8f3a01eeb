from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .bus import QueueEventBus
from .errors import (
    A2ARequestValidationError,
    TaskNotCancelableError,
    TaskNotFoundError,
    UnsupportedOperationError,
)
from .executor import CodexExecutor, RequestContext
from .models import (
    AgentCard,
    AgentExecutionEvent,
    Message,
    MessageSendParams,
    Role,
    Task,
    is_terminal,
)
from .store import InMemoryTaskStore, TaskStore
from .updates import TaskUpdatePublisher

logger = logging.getLogger("codex_a2a.service")

_STREAM_END = object()


@dataclass(slots=True)
class _TaskRun:
    task_id: str
    context_id: str
    bus: QueueEventBus
    first_event: asyncio.Event = field(default_factory=asyncio.Event)
    subscribers: list[asyncio.Queue[object]] = field(default_factory=list)
    execution: asyncio.Task[None] | None = None
    pump: asyncio.Task[None] | None = None


class CodexA2AService:
    """Protocol-level task operations on top of :class:`CodexExecutor`."""

    def __init__(
        self,
        executor: CodexExecutor,
        *,
        agent_card: AgentCard,
        store: TaskStore | None = None,
        cancel_timeout_s: float = 5.0,
    ) -> None:
        self._executor = executor
        self._agent_card = agent_card
        self._store = store or InMemoryTaskStore()
        self._cancel_timeout_s = cancel_timeout_s
        self._runs: dict[str, _TaskRun] = {}
        self._lock = asyncio.Lock()

    @property
    def agent_card(self) -> AgentCard:
        return self._agent_card

    @property
    def executor(self) -> CodexExecutor:
        return self._executor

    async def send_message(self, params: MessageSendParams) -> Task:
        run = await self._start_run(params)
        blocking = not (params.configuration and params.configuration.blocking is False)
        if blocking:
            await asyncio.shield(run.pump)
        else:
            await run.first_event.wait()
        history_length = params.configuration.history_length if params.configuration else None
        return await self._store.get_task(run.task_id, history_length=history_length)

    async def stream_message(self, params: MessageSendParams) -> AsyncIterator[AgentExecutionEvent]:
        if not self._agent_card.capabilities.streaming:
            raise UnsupportedOperationError("Streaming is not supported by this agent.")
        queue: asyncio.Queue[object] = asyncio.Queue()
        await self._start_run(params, subscriber=queue)
        return self._drain(queue)

    async def get_task(self, task_id: str, *, history_length: int | None = None) -> Task:
        try:
            return await self._store.get_task(task_id, history_length=history_length)
        except KeyError as exc:
            raise TaskNotFoundError(task_id) from exc

    async def cancel_task(self, task_id: str) -> Task:
        task = await self.get_task(task_id)
        if is_terminal(task.status.state):
            raise TaskNotCancelableError(task_id)
        if not await self._executor.cancel_task(task_id):
            raise TaskNotCancelableError(task_id)
        run = self._runs.get(task_id)
        if run is None or run.pump is None:
            await self._cancel_idle_task(task)
        else:
            try:
                await asyncio.wait_for(asyncio.shield(run.pump), timeout=self._cancel_timeout_s)
            except TimeoutError:
                logger.warning(
                    "task_cancel_pending",
                    extra={"task_id": task_id, "timeout_s": self._cancel_timeout_s},
                )
        return await self.get_task(task_id)

    async def stop(self) -> None:
        async with self._lock:
            runs = list(self._runs.values())
        for run in runs:
            await self._executor.cancel_task(run.task_id)
        pumps = [run.pump for run in runs if run.pump is not None]
        if not pumps:
            return
        _done, pending = await asyncio.wait(pumps, timeout=self._cancel_timeout_s)
        for run in runs:
            if run.pump in pending and run.execution is not None:
                run.execution.cancel()
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _start_run(
        self,
        params: MessageSendParams,
        *,
        subscriber: asyncio.Queue[object] | None = None,
    ) -> _TaskRun:
        task_id, context_id, existing = await self._resolve_task(params.message)
        message = self._enrich_message(params.message, task_id, context_id)
        if existing is not None:
            await self._store.add_history(task_id, message)
            existing = await self._store.get_task(task_id)
        async with self._lock:
            if task_id in self._runs:
                raise UnsupportedOperationError("Task is already running.")
            run = _TaskRun(task_id=task_id, context_id=context_id, bus=QueueEventBus())
            if subscriber is not None:
                run.subscribers.append(subscriber)
            request = RequestContext(
                task_id=task_id,
                context_id=context_id,
                user_message=message,
                task=existing,
            )
            run.pump = asyncio.create_task(self._pump(run), name=f"codex-a2a-pump-{task_id}")
            run.execution = asyncio.create_task(self._execute(request, run.bus), name=f"codex-a2a-task-{task_id}")
            self._runs[task_id] = run
            run.pump.add_done_callback(lambda _done: self._runs.pop(task_id, None))
        logger.info("task_run_started", extra={"task_id": task_id, "context_id": context_id})
        return run

    async def _execute(self, request: RequestContext, bus: QueueEventBus) -> None:
        try:
            await self._executor.execute(request, bus)
        except Exception as exc:
            logger.error("task_run_error", extra={"task_id": request.task_id, "exception": exc})
        finally:
            if not bus.is_finished:
                await bus.finished()

    async def _pump(self, run: _TaskRun) -> None:
        try:
            async for event in run.bus.events():
                await self._store.apply(event)
                run.first_event.set()
                for queue in run.subscribers:
                    queue.put_nowait(event)
        finally:
            run.first_event.set()
            for queue in run.subscribers:
                queue.put_nowait(_STREAM_END)

    async def _drain(self, queue: asyncio.Queue[object]) -> AsyncIterator[AgentExecutionEvent]:
        while True:
            item = await queue.get()
            if item is _STREAM_END:
                return
            yield item  # type: ignore[misc]

    async def _cancel_idle_task(self, task: Task) -> None:
        bus = QueueEventBus()
        TaskUpdatePublisher(bus, task.id, task.context_id).canceled()
        await bus.finished()
        async for event in bus.events():
            await self._store.apply(event)
        self._executor.cancellations.clear(task.id)
        self._executor.cancellations.finish(task.id)

    async def _resolve_task(self, message: Message) -> tuple[str, str, Task | None]:
        if message.role != Role.USER:
            raise A2ARequestValidationError("message.role must be 'user'")
        if message.task_id:
            try:
                existing = await self._store.get_task(message.task_id)
            except KeyError as exc:
                raise TaskNotFoundError(message.task_id) from exc
            if is_terminal(existing.status.state):
                raise UnsupportedOperationError("Cannot send a message to a terminal task.")
            if message.context_id and message.context_id != existing.context_id:
                raise A2ARequestValidationError("message.contextId does not match task context")
            return existing.id, existing.context_id, existing
        return str(uuid.uuid4()), message.context_id or str(uuid.uuid4()), None

    def _enrich_message(self, message: Message, task_id: str, context_id: str) -> Message:
        updates: dict[str, str] = {}
        if message.task_id is None:
            updates["task_id"] = task_id
        if message.context_id is None:
            updates["context_id"] = context_id
        if not updates:
            return message
        return message.model_copy(update=updates)


__all__ = ["CodexA2AService"]
