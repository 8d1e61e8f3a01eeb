from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from .models import (
    AgentExecutionEvent,
    Artifact,
    Message,
    Task,
    TaskArtifactUpdateEvent,
    TaskStatusUpdateEvent,
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _apply_history_length(task: Task, history_length: int | None) -> Task:
    if history_length is None:
        return task
    history = list(task.history or [])
    if history_length <= 0:
        return task.model_copy(update={"history": None}, deep=True)
    return task.model_copy(update={"history": history[-history_length:]}, deep=True)


def _merge_artifact(artifacts: list[Artifact], event: TaskArtifactUpdateEvent) -> list[Artifact]:
    artifact = event.artifact
    merged = list(artifacts)
    for idx, existing in enumerate(merged):
        if existing.artifact_id != artifact.artifact_id:
            continue
        if event.append:
            combined_parts = list(existing.parts) + list(artifact.parts)
            merged[idx] = existing.model_copy(update={"parts": combined_parts}, deep=True)
        else:
            merged[idx] = artifact
        return merged
    merged.append(artifact)
    return merged


def _append_history(task: Task, message: Message) -> list[Message]:
    history = list(task.history or [])
    if all(existing.message_id != message.message_id for existing in history):
        history.append(message)
    return history


@dataclass(slots=True)
class StoredTask:
    task: Task
    created_at: datetime
    updated_at: datetime


class TaskStore(Protocol):
    async def save(self, task: Task) -> Task: ...

    async def add_history(self, task_id: str, message: Message) -> None: ...

    async def apply(self, event: AgentExecutionEvent) -> Task | None: ...

    async def get_task(self, task_id: str, history_length: int | None = None) -> Task: ...


class InMemoryTaskStore:
    """Task records built by folding execution events, kept in process memory."""

    def __init__(self) -> None:
        self._tasks: dict[str, StoredTask] = {}
        self._lock = asyncio.Lock()

    async def save(self, task: Task) -> Task:
        now = _utc_now()
        async with self._lock:
            stored = self._tasks.get(task.id)
            if stored is None:
                self._tasks[task.id] = StoredTask(task=task, created_at=now, updated_at=now)
            else:
                stored.task = task
                stored.updated_at = now
        return task.model_copy(deep=True)

    async def add_history(self, task_id: str, message: Message) -> None:
        async with self._lock:
            stored = self._tasks.get(task_id)
            if stored is None:
                raise KeyError(task_id)
            history = _append_history(stored.task, message)
            stored.task = stored.task.model_copy(update={"history": history}, deep=True)
            stored.updated_at = _utc_now()

    async def apply(self, event: AgentExecutionEvent) -> Task | None:
        """Fold one published event into its task record.

        Plain messages carry no task state and are ignored.
        """

        if isinstance(event, Task):
            return await self.save(event)
        if not isinstance(event, TaskStatusUpdateEvent | TaskArtifactUpdateEvent):
            return None
        now = _utc_now()
        async with self._lock:
            stored = self._tasks.get(event.task_id)
            if stored is None:
                if not isinstance(event, TaskStatusUpdateEvent):
                    raise KeyError(event.task_id)
                placeholder = Task(id=event.task_id, context_id=event.context_id, status=event.status)
                stored = StoredTask(task=placeholder, created_at=now, updated_at=now)
                self._tasks[event.task_id] = stored
            task = stored.task
            if isinstance(event, TaskStatusUpdateEvent):
                updates: dict[str, object] = {"status": event.status}
                if event.status.message is not None:
                    updates["history"] = _append_history(task, event.status.message)
            else:
                updates = {"artifacts": _merge_artifact(list(task.artifacts or []), event)}
            stored.task = task.model_copy(update=updates, deep=True)
            stored.updated_at = now
            return stored.task.model_copy(deep=True)

    async def get_task(self, task_id: str, history_length: int | None = None) -> Task:
        async with self._lock:
            stored = self._tasks.get(task_id)
            if stored is None:
                raise KeyError(task_id)
            task = stored.task.model_copy(deep=True)
        return _apply_history_length(task, history_length)


__all__ = ["InMemoryTaskStore", "StoredTask", "TaskStore"]
