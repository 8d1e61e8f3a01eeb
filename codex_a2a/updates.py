"""Status and artifact updates published for one task execution."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from .bus import ExecutionEventBus
from .models import (
    TERMINAL_STATES,
    Artifact,
    DataPart,
    Message,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
)

logger = logging.getLogger("codex_a2a.updates")

KIND_STATE_CHANGE = "state-change"
KIND_TURN_STARTED = "turn-started"
KIND_TURN_COMPLETED = "turn-completed"
KIND_TEXT_CONTENT = "text-content"
KIND_THOUGHT = "thought"
KIND_TOOL_CALL_UPDATE = "tool-call-update"

CANCELED_TEXT = "Task canceled."


def utc_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Mapping):
        return {key: _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_to_jsonable(item) for item in value]
    return value


def stringify_output(value: Any) -> str:
    """Render a tool payload as text; falls back to ``str`` when not JSON-able."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False)
    except (TypeError, ValueError, RecursionError):
        return str(value)


def _data_value(value: Any) -> Any:
    """JSON-able form of ``value`` for a data part, or its text when it has none."""

    try:
        converted = _to_jsonable(value)
        json.dumps(converted)
    except (TypeError, ValueError, RecursionError):
        return stringify_output(value)
    return converted


def agent_message(task_id: str, context_id: str, part: TextPart | DataPart) -> Message:
    return Message(
        message_id=str(uuid.uuid4()),
        role=Role.AGENT,
        task_id=task_id,
        context_id=context_id,
        parts=[part],
    )


class TaskUpdatePublisher:
    """Publishes updates for one task onto an ``ExecutionEventBus``.

    At most one terminal state is published; anything published after it is
    dropped and logged.
    """

    def __init__(self, bus: ExecutionEventBus, task_id: str, context_id: str) -> None:
        self._bus = bus
        self.task_id = task_id
        self.context_id = context_id
        self._terminal_state: TaskState | None = None

    @property
    def terminal_state(self) -> TaskState | None:
        return self._terminal_state

    def submitted(self, user_message: Message) -> None:
        task = Task(
            id=self.task_id,
            context_id=self.context_id,
            status=TaskStatus(state=TaskState.SUBMITTED, timestamp=utc_iso()),
            history=[user_message],
        )
        self._publish(task)

    def status(
        self,
        state: TaskState,
        *,
        final: bool = False,
        message: Message | None = None,
        kind: str | None = None,
    ) -> None:
        if self._terminal_state is not None:
            logger.warning(
                "update_after_terminal",
                extra={"task_id": self.task_id, "state": state.value, "terminal": self._terminal_state.value},
            )
            return
        if state in TERMINAL_STATES:
            self._terminal_state = state
        event = TaskStatusUpdateEvent(
            task_id=self.task_id,
            context_id=self.context_id,
            status=TaskStatus(state=state, message=message, timestamp=utc_iso()),
            final=final,
            metadata={"codexAgent": {"kind": kind}} if kind else None,
        )
        self._bus.publish(event)

    def working(self, kind: str) -> None:
        self.status(TaskState.WORKING, kind=kind)

    def text_content(self, text: str) -> None:
        message = agent_message(self.task_id, self.context_id, TextPart(text=text))
        self.status(TaskState.WORKING, message=message, kind=KIND_TEXT_CONTENT)

    def thought(self, text: str) -> None:
        message = agent_message(self.task_id, self.context_id, DataPart(data={"text": text}))
        self.status(TaskState.WORKING, message=message, kind=KIND_THOUGHT)

    def tool_update(self, call_id: str, name: str, data: Mapping[str, Any]) -> None:
        payload: dict[str, Any] = {"request": {"callId": call_id, "name": name}}
        payload.update({key: _data_value(value) for key, value in data.items()})
        message = agent_message(self.task_id, self.context_id, DataPart(data=payload))
        self.status(TaskState.WORKING, message=message, kind=KIND_TOOL_CALL_UPDATE)

    def tool_output(self, call_id: str, output: str, *, append: bool, last_chunk: bool) -> None:
        if self._terminal_state is not None:
            logger.warning(
                "update_after_terminal",
                extra={"task_id": self.task_id, "artifact": call_id, "terminal": self._terminal_state.value},
            )
            return
        event = TaskArtifactUpdateEvent(
            task_id=self.task_id,
            context_id=self.context_id,
            artifact=Artifact(artifact_id=f"tool-{call_id}-output", parts=[TextPart(text=output)]),
            append=append,
            last_chunk=last_chunk,
        )
        self._bus.publish(event)

    def completed(self) -> None:
        self.status(TaskState.COMPLETED, final=True, kind=KIND_STATE_CHANGE)

    def failed(self, error_message: str) -> None:
        message = agent_message(self.task_id, self.context_id, TextPart(text=f"Error: {error_message}"))
        self.status(TaskState.FAILED, final=True, message=message, kind=KIND_STATE_CHANGE)

    def canceled(self) -> None:
        message = agent_message(self.task_id, self.context_id, TextPart(text=CANCELED_TEXT))
        self.status(TaskState.CANCELED, final=True, message=message, kind=KIND_STATE_CHANGE)

    def _publish(self, event: Task) -> None:
        if self._terminal_state is not None:
            return
        self._bus.publish(event)


__all__ = [
    "CANCELED_TEXT",
    "KIND_STATE_CHANGE",
    "KIND_TEXT_CONTENT",
    "KIND_THOUGHT",
    "KIND_TOOL_CALL_UPDATE",
    "KIND_TURN_COMPLETED",
    "KIND_TURN_STARTED",
    "TaskUpdatePublisher",
    "agent_message",
    "stringify_output",
    "utc_iso",
]
