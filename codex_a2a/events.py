"""Typed models for the Codex ``exec --experimental-json`` event feed."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator


class CodexModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class AgentMessageItem(CodexModel):
    id: str
    type: Literal["agent_message"] = "agent_message"
    text: str = ""


class ReasoningItem(CodexModel):
    id: str
    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class CommandExecutionItem(CodexModel):
    id: str
    type: Literal["command_execution"] = "command_execution"
    command: str = ""
    aggregated_output: str = ""
    exit_code: int | None = None
    status: str = "in_progress"


class FileUpdateChange(CodexModel):
    path: str
    kind: str


class FileChangeItem(CodexModel):
    id: str
    type: Literal["file_change"] = "file_change"
    changes: list[FileUpdateChange] = []
    status: str = "completed"


class McpToolCallError(CodexModel):
    message: str


class McpToolCallItem(CodexModel):
    id: str
    type: Literal["mcp_tool_call"] = "mcp_tool_call"
    server: str = ""
    tool: str = ""
    arguments: Any = None
    result: Any = None
    error: McpToolCallError | None = None
    status: str = "in_progress"


class WebSearchItem(CodexModel):
    id: str
    type: Literal["web_search"] = "web_search"
    query: str = ""


class TodoEntry(CodexModel):
    text: str
    completed: bool = False


class TodoListItem(CodexModel):
    id: str
    type: Literal["todo_list"] = "todo_list"
    items: list[TodoEntry] = []


class ErrorItem(CodexModel):
    id: str
    type: Literal["error"] = "error"
    message: str = ""


class UnknownItem(CodexModel):
    id: str = ""
    type: str = "unknown"


ThreadItem = (
    AgentMessageItem
    | ReasoningItem
    | CommandExecutionItem
    | FileChangeItem
    | McpToolCallItem
    | WebSearchItem
    | TodoListItem
    | ErrorItem
    | UnknownItem
)

_ITEM_TYPES: dict[str, type[CodexModel]] = {
    "agent_message": AgentMessageItem,
    "reasoning": ReasoningItem,
    "command_execution": CommandExecutionItem,
    "file_change": FileChangeItem,
    "mcp_tool_call": McpToolCallItem,
    "web_search": WebSearchItem,
    "todo_list": TodoListItem,
    "error": ErrorItem,
}


def parse_thread_item(raw: Any) -> ThreadItem:
    if isinstance(raw, CodexModel):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, Mapping):
        raise TypeError(f"thread item must be a mapping, got {type(raw).__name__}")
    model = _ITEM_TYPES.get(str(raw.get("type")), UnknownItem)
    return model.model_validate(dict(raw))  # type: ignore[return-value]


class Usage(CodexModel):
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0


class ThreadError(CodexModel):
    message: str


class ThreadStartedEvent(CodexModel):
    type: Literal["thread.started"] = "thread.started"
    thread_id: str


class TurnStartedEvent(CodexModel):
    type: Literal["turn.started"] = "turn.started"


class TurnCompletedEvent(CodexModel):
    type: Literal["turn.completed"] = "turn.completed"
    usage: Usage | None = None


class TurnFailedEvent(CodexModel):
    type: Literal["turn.failed"] = "turn.failed"
    error: ThreadError


class _ItemEvent(CodexModel):
    item: ThreadItem

    @field_validator("item", mode="before")
    @classmethod
    def _parse_item(cls, value: Any) -> ThreadItem:
        return parse_thread_item(value)


class ItemStartedEvent(_ItemEvent):
    type: Literal["item.started"] = "item.started"


class ItemUpdatedEvent(_ItemEvent):
    type: Literal["item.updated"] = "item.updated"


class ItemCompletedEvent(_ItemEvent):
    type: Literal["item.completed"] = "item.completed"


class ThreadErrorEvent(CodexModel):
    type: Literal["error"] = "error"
    message: str = ""


class UnknownEvent(CodexModel):
    type: str = "unknown"


ItemEvent = ItemStartedEvent | ItemUpdatedEvent | ItemCompletedEvent

ThreadEvent = (
    ThreadStartedEvent
    | TurnStartedEvent
    | TurnCompletedEvent
    | TurnFailedEvent
    | ItemStartedEvent
    | ItemUpdatedEvent
    | ItemCompletedEvent
    | ThreadErrorEvent
    | UnknownEvent
)

_EVENT_TYPES: dict[str, type[CodexModel]] = {
    "thread.started": ThreadStartedEvent,
    "turn.started": TurnStartedEvent,
    "turn.completed": TurnCompletedEvent,
    "turn.failed": TurnFailedEvent,
    "item.started": ItemStartedEvent,
    "item.updated": ItemUpdatedEvent,
    "item.completed": ItemCompletedEvent,
    "error": ThreadErrorEvent,
}


def parse_thread_event(raw: Any) -> ThreadEvent:
    """Validate one raw event (a decoded JSONL line) into its typed model.

    Already-typed events are returned unchanged; unrecognised event types become
    :class:`UnknownEvent` so that callers can skip them explicitly.
    """

    if isinstance(raw, CodexModel):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, Mapping):
        raise TypeError(f"thread event must be a mapping, got {type(raw).__name__}")
    model = _EVENT_TYPES.get(str(raw.get("type")), UnknownEvent)
    return model.model_validate(dict(raw))  # type: ignore[return-value]


__all__ = [
    "AgentMessageItem",
    "CommandExecutionItem",
    "ErrorItem",
    "FileChangeItem",
    "FileUpdateChange",
    "ItemCompletedEvent",
    "ItemEvent",
    "ItemStartedEvent",
    "ItemUpdatedEvent",
    "McpToolCallError",
    "McpToolCallItem",
    "ReasoningItem",
    "ThreadError",
    "ThreadErrorEvent",
    "ThreadEvent",
    "ThreadItem",
    "ThreadStartedEvent",
    "TodoEntry",
    "TodoListItem",
    "TurnCompletedEvent",
    "TurnFailedEvent",
    "TurnStartedEvent",
    "UnknownEvent",
    "UnknownItem",
    "Usage",
    "WebSearchItem",
    "parse_thread_event",
    "parse_thread_item",
]
