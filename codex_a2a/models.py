from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class A2ABaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
    )


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"
    REJECTED = "rejected"
    AUTH_REQUIRED = "auth-required"
    UNKNOWN = "unknown"


TERMINAL_STATES = frozenset(
    {
        TaskState.COMPLETED,
        TaskState.FAILED,
        TaskState.CANCELED,
        TaskState.REJECTED,
    }
)


def is_terminal(state: TaskState | str) -> bool:
    return TaskState(state) in TERMINAL_STATES


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"


class TextPart(A2ABaseModel):
    kind: Literal["text"] = "text"
    text: str
    metadata: dict[str, Any] | None = None


class DataPart(A2ABaseModel):
    kind: Literal["data"] = "data"
    data: dict[str, Any]
    metadata: dict[str, Any] | None = None


class FileContent(A2ABaseModel):
    uri: str | None = None
    file_bytes: str | None = Field(default=None, alias="bytes")
    mime_type: str | None = None
    name: str | None = None


class FilePart(A2ABaseModel):
    kind: Literal["file"] = "file"
    file: FileContent
    metadata: dict[str, Any] | None = None


Part = Annotated[TextPart | DataPart | FilePart, Field(discriminator="kind")]


class Message(A2ABaseModel):
    kind: Literal["message"] = "message"
    message_id: str
    role: Role
    parts: list[Part] = Field(min_length=1)
    context_id: str | None = None
    task_id: str | None = None
    metadata: dict[str, Any] | None = None
    extensions: list[str] | None = None
    reference_task_ids: list[str] | None = None


class TaskStatus(A2ABaseModel):
    state: TaskState
    message: Message | None = None
    timestamp: str | None = None


class Artifact(A2ABaseModel):
    artifact_id: str
    name: str | None = None
    description: str | None = None
    parts: list[Part] = Field(min_length=1)
    metadata: dict[str, Any] | None = None


class Task(A2ABaseModel):
    kind: Literal["task"] = "task"
    id: str
    context_id: str
    status: TaskStatus
    artifacts: list[Artifact] | None = None
    history: list[Message] | None = None
    metadata: dict[str, Any] | None = None


class TaskStatusUpdateEvent(A2ABaseModel):
    kind: Literal["status-update"] = "status-update"
    task_id: str
    context_id: str
    status: TaskStatus
    final: bool
    metadata: dict[str, Any] | None = None


class TaskArtifactUpdateEvent(A2ABaseModel):
    kind: Literal["artifact-update"] = "artifact-update"
    task_id: str
    context_id: str
    artifact: Artifact
    append: bool | None = None
    last_chunk: bool | None = None
    metadata: dict[str, Any] | None = None


AgentExecutionEvent = Task | Message | TaskStatusUpdateEvent | TaskArtifactUpdateEvent


class MessageSendConfiguration(A2ABaseModel):
    accepted_output_modes: list[str] | None = None
    history_length: int | None = None
    blocking: bool | None = None


class MessageSendParams(A2ABaseModel):
    message: Message
    configuration: MessageSendConfiguration | None = None
    metadata: dict[str, Any] | None = None


class TaskQueryParams(A2ABaseModel):
    id: str
    history_length: int | None = None
    metadata: dict[str, Any] | None = None


class TaskIdParams(A2ABaseModel):
    id: str
    metadata: dict[str, Any] | None = None


class AgentCapabilities(A2ABaseModel):
    streaming: bool | None = None
    push_notifications: bool | None = None
    state_transition_history: bool | None = None


class AgentInterface(A2ABaseModel):
    url: str
    transport: str


class AgentProvider(A2ABaseModel):
    organization: str
    url: str


class AgentSkill(A2ABaseModel):
    id: str
    name: str
    description: str
    tags: list[str] = Field(min_length=1)
    examples: list[str] | None = None
    input_modes: list[str] | None = None
    output_modes: list[str] | None = None


class AgentCard(A2ABaseModel):
    name: str
    description: str
    protocol_version: str = "0.3.0"
    version: str
    url: str
    preferred_transport: str | None = None
    provider: AgentProvider | None = None
    capabilities: AgentCapabilities
    supports_authenticated_extended_card: bool | None = None
    default_input_modes: list[str] = Field(min_length=1)
    default_output_modes: list[str] = Field(min_length=1)
    additional_interfaces: list[AgentInterface] | None = None
    skills: list[AgentSkill] = Field(min_length=1)
    documentation_url: str | None = None
    icon_url: str | None = None
