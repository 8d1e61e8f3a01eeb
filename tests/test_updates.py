from __future__ import annotations

import json
import logging
from typing import Any

import pytest
from pydantic import BaseModel

from codex_a2a.models import (
    DataPart,
    Message,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatusUpdateEvent,
    TextPart,
)
from codex_a2a.updates import CANCELED_TEXT, TaskUpdatePublisher, stringify_output, utc_iso


class _Unserializable:
    def __repr__(self) -> str:
        return "<opaque>"


class _Payload(BaseModel):
    name: str
    size: int | None = None


def test_stringify_output_handles_common_shapes() -> None:
    assert stringify_output(None) == ""
    assert stringify_output("raw text") == "raw text"
    assert stringify_output({"a": [1, 2]}) == json.dumps({"a": [1, 2]}, indent=2)
    assert json.loads(stringify_output({"item": _Payload(name="x")})) == {"item": {"name": "x"}}


def test_stringify_output_falls_back_to_str() -> None:
    value = {"handle": _Unserializable()}
    assert stringify_output(value) == str(value)


def test_stringify_output_survives_cyclic_payload() -> None:
    value: dict[str, Any] = {"name": "loop"}
    value["self"] = value

    assert stringify_output(value) == str(value)


def test_tool_update_falls_back_to_text_for_unserializable_values(bus) -> None:
    cyclic: list[Any] = []
    cyclic.append(cyclic)
    publisher = TaskUpdatePublisher(bus, "t1", "c1")

    publisher.tool_update("call-1", "mcp_tool_call", {"result": cyclic, "handle": _Unserializable(), "ok": [1]})

    data = bus.events[0].status.message.parts[0].data
    assert data["result"] == str(cyclic)
    assert data["handle"] == "<opaque>"
    assert data["ok"] == [1]


def test_utc_iso_uses_z_suffix() -> None:
    stamp = utc_iso()
    assert stamp.endswith("Z")
    assert "T" in stamp


def test_submitted_publishes_task_snapshot(bus) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")
    message = Message(message_id="m1", role=Role.USER, parts=[TextPart(text="hi")])

    publisher.submitted(message)

    (task,) = bus.events
    assert isinstance(task, Task)
    assert task.id == "t1"
    assert task.context_id == "c1"
    assert task.status.state == TaskState.SUBMITTED
    assert task.history == [message]


def test_status_metadata_carries_kind(bus) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")

    publisher.working("turn-started")
    publisher.status(TaskState.WORKING)

    first, second = bus.events
    assert first.metadata == {"codexAgent": {"kind": "turn-started"}}
    assert first.final is False
    assert second.metadata is None


def test_tool_update_wraps_request_identity(bus) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")

    publisher.tool_update("call-7", "web_search", {"status": "completed", "query": "python"})

    (event,) = bus.events
    part = event.status.message.parts[0]
    assert isinstance(part, DataPart)
    assert part.data == {
        "request": {"callId": "call-7", "name": "web_search"},
        "status": "completed",
        "query": "python",
    }
    assert event.metadata == {"codexAgent": {"kind": "tool-call-update"}}


def test_tool_output_uses_call_scoped_artifact_id(bus) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")

    publisher.tool_output("cmd-1", "chunk", append=True, last_chunk=False)

    (event,) = bus.events
    assert isinstance(event, TaskArtifactUpdateEvent)
    assert event.artifact.artifact_id == "tool-cmd-1-output"
    assert event.artifact.parts == [TextPart(text="chunk")]
    assert event.append is True
    assert event.last_chunk is False


def test_wire_shape_uses_camel_case(bus) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")
    publisher.tool_output("cmd-1", "chunk", append=False, last_chunk=True)

    payload = bus.events[0].model_dump(mode="json", by_alias=True, exclude_none=True)

    assert payload["kind"] == "artifact-update"
    assert payload["taskId"] == "t1"
    assert payload["contextId"] == "c1"
    assert payload["lastChunk"] is True
    assert payload["artifact"]["artifactId"] == "tool-cmd-1-output"


@pytest.mark.parametrize(
    ("action", "state", "text"),
    [
        (lambda publisher: publisher.completed(), TaskState.COMPLETED, None),
        (lambda publisher: publisher.failed("boom"), TaskState.FAILED, "Error: boom"),
        (lambda publisher: publisher.canceled(), TaskState.CANCELED, CANCELED_TEXT),
    ],
)
def test_terminal_updates(bus, action, state, text) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")

    action(publisher)

    (event,) = bus.events
    assert isinstance(event, TaskStatusUpdateEvent)
    assert event.final is True
    assert event.status.state == state
    assert event.metadata == {"codexAgent": {"kind": "state-change"}}
    if text is None:
        assert event.status.message is None
    else:
        assert event.status.message.parts[0].text == text
    assert publisher.terminal_state == state


def test_updates_after_terminal_are_dropped(bus, caplog) -> None:
    publisher = TaskUpdatePublisher(bus, "t1", "c1")
    publisher.failed("first")

    with caplog.at_level(logging.WARNING, logger="codex_a2a.updates"):
        publisher.completed()
        publisher.canceled()
        publisher.text_content("late")
        publisher.tool_output("x", "late", append=False, last_chunk=True)

    assert len(bus.events) == 1
    assert publisher.terminal_state == TaskState.FAILED
    warnings = [record for record in caplog.records if record.getMessage() == "update_after_terminal"]
    assert len(warnings) == 4
