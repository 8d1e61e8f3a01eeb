from __future__ import annotations

import pytest

from codex_a2a.models import (
    Artifact,
    Message,
    Role,
    Task,
    TaskArtifactUpdateEvent,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TextPart,
)
from codex_a2a.store import InMemoryTaskStore


def _message(message_id: str, text: str, role: Role = Role.AGENT) -> Message:
    return Message(message_id=message_id, role=role, parts=[TextPart(text=text)])


def _task() -> Task:
    return Task(
        id="t1",
        context_id="c1",
        status=TaskStatus(state=TaskState.SUBMITTED),
        history=[_message("u1", "hi", Role.USER)],
    )


def _chunk(text: str, *, append: bool) -> TaskArtifactUpdateEvent:
    return TaskArtifactUpdateEvent(
        task_id="t1",
        context_id="c1",
        artifact=Artifact(artifact_id="tool-cmd-output", parts=[TextPart(text=text)]),
        append=append,
    )


@pytest.mark.asyncio
async def test_status_updates_fold_into_task() -> None:
    store = InMemoryTaskStore()
    await store.apply(_task())

    reply = _message("a1", "hello")
    await store.apply(
        TaskStatusUpdateEvent(
            task_id="t1",
            context_id="c1",
            status=TaskStatus(state=TaskState.WORKING, message=reply),
            final=False,
        )
    )
    await store.apply(
        TaskStatusUpdateEvent(
            task_id="t1",
            context_id="c1",
            status=TaskStatus(state=TaskState.COMPLETED),
            final=True,
        )
    )

    task = await store.get_task("t1")
    assert task.status.state == TaskState.COMPLETED
    assert [message.message_id for message in task.history] == ["u1", "a1"]


@pytest.mark.asyncio
async def test_artifact_chunks_append_and_replace() -> None:
    store = InMemoryTaskStore()
    await store.apply(_task())

    await store.apply(_chunk("a", append=True))
    await store.apply(_chunk("b", append=True))
    task = await store.get_task("t1")
    assert [part.text for part in task.artifacts[0].parts] == ["a", "b"]

    await store.apply(_chunk("c", append=False))
    task = await store.get_task("t1")
    assert len(task.artifacts) == 1
    assert [part.text for part in task.artifacts[0].parts] == ["c"]


@pytest.mark.asyncio
async def test_history_length_and_dedup() -> None:
    store = InMemoryTaskStore()
    await store.apply(_task())
    await store.add_history("t1", _message("u2", "again", Role.USER))
    await store.add_history("t1", _message("u2", "again", Role.USER))

    full = await store.get_task("t1")
    assert len(full.history) == 2
    assert [m.message_id for m in (await store.get_task("t1", history_length=1)).history] == ["u2"]
    assert (await store.get_task("t1", history_length=0)).history is None


@pytest.mark.asyncio
async def test_unknown_task_handling() -> None:
    store = InMemoryTaskStore()
    with pytest.raises(KeyError):
        await store.get_task("missing")
    with pytest.raises(KeyError):
        await store.add_history("missing", _message("m", "x"))
    with pytest.raises(KeyError):
        await store.apply(_chunk("x", append=False))

    placeholder = await store.apply(
        TaskStatusUpdateEvent(
            task_id="t1",
            context_id="c1",
            status=TaskStatus(state=TaskState.WORKING),
            final=False,
        )
    )
    assert placeholder.id == "t1"
    assert placeholder.status.state == TaskState.WORKING


@pytest.mark.asyncio
async def test_plain_messages_are_ignored() -> None:
    store = InMemoryTaskStore()
    assert await store.apply(_message("m", "x")) is None
