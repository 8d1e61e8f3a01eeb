from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol

from .models import AgentExecutionEvent

_FINISHED = object()


class ExecutionEventBus(Protocol):
    """Ordered sink for the protocol updates of one task execution."""

    def publish(self, event: AgentExecutionEvent) -> None: ...

    async def finished(self) -> None: ...


class QueueEventBus:
    """``ExecutionEventBus`` backed by an unbounded ``asyncio.Queue``."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._finished = False

    @property
    def is_finished(self) -> bool:
        return self._finished

    def publish(self, event: AgentExecutionEvent) -> None:
        if self._finished:
            raise RuntimeError("cannot publish to a finished event bus")
        self._queue.put_nowait(event)

    async def finished(self) -> None:
        if self._finished:
            return
        self._finished = True
        await self._queue.put(_FINISHED)

    async def events(self) -> AsyncIterator[AgentExecutionEvent]:
        while True:
            item = await self._queue.get()
            if item is _FINISHED:
                return
            yield item  # type: ignore[misc]


__all__ = ["ExecutionEventBus", "QueueEventBus"]
