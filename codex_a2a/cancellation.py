from __future__ import annotations

from collections import OrderedDict


class CancellationTracker:
    """Cooperative cancellation state shared by all task executions.

    Besides the canceled set it keeps the task -> context binding fixed at first
    sight, the ids with an execution in flight, and a bounded memory of tasks
    that already published a terminal state.
    """

    def __init__(self, *, finished_capacity: int = 1024) -> None:
        if finished_capacity < 1:
            raise ValueError("finished_capacity must be >= 1")
        self._canceled: set[str] = set()
        self._contexts: dict[str, str] = {}
        self._running: set[str] = set()
        self._finished: OrderedDict[str, None] = OrderedDict()
        self._finished_capacity = finished_capacity

    def mark(self, task_id: str) -> None:
        self._canceled.add(task_id)

    def is_marked(self, task_id: str) -> bool:
        return task_id in self._canceled

    def clear(self, task_id: str) -> None:
        self._canceled.discard(task_id)

    def bind_context(self, task_id: str, context_id: str) -> None:
        existing = self._contexts.setdefault(task_id, context_id)
        if existing != context_id:
            raise ValueError(
                f"Task '{task_id}' is bound to context '{existing}', not '{context_id}'"
            )

    def context_for(self, task_id: str) -> str | None:
        return self._contexts.get(task_id)

    def begin(self, task_id: str) -> None:
        if task_id in self._running:
            raise RuntimeError(f"Task '{task_id}' is already executing")
        self._running.add(task_id)
        self._finished.pop(task_id, None)

    def end(self, task_id: str) -> None:
        self._running.discard(task_id)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def finish(self, task_id: str) -> None:
        self._contexts.pop(task_id, None)
        self._finished[task_id] = None
        self._finished.move_to_end(task_id)
        while len(self._finished) > self._finished_capacity:
            self._finished.popitem(last=False)

    def is_finished(self, task_id: str) -> bool:
        return task_id in self._finished


__all__ = ["CancellationTracker"]
