"""Context-to-thread affinity for Codex sessions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger("codex_a2a.sessions")

SessionT = TypeVar("SessionT")

SessionFactory = Callable[[], SessionT | Awaitable[SessionT]]


@dataclass(slots=True)
class SessionBinding(Generic[SessionT]):
    session: SessionT
    binding_key: str


class SessionRegistry(Generic[SessionT]):
    """Maps a context id to its live session plus the key it was bound with.

    A stale binding key causes the session to be replaced. The previous session
    is dropped from the registry without any release call.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, SessionBinding[SessionT]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._bindings

    async def get_or_create(
        self,
        context_id: str,
        binding_key: str,
        factory: SessionFactory[SessionT],
    ) -> SessionT:
        async with self._context_lock(context_id):
            binding = self._bindings.get(context_id)
            if binding is not None and binding.binding_key == binding_key:
                return binding.session
            created = factory()
            if inspect.isawaitable(created):
                created = await created
            session: SessionT = created  # type: ignore[assignment]
            self._bindings[context_id] = SessionBinding(session=session, binding_key=binding_key)
            if binding is None:
                logger.debug(
                    "session_created",
                    extra={"context_id": context_id, "binding_key": binding_key},
                )
            else:
                logger.info(
                    "session_replaced",
                    extra={
                        "context_id": context_id,
                        "binding_key": binding_key,
                        "previous_binding_key": binding.binding_key,
                    },
                )
            return session

    def get(self, context_id: str) -> SessionT | None:
        binding = self._bindings.get(context_id)
        return binding.session if binding is not None else None

    def binding_key(self, context_id: str) -> str | None:
        binding = self._bindings.get(context_id)
        return binding.binding_key if binding is not None else None

    async def drop(self, context_id: str) -> SessionT | None:
        async with self._context_lock(context_id):
            binding = self._bindings.pop(context_id, None)
        return binding.session if binding is not None else None

    @asynccontextmanager
    async def _context_lock(self, context_id: str) -> AsyncIterator[None]:
        # Locks live only while some caller holds or waits on them.
        lock = self._locks.setdefault(context_id, asyncio.Lock())
        self._lock_users[context_id] = self._lock_users.get(context_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[context_id] - 1
            if remaining:
                self._lock_users[context_id] = remaining
            else:
                del self._lock_users[context_id]
                del self._locks[context_id]


__all__ = ["SessionBinding", "SessionFactory", "SessionRegistry"]
