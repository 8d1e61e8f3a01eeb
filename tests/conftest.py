import inspect
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Ensure repository root is on sys.path for test imports.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class FakeThread:
    """Replays a scripted event list; callables in the script run as hooks."""

    def __init__(self, script: list[Any], options: Any = None) -> None:
        self.script = script
        self.options = options
        self.prompts: list[str] = []
        self.closed = False

    async def run_streamed(self, text: str):
        self.prompts.append(text)
        try:
            for entry in self.script:
                if callable(entry):
                    result = entry()
                    if inspect.isawaitable(result):
                        await result
                    continue
                if isinstance(entry, BaseException):
                    raise entry
                yield entry
        finally:
            self.closed = True


class FakeCodex:
    def __init__(self, *scripts: list[Any]) -> None:
        self.scripts = list(scripts)
        self.threads: list[FakeThread] = []

    @property
    def started_options(self) -> list[Any]:
        return [thread.options for thread in self.threads]

    def start_thread(self, options: Any) -> FakeThread:
        script = self.scripts[len(self.threads)] if len(self.threads) < len(self.scripts) else self.scripts[-1]
        thread = FakeThread(script, options)
        self.threads.append(thread)
        return thread


class RecordingBus:
    def __init__(self) -> None:
        self.events: list[Any] = []
        self.finished_calls = 0

    def publish(self, event: Any) -> None:
        if self.finished_calls:
            raise RuntimeError("publish after finished")
        self.events.append(event)

    async def finished(self) -> None:
        self.finished_calls += 1


@pytest.fixture
def make_codex() -> Callable[..., FakeCodex]:
    return FakeCodex


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def make_bus() -> Callable[[], RecordingBus]:
    return RecordingBus
