"""Codex runtime surface consumed by the executor, plus a CLI-backed implementation."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from .config import ApprovalPolicy, ReasoningEffort, SandboxMode
from .errors import CodexExecError
from .events import ThreadEvent, ThreadStartedEvent, parse_thread_event

logger = logging.getLogger("codex_a2a.backend")

_STREAM_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL = 4000


@dataclass(frozen=True, slots=True)
class ThreadOptions:
    model: str | None = None
    sandbox_mode: SandboxMode | None = None
    working_directory: str | None = None
    skip_git_repo_check: bool = False
    network_access_enabled: bool | None = None
    web_search_enabled: bool | None = None
    web_search_mode: str | None = None
    approval_policy: ApprovalPolicy | None = None
    model_reasoning_effort: ReasoningEffort | None = None
    writable_roots: tuple[str, ...] = ()
    max_output_tokens: int | None = None


class ThreadLike(Protocol):
    def run_streamed(self, text: str) -> AsyncIterator[ThreadEvent | Mapping[str, Any]]: ...


class CodexLike(Protocol):
    def start_thread(self, options: ThreadOptions) -> ThreadLike: ...


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def build_exec_args(options: ThreadOptions, thread_id: str | None = None) -> list[str]:
    """Return the ``codex`` argument vector for one streamed turn."""

    args = ["exec", "--experimental-json"]
    if options.model:
        args += ["--model", options.model]
    if options.sandbox_mode is not None:
        args += ["--sandbox", SandboxMode(options.sandbox_mode).value]
    if options.working_directory:
        args += ["--cd", options.working_directory]
    if options.skip_git_repo_check:
        args.append("--skip-git-repo-check")

    overrides: list[str] = []
    if options.model_reasoning_effort is not None:
        overrides.append(f'model_reasoning_effort="{ReasoningEffort(options.model_reasoning_effort).value}"')
    if options.network_access_enabled is not None:
        overrides.append(f"sandbox_workspace_write.network_access={_toml_bool(options.network_access_enabled)}")
    if options.writable_roots:
        overrides.append(f"sandbox_workspace_write.writable_roots={json.dumps(list(options.writable_roots))}")
    if options.web_search_enabled is not None:
        overrides.append(f"features.web_search_request={_toml_bool(options.web_search_enabled)}")
        if options.web_search_enabled and options.web_search_mode:
            overrides.append(f'web_search="{options.web_search_mode}"')
    if options.approval_policy is not None:
        overrides.append(f'approval_policy="{ApprovalPolicy(options.approval_policy).value}"')
    if options.max_output_tokens is not None:
        overrides.append(f"model_max_output_tokens={options.max_output_tokens}")
    for override in overrides:
        args += ["--config", override]

    if thread_id:
        args += ["resume", thread_id]
    return args


def parse_event_line(line: str) -> ThreadEvent | None:
    stripped = line.strip()
    if not stripped:
        return None
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise CodexExecError(f"Failed to parse Codex event: {stripped[:200]}") from exc
    return parse_thread_event(payload)


def default_codex_env() -> dict[str, str]:
    env = dict(os.environ)
    if not env.get("PATH"):
        env["PATH"] = "/usr/local/bin:/usr/bin:/bin"
    return env


class CodexThread:
    """One Codex conversation; later turns resume the thread id seen on the feed."""

    def __init__(
        self,
        options: ThreadOptions,
        *,
        executable: str = "codex",
        env: Mapping[str, str] | None = None,
        base_args: Sequence[str] = (),
        thread_id: str | None = None,
    ) -> None:
        self.options = options
        self._executable = executable
        self._env = dict(env) if env is not None else default_codex_env()
        self._base_args = list(base_args)
        self._thread_id = thread_id

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    async def run_streamed(self, text: str) -> AsyncIterator[ThreadEvent]:
        args = [*self._base_args, *build_exec_args(self.options, self._thread_id)]
        logger.debug("codex_exec_spawn", extra={"executable": self._executable, "argv": args})
        process = await asyncio.create_subprocess_exec(
            self._executable,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env,
            limit=_STREAM_LIMIT,
        )
        assert process.stdin is not None and process.stdout is not None and process.stderr is not None
        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            process.stdin.write(text.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
            async for raw in process.stdout:
                event = parse_event_line(raw.decode("utf-8", errors="replace"))
                if event is None:
                    continue
                if isinstance(event, ThreadStartedEvent):
                    self._thread_id = event.thread_id
                yield event
            exit_code = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            if exit_code != 0:
                raise CodexExecError(
                    f"Codex exec exited with code {exit_code}: {stderr[-_STDERR_TAIL:].strip()}",
                    exit_code=exit_code,
                    stderr=stderr,
                )
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stderr_task


class CodexCli:
    """``CodexLike`` implementation that drives the ``codex`` executable."""

    def __init__(
        self,
        *,
        executable: str = "codex",
        env: Mapping[str, str] | None = None,
        base_args: Sequence[str] = (),
    ) -> None:
        self.executable = executable
        self.env = dict(env) if env is not None else None
        self.base_args = tuple(base_args)

    def start_thread(self, options: ThreadOptions) -> CodexThread:
        return CodexThread(options, executable=self.executable, env=self.env, base_args=self.base_args)

    def resume_thread(self, thread_id: str, options: ThreadOptions) -> CodexThread:
        return CodexThread(
            options,
            executable=self.executable,
            env=self.env,
            base_args=self.base_args,
            thread_id=thread_id,
        )


__all__ = [
    "CodexCli",
    "CodexLike",
    "CodexThread",
    "ThreadLike",
    "ThreadOptions",
    "build_exec_args",
    "default_codex_env",
    "parse_event_line",
]
