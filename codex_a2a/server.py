"""Embeddable HTTP server exposing a Codex backend as an A2A agent."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import socket
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .agent_card import build_agent_card
from .backend import CodexCli, CodexLike
from .bindings.http import create_a2a_http_app
from .config import DEFAULT_CODEX_CONFIG, CodexConfig, ConfigOverride, ServerOptions
from .executor import CodexExecutor
from .models import AgentCard
from .service import CodexA2AService

logger = logging.getLogger("codex_a2a.server")

StatusListener = Callable[[dict[str, Any]], None]
CodexFactory = Callable[[], CodexLike | Awaitable[CodexLike]]

_WILDCARD_HOSTS = frozenset({"", "0.0.0.0", "::"})


@dataclass(slots=True)
class ServerContext:
    """What ``configure_app`` receives alongside the FastAPI app."""

    agent_card: AgentCard
    service: CodexA2AService
    executor: CodexExecutor


def bind_first_free_port(host: str, start_port: int, max_attempts: int) -> socket.socket:
    """Bind a TCP socket on the first free port at or above ``start_port``."""

    last_error: OSError | None = None
    for port in range(start_port, min(start_port + max_attempts, 65536)):
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.bind((host, port))
        except OSError as exc:
            sock.close()
            last_error = exc
            logger.debug("port_unavailable", extra={"host": host, "port": port})
            continue
        return sock
    raise OSError(f"No free port in range {start_port}-{start_port + max_attempts - 1} on {host}") from last_error


class CodexA2AServer:
    def __init__(
        self,
        *,
        options: ServerOptions | None = None,
        codex: CodexLike | None = None,
        codex_factory: CodexFactory | None = None,
        get_config: ConfigOverride | None = None,
        get_working_directory: Callable[[str], str | None] | None = None,
        default_config: CodexConfig = DEFAULT_CODEX_CONFIG,
        agent_card: Mapping[str, Any] | None = None,
        configure_app: Callable[[Any, ServerContext], None] | None = None,
    ) -> None:
        self.options = options or ServerOptions()
        self._codex = codex
        self._codex_factory = codex_factory
        self._get_config = get_config
        self._get_working_directory = get_working_directory
        self._default_config = default_config
        self._agent_card_overrides = agent_card
        self._configure_app = configure_app
        self._listeners: list[StatusListener] = []
        self._service: CodexA2AService | None = None
        self._server: Any | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._url: str | None = None
        self._port: int | None = None
        self._running = False

    def get_url(self) -> str | None:
        return self._url

    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def service(self) -> CodexA2AService | None:
        return self._service

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register ``listener`` for status payloads; returns a function that removes it."""

        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    async def start(self) -> None:
        if self._running:
            return
        import uvicorn

        codex = await self._resolve_codex()
        sock = bind_first_free_port(self.options.host, self.options.port, self.options.max_port_attempts)
        port = sock.getsockname()[1]
        host = "localhost" if self.options.host in _WILDCARD_HOSTS else self.options.host
        base_url = f"http://{host}:{port}"

        agent_card = build_agent_card(
            base_url,
            self._agent_card_overrides,
            jsonrpc_path=self.options.jsonrpc_path,
            rest_path=self.options.rest_path,
        )
        executor = CodexExecutor(
            codex=codex,
            get_config=self._get_config,
            get_working_directory=self._get_working_directory,
            default_config=self._default_config,
        )
        service = CodexA2AService(executor, agent_card=agent_card)
        app = create_a2a_http_app(service, options=self.options)
        if self._configure_app is not None:
            self._configure_app(app, ServerContext(agent_card=agent_card, service=service, executor=executor))

        config = uvicorn.Config(app, host=self.options.host, port=port, log_config=None, lifespan="on")
        server = uvicorn.Server(config)
        serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="codex-a2a-server")
        try:
            while not server.started:
                if serve_task.done():
                    break
                await asyncio.sleep(0.01)
            if serve_task.done():
                serve_task.result()
                raise RuntimeError("Server exited during startup")
        except Exception as exc:
            sock.close()
            logger.error("server_error", extra={"host": self.options.host, "port": port, "exception": exc})
            self._emit({"status": "error", "error": str(exc)})
            raise

        self._server = server
        self._serve_task = serve_task
        self._service = service
        self._port = port
        self._url = base_url
        self._running = True
        logger.info("server_started", extra={"url": base_url})
        self._emit({"status": "connected", "serverUrl": base_url})

    async def stop(self) -> None:
        if self._server is None or self._serve_task is None:
            return
        self._server.should_exit = True
        await self._serve_task
        self._server = None
        self._serve_task = None
        self._service = None
        self._url = None
        self._port = None
        self._running = False
        logger.info("server_stopped")
        self._emit({"status": "disconnected"})

    async def serve_forever(self) -> None:
        """Start the server and block until it shuts down."""

        await self.start()
        assert self._serve_task is not None
        try:
            await asyncio.shield(self._serve_task)
        finally:
            await self.stop()

    async def cancel_task(self, task_id: str) -> None:
        if self._service is None:
            return
        await self._service.cancel_task(task_id)

    async def _resolve_codex(self) -> CodexLike:
        if self._codex is not None:
            return self._codex
        if self._codex_factory is not None:
            codex = self._codex_factory()
            if inspect.isawaitable(codex):
                codex = await codex
            return codex
        return CodexCli()

    def _emit(self, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception as exc:
                logger.warning(
                    "status_listener_error",
                    extra={"status": payload.get("status"), "exception": exc},
                )


__all__ = ["CodexA2AServer", "ServerContext", "bind_first_free_port"]
