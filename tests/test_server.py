from __future__ import annotations

import asyncio
import socket
from typing import Any

import pytest

from codex_a2a.config import ServerOptions
from codex_a2a.server import CodexA2AServer, ServerContext, bind_first_free_port


class FakeServer:
    instances: list[FakeServer] = []

    def __init__(self, config) -> None:
        self.config = config
        self.started = False
        self.should_exit = False
        self.sockets: list[socket.socket] = []
        FakeServer.instances.append(self)

    async def serve(self, sockets=None) -> None:
        self.sockets = list(sockets or [])
        self.started = True
        while not self.should_exit:
            await asyncio.sleep(0.005)
        for sock in self.sockets:
            sock.close()


class FailingServer(FakeServer):
    async def serve(self, sockets=None) -> None:
        for sock in sockets or []:
            sock.close()
        raise RuntimeError("startup failed")


@pytest.fixture
def occupied_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


@pytest.fixture(autouse=True)
def fake_uvicorn(monkeypatch):
    FakeServer.instances = []
    monkeypatch.setattr("uvicorn.Server", FakeServer)


def test_bind_first_free_port_skips_taken_ports(occupied_port) -> None:
    sock = bind_first_free_port("127.0.0.1", occupied_port, 10)
    try:
        assert sock.getsockname()[1] > occupied_port
    finally:
        sock.close()


def test_bind_first_free_port_gives_up(occupied_port) -> None:
    with pytest.raises(OSError, match="No free port"):
        bind_first_free_port("127.0.0.1", occupied_port, 1)


@pytest.mark.asyncio
async def test_start_and_stop_emit_status(make_codex, occupied_port) -> None:
    contexts: list[ServerContext] = []
    server = CodexA2AServer(
        options=ServerOptions(port=occupied_port),
        codex=make_codex([]),
        agent_card={"name": "Repo Codex"},
        configure_app=lambda _app, context: contexts.append(context),
    )
    statuses: list[dict[str, Any]] = []
    server.add_status_listener(statuses.append)

    await server.start()
    await server.start()

    port = server.port
    assert port is not None and port > occupied_port
    assert server.is_running()
    assert server.get_url() == f"http://127.0.0.1:{port}"
    assert len(FakeServer.instances) == 1
    assert FakeServer.instances[0].config.port == port
    assert contexts[0].agent_card.name == "Repo Codex"
    assert contexts[0].agent_card.url == f"http://127.0.0.1:{port}/a2a/jsonrpc"
    assert server.service is contexts[0].service

    await server.stop()
    await server.stop()

    assert not server.is_running()
    assert server.get_url() is None
    assert statuses == [
        {"status": "connected", "serverUrl": f"http://127.0.0.1:{port}"},
        {"status": "disconnected"},
    ]


@pytest.mark.asyncio
async def test_wildcard_host_advertises_localhost(make_codex) -> None:
    server = CodexA2AServer(options=ServerOptions(host="0.0.0.0", port=50002), codex=make_codex([]))

    await server.start()
    try:
        assert server.get_url() == f"http://localhost:{server.port}"
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_startup_failure_reports_error(monkeypatch, make_codex) -> None:
    monkeypatch.setattr("uvicorn.Server", FailingServer)
    server = CodexA2AServer(codex=make_codex([]))
    statuses: list[dict[str, Any]] = []
    server.add_status_listener(statuses.append)

    with pytest.raises(RuntimeError, match="startup failed"):
        await server.start()

    assert not server.is_running()
    assert statuses == [{"status": "error", "error": "startup failed"}]


@pytest.mark.asyncio
async def test_codex_factory_and_listener_removal(make_codex) -> None:
    codex = make_codex([])

    async def factory():
        return codex

    server = CodexA2AServer(codex_factory=factory)
    statuses: list[dict[str, Any]] = []
    remove = server.add_status_listener(statuses.append)

    await server.start()
    remove()
    await server.stop()

    assert [status["status"] for status in statuses] == ["connected"]


@pytest.mark.asyncio
async def test_cancel_task_before_start_is_noop() -> None:
    server = CodexA2AServer()
    await server.cancel_task("anything")
    assert server.service is None
