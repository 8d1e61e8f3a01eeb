from __future__ import annotations

from click.testing import CliRunner

from codex_a2a.cli import app
from codex_a2a.config import ApprovalPolicy, ReasoningEffort, SandboxMode


class FakeServer:
    calls: list[dict] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.listeners = []
        FakeServer.calls.append(kwargs)

    def add_status_listener(self, listener):
        self.listeners.append(listener)
        return lambda: None

    async def serve_forever(self) -> None:
        for listener in self.listeners:
            listener({"status": "connected", "serverUrl": f"http://localhost:{self.kwargs['options'].port}"})


def _invoke(monkeypatch, args, env=None):
    FakeServer.calls = []
    monkeypatch.setattr("codex_a2a.cli.CodexA2AServer", FakeServer)
    return CliRunner().invoke(app, ["serve", *args], env=env)


def test_serve_builds_server_from_options(monkeypatch) -> None:
    result = _invoke(
        monkeypatch,
        [
            "--host",
            "0.0.0.0",
            "--port",
            "6100",
            "--working-directory",
            "/repo",
            "--sandbox",
            "read-only",
            "--approval-policy",
            "never",
            "--model",
            "gpt-5-codex",
            "--reasoning-effort",
            "high",
            "--no-network",
            "--no-web-search",
            "--codex-path",
            "/opt/bin/codex",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "http://localhost:6100" in result.output
    (kwargs,) = FakeServer.calls
    assert kwargs["options"].host == "0.0.0.0"
    assert kwargs["options"].port == 6100
    assert kwargs["codex"].executable == "/opt/bin/codex"
    config = kwargs["default_config"]
    assert config.sandbox_mode is SandboxMode.READ_ONLY
    assert config.approval_policy is ApprovalPolicy.NEVER
    assert config.model_reasoning_effort is ReasoningEffort.HIGH
    assert config.model == "gpt-5-codex"
    assert config.network_access is False
    assert config.web_search_enabled is False
    assert config.working_directory == "/repo"


def test_serve_defaults(monkeypatch) -> None:
    result = _invoke(monkeypatch, [])

    assert result.exit_code == 0, result.output
    (kwargs,) = FakeServer.calls
    assert kwargs["options"].port == 50002
    assert kwargs["options"].host == "127.0.0.1"
    config = kwargs["default_config"]
    assert config.sandbox_mode is SandboxMode.WORKSPACE_WRITE
    assert config.network_access is True
    assert config.working_directory == ""


def test_serve_reads_environment(monkeypatch) -> None:
    result = _invoke(monkeypatch, [], env={"CODEX_A2A_PORT": "7001", "CODEX_A2A_MODEL": "o4-mini"})

    assert result.exit_code == 0, result.output
    (kwargs,) = FakeServer.calls
    assert kwargs["options"].port == 7001
    assert kwargs["default_config"].model == "o4-mini"


def test_serve_rejects_bad_choices(monkeypatch) -> None:
    result = _invoke(monkeypatch, ["--sandbox", "everything"])

    assert result.exit_code == 2
    assert FakeServer.calls == []


def test_serve_rejects_out_of_range_port(monkeypatch) -> None:
    result = _invoke(monkeypatch, ["--port", "70000"])

    assert result.exit_code == 2
    assert FakeServer.calls == []
