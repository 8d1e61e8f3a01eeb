"""codex-a2a command-line interface."""

from __future__ import annotations

import asyncio
import logging

import click

from .backend import CodexCli
from .config import (
    DEFAULT_CODEX_CONFIG,
    ApprovalPolicy,
    CodexConfig,
    ReasoningEffort,
    SandboxMode,
    ServerOptions,
)
from .server import CodexA2AServer


def _choices(enum_type) -> click.Choice:
    return click.Choice([item.value for item in enum_type])


def _announce(payload: dict) -> None:
    if payload.get("status") == "connected":
        click.echo(f"✓ Serving Codex over A2A at {payload['serverUrl']}")


@click.group()
@click.version_option(package_name="codex-a2a")
def app() -> None:
    """codex-a2a - serve the Codex agent over the A2A protocol."""


@app.command()
@click.option("--host", default="127.0.0.1", show_default=True, envvar="CODEX_A2A_HOST", help="Interface to bind.")
@click.option(
    "--port",
    default=50002,
    show_default=True,
    type=int,
    envvar="CODEX_A2A_PORT",
    help="First port to try; the next free port is used when it is taken.",
)
@click.option(
    "--working-directory",
    "-C",
    type=click.Path(file_okay=False),
    envvar="CODEX_A2A_WORKING_DIRECTORY",
    help="Directory Codex runs in. Defaults to the current directory.",
)
@click.option(
    "--sandbox",
    type=_choices(SandboxMode),
    default=DEFAULT_CODEX_CONFIG.sandbox_mode.value,
    show_default=True,
    envvar="CODEX_A2A_SANDBOX",
)
@click.option(
    "--approval-policy",
    type=_choices(ApprovalPolicy),
    default=DEFAULT_CODEX_CONFIG.approval_policy.value,
    show_default=True,
    envvar="CODEX_A2A_APPROVAL_POLICY",
)
@click.option("--model", envvar="CODEX_A2A_MODEL", help="Model name passed to codex.")
@click.option(
    "--reasoning-effort",
    type=_choices(ReasoningEffort),
    default=DEFAULT_CODEX_CONFIG.model_reasoning_effort.value,
    show_default=True,
    envvar="CODEX_A2A_REASONING_EFFORT",
)
@click.option("--no-network", is_flag=True, help="Disable network access inside the sandbox.")
@click.option("--no-web-search", is_flag=True, help="Disable Codex web search.")
@click.option(
    "--codex-path",
    default="codex",
    show_default=True,
    envvar="CODEX_A2A_CODEX_PATH",
    help="Path to the codex executable.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    envvar="CODEX_A2A_LOG_LEVEL",
)
def serve(
    host: str,
    port: int,
    working_directory: str | None,
    sandbox: str,
    approval_policy: str,
    model: str | None,
    reasoning_effort: str,
    no_network: bool,
    no_web_search: bool,
    codex_path: str,
    log_level: str,
) -> None:
    """Run the A2A server until interrupted."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        options = ServerOptions(host=host, port=port)
        config = CodexConfig(
            model=model,
            sandbox_mode=SandboxMode(sandbox),
            approval_policy=ApprovalPolicy(approval_policy),
            model_reasoning_effort=ReasoningEffort(reasoning_effort),
            network_access=not no_network,
            web_search_enabled=not no_web_search,
            working_directory=working_directory or "",
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    server = CodexA2AServer(
        options=options,
        codex=CodexCli(executable=codex_path),
        default_config=config,
    )
    server.add_status_listener(_announce)
    try:
        asyncio.run(server.serve_forever())
    except OSError as exc:
        click.echo(f"✗ {exc}", err=True)
        raise SystemExit(1) from exc


__all__ = ["app", "serve"]
