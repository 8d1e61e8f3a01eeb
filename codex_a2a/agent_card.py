from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .models import AgentCard

PROTOCOL_VERSION = "0.3.0"

_TEXT_MODES = ["text/plain"]

DEFAULT_SKILLS: list[dict[str, Any]] = [
    {
        "id": "code_generation",
        "name": "Code Generation",
        "description": "Generate, modify, and explain code",
        "tags": ["code", "programming", "refactor"],
        "examples": ["Refactor this function to be more readable", "Explain what this code does"],
    },
    {
        "id": "file_operations",
        "name": "File Operations",
        "description": "Create or modify files based on instructions",
        "tags": ["files", "edit", "patch"],
        "examples": ["Update the API client to add retries", "Create a new config file for the service"],
    },
    {
        "id": "shell_commands",
        "name": "Shell Commands",
        "description": "Run shell commands and report outputs",
        "tags": ["shell", "cli", "build"],
        "examples": ["Run tests and summarize failures", "Build the project and report errors"],
    },
    {
        "id": "web_search",
        "name": "Web Search",
        "description": "Search the web for relevant technical information",
        "tags": ["search", "web", "docs"],
        "examples": ["Find the latest guidance on a library", "Look up an error message"],
    },
    {
        "id": "mcp_tooling",
        "name": "MCP Tool Calls",
        "description": "Invoke MCP tools for specialized tasks",
        "tags": ["mcp", "tools", "integration"],
        "examples": ["Use an MCP tool to query internal data", "Call a custom tool to format code"],
    },
]


def _base_card(base_url: str, jsonrpc_path: str, rest_path: str) -> dict[str, Any]:
    jsonrpc_url = f"{base_url}{jsonrpc_path}"
    return {
        "name": "Codex",
        "description": "OpenAI coding agent powered by the Codex CLI",
        "protocolVersion": PROTOCOL_VERSION,
        "version": "0.1.0",
        "url": jsonrpc_url,
        "preferredTransport": "JSONRPC",
        "provider": {"organization": "OpenAI", "url": "https://openai.com"},
        "capabilities": {
            "streaming": True,
            "pushNotifications": False,
            "stateTransitionHistory": False,
        },
        "supportsAuthenticatedExtendedCard": False,
        "defaultInputModes": list(_TEXT_MODES),
        "defaultOutputModes": list(_TEXT_MODES),
        "additionalInterfaces": [
            {"url": jsonrpc_url, "transport": "JSONRPC"},
            {"url": f"{base_url}{rest_path}", "transport": "HTTP+JSON"},
        ],
        "skills": [
            {**skill, "inputModes": list(_TEXT_MODES), "outputModes": list(_TEXT_MODES)}
            for skill in DEFAULT_SKILLS
        ],
    }


def build_agent_card(
    base_url: str,
    overrides: Mapping[str, Any] | None = None,
    *,
    jsonrpc_path: str = "/a2a/jsonrpc",
    rest_path: str = "/a2a/rest",
) -> AgentCard:
    """Build the Codex agent card served at ``/.well-known/agent-card.json``.

    ``overrides`` uses the card's JSON (camelCase) field names. ``provider`` and
    ``capabilities`` merge field by field; every other key, lists included,
    replaces the default wholesale.
    """

    card = _base_card(base_url.rstrip("/"), jsonrpc_path, rest_path)
    if overrides:
        for key, value in overrides.items():
            if key in {"provider", "capabilities"} and isinstance(value, Mapping):
                card[key] = {**card[key], **value}
            else:
                card[key] = value
    return AgentCard.model_validate(card)


__all__ = ["DEFAULT_SKILLS", "PROTOCOL_VERSION", "build_agent_card"]
