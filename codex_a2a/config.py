from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any


class SandboxMode(str, Enum):
    READ_ONLY = "read-only"
    WORKSPACE_WRITE = "workspace-write"
    FULL_ACCESS = "danger-full-access"


class ApprovalPolicy(str, Enum):
    UNTRUSTED = "untrusted"
    ON_FAILURE = "on-failure"
    ON_REQUEST = "on-request"
    NEVER = "never"


class ReasoningEffort(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SUPPORTED_CONTENT_TYPES = ("application/a2a+json", "application/json")

_ENUM_FIELDS: dict[str, type[Enum]] = {
    "sandbox_mode": SandboxMode,
    "approval_policy": ApprovalPolicy,
    "model_reasoning_effort": ReasoningEffort,
}


@dataclass(frozen=True, slots=True)
class CodexConfig:
    model: str | None = None
    max_tokens: int | None = None
    sandbox_mode: SandboxMode = SandboxMode.WORKSPACE_WRITE
    writable_roots: tuple[str, ...] = ()
    network_access: bool = True
    approval_policy: ApprovalPolicy = ApprovalPolicy.ON_FAILURE
    web_search_enabled: bool = True
    model_reasoning_effort: ReasoningEffort = ReasoningEffort.MEDIUM
    working_directory: str = ""

    def __post_init__(self) -> None:
        for name, enum_type in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                object.__setattr__(self, name, enum_type(value))
        if not isinstance(self.writable_roots, tuple):
            object.__setattr__(self, "writable_roots", tuple(self.writable_roots))
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")


DEFAULT_CODEX_CONFIG = CodexConfig()

_CONFIG_FIELDS = frozenset(item.name for item in fields(CodexConfig))

ConfigOverride = Callable[[str], Mapping[str, Any] | None]


def normalize_working_directory(working_directory: str | None) -> str | None:
    if not working_directory:
        return None
    trimmed = working_directory.strip()
    return trimmed or None


def merge_config(base: CodexConfig, override: Mapping[str, Any] | None) -> CodexConfig:
    """Shallow-merge ``override`` onto ``base``.

    Keys are ``CodexConfig`` field names. ``None`` values leave the base value in
    place; enum fields accept their string values.
    """

    if not override:
        return base
    unknown = sorted(key for key in override if key not in _CONFIG_FIELDS)
    if unknown:
        raise ValueError(f"Unknown Codex config keys: {', '.join(unknown)}")
    updates = {key: value for key, value in override.items() if value is not None}
    if not updates:
        return base
    return replace(base, **updates)


@dataclass(slots=True)
class ConfigResolver:
    default: CodexConfig = DEFAULT_CODEX_CONFIG
    override: ConfigOverride | None = field(default=None)

    def resolve(self, context_id: str) -> CodexConfig:
        if self.override is None:
            return self.default
        return merge_config(self.default, self.override(context_id))


@dataclass(slots=True)
class ServerOptions:
    host: str = "127.0.0.1"
    port: int = 50002
    max_port_attempts: int = 50
    jsonrpc_path: str = "/a2a/jsonrpc"
    rest_path: str = "/a2a/rest"
    cors_origins: tuple[str, ...] = ("*",)

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")
        if self.max_port_attempts < 1:
            raise ValueError("max_port_attempts must be >= 1")
        for path in (self.jsonrpc_path, self.rest_path):
            if not path.startswith("/"):
                raise ValueError("endpoint paths must start with '/'")


__all__ = [
    "ApprovalPolicy",
    "CodexConfig",
    "ConfigOverride",
    "ConfigResolver",
    "DEFAULT_CODEX_CONFIG",
    "ReasoningEffort",
    "SandboxMode",
    "ServerOptions",
    "SUPPORTED_CONTENT_TYPES",
    "merge_config",
    "normalize_working_directory",
]
