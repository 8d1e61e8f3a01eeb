"""Serve the Codex agent runtime over the A2A task protocol."""

from .agent_card import build_agent_card
from .backend import CodexCli, CodexThread, ThreadOptions
from .bindings.http import create_a2a_http_app
from .bus import ExecutionEventBus, QueueEventBus
from .cancellation import CancellationTracker
from .config import (
    DEFAULT_CODEX_CONFIG,
    ApprovalPolicy,
    CodexConfig,
    ConfigResolver,
    ReasoningEffort,
    SandboxMode,
    ServerOptions,
)
from .errors import A2AError, CodexExecError
from .executor import CodexExecutor, RequestContext
from .server import CodexA2AServer
from .service import CodexA2AService
from .sessions import SessionRegistry
from .store import InMemoryTaskStore

__all__ = [
    "A2AError",
    "ApprovalPolicy",
    "CancellationTracker",
    "CodexA2AServer",
    "CodexA2AService",
    "CodexCli",
    "CodexConfig",
    "CodexExecError",
    "CodexExecutor",
    "CodexThread",
    "ConfigResolver",
    "DEFAULT_CODEX_CONFIG",
    "ExecutionEventBus",
    "InMemoryTaskStore",
    "QueueEventBus",
    "ReasoningEffort",
    "RequestContext",
    "SandboxMode",
    "ServerOptions",
    "SessionRegistry",
    "ThreadOptions",
    "__version__",
    "build_agent_card",
    "create_a2a_http_app",
]

__version__ = "0.1.0"
