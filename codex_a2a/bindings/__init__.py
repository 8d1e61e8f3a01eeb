"""Protocol bindings for the Codex A2A service."""

from .http import create_a2a_http_app

__all__ = ["create_a2a_http_app"]
