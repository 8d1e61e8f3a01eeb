from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from .models import AgentExecutionEvent


def dump_event(event: AgentExecutionEvent) -> dict[str, Any]:
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_sse(payload: dict[str, Any]) -> bytes:
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n".encode()


def encode_jsonrpc_result(request_id: Any, result: Any) -> bytes:
    return encode_sse({"jsonrpc": "2.0", "id": request_id, "result": result})


async def stream_events(
    events: AsyncIterator[AgentExecutionEvent],
    *,
    request_id: Any | None = None,
    jsonrpc: bool = False,
) -> AsyncIterator[bytes]:
    async for event in events:
        payload = dump_event(event)
        if jsonrpc:
            yield encode_jsonrpc_result(request_id, payload)
        else:
            yield encode_sse(payload)


__all__ = ["dump_event", "encode_jsonrpc_result", "encode_sse", "stream_events"]
