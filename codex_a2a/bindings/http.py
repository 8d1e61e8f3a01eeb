import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from ..config import SUPPORTED_CONTENT_TYPES, ServerOptions
from ..errors import (
    A2AError,
    A2ARequestValidationError,
    ContentTypeNotSupportedError,
)
from ..models import MessageSendParams, TaskIdParams, TaskQueryParams
from ..service import CodexA2AService
from ..sse import stream_events

logger = logging.getLogger("codex_a2a.http")


def create_a2a_http_app(service: CodexA2AService, *, options: ServerOptions | None = None):
    from fastapi import APIRouter, FastAPI, Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse, StreamingResponse

    options = options or ServerOptions()

    @asynccontextmanager
    async def _lifespan(_app: FastAPI):
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(
        title=service.agent_card.name,
        description=service.agent_card.description,
        version=service.agent_card.version,
        docs_url=None,
        openapi_url=None,
        lifespan=_lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(options.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )

    @app.exception_handler(A2AError)
    async def _handle_a2a_error(_request: Request, exc: A2AError):
        details = exc.to_problem_details().model_dump(exclude_none=True)
        return JSONResponse(
            status_code=exc.status_code,
            content=details,
            media_type="application/problem+json",
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(_request: Request, exc: RequestValidationError):
        problem = A2ARequestValidationError(json.dumps(exc.errors(), ensure_ascii=False, default=str))
        return JSONResponse(
            status_code=problem.status_code,
            content=problem.to_problem_details().model_dump(exclude_none=True),
            media_type="application/problem+json",
        )

    def _validate_content_type(request: Request) -> None:
        content_type = request.headers.get("content-type")
        if content_type is None or not any(item in content_type for item in SUPPORTED_CONTENT_TYPES):
            raise ContentTypeNotSupportedError(content_type)

    async def _load_send_params(request: Request) -> MessageSendParams:
        _validate_content_type(request)
        try:
            payload = await request.json()
        except ValueError as exc:
            raise A2ARequestValidationError("Request body must be valid JSON") from exc
        try:
            return MessageSendParams.model_validate(payload)
        except ValidationError as exc:
            raise A2ARequestValidationError(str(exc)) from exc

    def _parse_history_length(raw: str | None) -> int | None:
        if raw is None:
            return None
        try:
            value = int(raw)
        except ValueError as exc:
            raise A2ARequestValidationError("historyLength must be an integer") from exc
        if value < 0:
            raise A2ARequestValidationError("historyLength must be >= 0")
        return value

    def _dump(model: Any) -> dict[str, Any]:
        return model.model_dump(mode="json", by_alias=True, exclude_none=True)

    def _jsonrpc_result(request_id: Any, result: Any) -> JSONResponse:
        return JSONResponse(content={"jsonrpc": "2.0", "id": request_id, "result": result})

    def _jsonrpc_error(
        request_id: Any,
        *,
        code: int,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> JSONResponse:
        payload: dict[str, Any] = {"code": code, "message": message}
        if data:
            payload["data"] = data
        return JSONResponse(content={"jsonrpc": "2.0", "id": request_id, "error": payload})

    @app.get("/.well-known/agent-card.json")
    async def agent_card() -> JSONResponse:
        return JSONResponse(content=_dump(service.agent_card))

    @app.post(options.jsonrpc_path)
    async def jsonrpc(request: Request):
        try:
            payload = json.loads(await request.body() or b"{}")
        except json.JSONDecodeError:
            return _jsonrpc_error(None, code=-32700, message="Invalid JSON payload")
        if not isinstance(payload, dict) or payload.get("jsonrpc") != "2.0":
            return _jsonrpc_error(None, code=-32600, message="Request payload validation error")
        request_id = payload.get("id")
        method = payload.get("method")
        if request_id is None or not isinstance(method, str):
            return _jsonrpc_error(request_id, code=-32600, message="Request payload validation error")
        params = payload.get("params") or {}
        if not isinstance(params, dict):
            return _jsonrpc_error(request_id, code=-32602, message="Invalid parameters")

        try:
            if method == "message/send":
                task = await service.send_message(MessageSendParams.model_validate(params))
                return _jsonrpc_result(request_id, _dump(task))
            if method == "message/stream":
                events = await service.stream_message(MessageSendParams.model_validate(params))
                return StreamingResponse(
                    stream_events(events, request_id=request_id, jsonrpc=True),
                    media_type="text/event-stream",
                )
            if method == "tasks/get":
                query = TaskQueryParams.model_validate(params)
                task = await service.get_task(query.id, history_length=query.history_length)
                return _jsonrpc_result(request_id, _dump(task))
            if method == "tasks/cancel":
                task = await service.cancel_task(TaskIdParams.model_validate(params).id)
                return _jsonrpc_result(request_id, _dump(task))
        except ValidationError as exc:
            return _jsonrpc_error(request_id, code=-32602, message="Invalid parameters", data={"detail": str(exc)})
        except A2AError as exc:
            details = exc.to_problem_details().model_dump(exclude_none=True)
            return _jsonrpc_error(request_id, code=exc.jsonrpc_code, message=exc.title, data=details)
        except Exception as exc:
            logger.error("jsonrpc_internal_error", extra={"method": method, "exception": exc})
            return _jsonrpc_error(request_id, code=-32603, message="Internal error", data={"detail": str(exc)})

        return _jsonrpc_error(request_id, code=-32601, message="Method not found", data={"method": method})

    router = APIRouter()

    @router.post("/v1/message:send")
    async def send_message(request: Request):
        params = await _load_send_params(request)
        task = await service.send_message(params)
        return JSONResponse(content=_dump(task), media_type="application/a2a+json")

    @router.post("/v1/message:stream")
    async def stream_message(request: Request):
        params = await _load_send_params(request)
        events = await service.stream_message(params)
        return StreamingResponse(stream_events(events), media_type="text/event-stream")

    @router.get("/v1/tasks/{task_id}")
    async def get_task(task_id: str, historyLength: str | None = None):
        task = await service.get_task(task_id, history_length=_parse_history_length(historyLength))
        return JSONResponse(content=_dump(task), media_type="application/a2a+json")

    @router.post("/v1/tasks/{task_id}:cancel")
    async def cancel_task(task_id: str):
        task = await service.cancel_task(task_id)
        return JSONResponse(content=_dump(task), media_type="application/a2a+json")

    app.include_router(router, prefix=options.rest_path)
    return app


__all__ = ["create_a2a_http_app"]
