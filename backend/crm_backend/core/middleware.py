"""ASGI middleware: request ids, access logs and the body size guard."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from crm_backend.core.config import settings
from crm_backend.core.logging import request_id_ctx_var, user_id_ctx_var

PROBE_PATHS = frozenset({"/api/healthz", "/api/readyz"})


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and logs one line when it finishes."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        tokens = (request_id_ctx_var.set(request_id), user_id_ctx_var.set("-"))
        started = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers.setdefault("X-Request-ID", request_id)
            return response
        finally:
            path = request.url.path
            log = logger.bind(
                method=request.method,
                path=path,
                status=response.status_code if response is not None else 500,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                client=request.client.host if request.client else None,
            )
            if path in PROBE_PATHS:
                log.debug("request_completed")
            else:
                log.info("request_completed")
            request_id_ctx_var.reset(tokens[0])
            user_id_ctx_var.reset(tokens[1])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests whose declared Content-Length is over MAX_BODY_BYTES."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        declared = request.headers.get("content-length")
        if declared is not None:
            if not declared.isdigit():
                return _error(400, "Invalid Content-Length header")
            if int(declared) > settings.MAX_BODY_BYTES:
                return _error(413, "Request entity too large")
        return await call_next(request)
