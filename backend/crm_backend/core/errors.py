"""Domain error types and the handlers that render them for API callers."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException


class CRMError(Exception):
    """Base class for errors that map onto a client-facing status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRuleSetError(CRMError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnsupportedOperatorError(CRMError):
    """An operator has no compiled semantics for the given field."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, operator: str, field: str):
        super().__init__(f"Operator '{operator}' is not supported for field '{field}'")
        self.operator = operator
        self.field = field


class ZeroMatchSegmentError(CRMError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CRMError):
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateError(CRMError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStatusTransitionError(CRMError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move campaign from '{current}' to '{target}'")
        self.current = current
        self.target = target


class ExternalServiceError(CRMError):
    status_code = status.HTTP_502_BAD_GATEWAY


def error_body(message: str, errors: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error in the ``{success: false, message}`` shape."""

    async def crm_error_handler(request: Request, exc: CRMError):
        logger.bind(
            path=str(request.url.path),
            status=exc.status_code,
            error=type(exc).__name__,
        ).info("request_rejected")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body("Validation failed", jsonable_encoder(exc.errors())),
        )

    app.add_exception_handler(CRMError, crm_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
