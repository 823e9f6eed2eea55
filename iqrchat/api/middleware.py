"""API middleware: CORS, request logging and error handling.

Middleware is a stack; the last one added runs first.  ``create_app``
adds ``ErrorHandlingMiddleware`` before ``RequestLoggingMiddleware`` so
the logger sees the final status code, including the structured JSON
errors produced below.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from iqrchat.api.schemas import ErrorResponse
from iqrchat.utils.errors import (
    ChunkingError,
    ExtractionError,
    IQRChatError,
    PipelineError,
    StorageError,
)
from iqrchat.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def status_code_for(exc: IQRChatError) -> int:
    """HTTP status for an application error that reached the API layer."""
    if isinstance(exc, (StorageError, ChunkingError, PipelineError)):
        return 422
    if isinstance(exc, ExtractionError):
        return 502
    return 500


def error_response(exc: IQRChatError) -> JSONResponse:
    body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=status_code_for(exc), content=body.model_dump())


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; all origins are allowed unless *allowed_origins* is given."""
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch ``IQRChatError`` subclasses and return structured JSON errors.

    Stack traces stay in the server log; the client only sees the error
    class name and message.  Other exceptions fall through to FastAPI's
    default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except IQRChatError as exc:
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
            )
            return error_response(exc)
