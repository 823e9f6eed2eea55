"""iqrchat API layer: routes, schemas, and middleware."""

from iqrchat.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from iqrchat.api.routes import router
from iqrchat.api.schemas import (
    ChatRequest,
    ErrorResponse,
    HealthResponse,
    IngestionStatusResponse,
)

__all__ = [
    "ChatRequest",
    "ErrorHandlingMiddleware",
    "ErrorResponse",
    "HealthResponse",
    "IngestionStatusResponse",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
]
