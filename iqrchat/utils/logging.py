"""Structured logging for iqrchat.

One shared processor chain feeds either a coloured console renderer (local
development) or a JSON renderer (``APP_ENV=production`` or
``json_output=True``).  Standard-library loggers from uvicorn, httpx and
aiosqlite go through the same chain.

Ingestion and chat code logs with snake_case event names and keyword
context.  The identifiers that tie lines together (``product_id`` for an
ingestion run, ``user_id`` for a chat turn) are bound once with
:func:`log_context` rather than repeated at every call site.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

DEFAULT_LOGGER_NAME = "iqrchat"

# Noisy third-party loggers kept at WARNING unless DEBUG is requested.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "openai")


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Force JSON lines; otherwise chosen from ``APP_ENV``.

    Returns:
        The ``iqrchat`` logger.
    """
    level = log_level.upper()
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *shared_processors,
                renderer,
            ],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level == "DEBUG" else "WARNING")

    return structlog.get_logger(logger_name=DEFAULT_LOGGER_NAME)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a structlog logger named *name* (default ``iqrchat``).

    Configures logging with defaults on first use.
    """
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name or DEFAULT_LOGGER_NAME)


@contextmanager
def log_context(**bindings: Any) -> Iterator[None]:
    """Bind identifiers such as ``product_id`` to every log line in the block.

    ``None`` values are skipped.  Bindings are restored on exit, including
    bindings of the same key made by an enclosing block.
    """
    values = {key: value for key, value in bindings.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**values):
        yield
