"""Name → handler registry for model-invoked tools.

Handlers are validated when they are registered, not when the model first
calls them: the name must be non-empty and unique, the handler callable and
the schema's ``parameters`` a JSON-schema object.  Dispatch never raises:

* an unknown name yields ``ToolResult(success=False, unknown_tool=True)``;
* a handler exception (including :class:`ToolDispatchError`) yields
  ``ToolResult(success=False, message=...)``.

The orchestrator therefore treats every dispatch as producing a result it
can hand to the follow-up completion.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from iqrchat.models.chat import ToolResult
from iqrchat.utils.errors import ToolDispatchError
from iqrchat.utils.logging import get_logger, log_context

GENERIC_FAILURE_MESSAGE = "An error occurred while processing your request"


@dataclass(frozen=True)
class ToolContext:
    """Per-request data handed to every handler."""

    user_id: str


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult] | ToolResult]


@dataclass(frozen=True)
class _Registration:
    handler: ToolHandler
    schema: dict[str, Any]


class ToolDispatchRegistry:
    """Maps tool names to handlers and JSON-schema declarations."""

    def __init__(self) -> None:
        self._tools: dict[str, _Registration] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, handler: ToolHandler, schema: dict[str, Any]) -> None:
        """Register *handler* under *name*.

        Raises
        ------
        ValueError
            If the name is empty or already taken, the handler is not
            callable, or the schema lacks an object-typed ``parameters``.
        """
        if not name or not name.strip():
            raise ValueError("Tool name must be a non-empty string")
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        if not callable(handler):
            raise ValueError(f"Handler for {name} is not callable")
        parameters = schema.get("parameters")
        if not isinstance(parameters, dict) or parameters.get("type") != "object":
            raise ValueError(f"Schema for {name} must declare an object 'parameters'")
        if not isinstance(parameters.get("properties", {}), dict):
            raise ValueError(f"Schema for {name} has non-object 'properties'")

        declared = {**schema, "name": name}
        self._tools[name] = _Registration(handler=handler, schema=declared)
        self._logger.debug("tool_registered", tool=name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Return the declarations sent to the model, in registration order."""
        return [registration.schema for registration in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, name: str, args: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the handler registered for *name*; never raises for handler faults."""
        registration = self._tools.get(name)
        if registration is None:
            self._logger.warning("tool_unknown", tool=name, user_id=context.user_id)
            return ToolResult(success=False, message="Unknown function", unknown_tool=True)

        try:
            with log_context(user_id=context.user_id):
                outcome = registration.handler(args, context)
                if asyncio.iscoroutine(outcome):
                    outcome = await outcome
        except ToolDispatchError as exc:
            self._logger.warning("tool_failed", tool=name, error=str(exc))
            return ToolResult(success=False, message=exc.message)
        except Exception as exc:
            self._logger.error("tool_crashed", tool=name, error=str(exc))
            return ToolResult(success=False, message=GENERIC_FAILURE_MESSAGE)

        if not isinstance(outcome, ToolResult):
            self._logger.error("tool_bad_result", tool=name, result_type=type(outcome).__name__)
            return ToolResult(success=False, message=GENERIC_FAILURE_MESSAGE)

        self._logger.info("tool_dispatched", tool=name, success=outcome.success)
        return outcome
