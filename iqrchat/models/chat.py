"""Conversation, persona and tool-call models for the chat path.

``ConversationMessage`` is the persisted history row.  ``ToolCallAccumulator``
is the transient buffer the orchestrator fills while a tool call streams in.
``ToolResult`` is the structured outcome of every dispatch, including the
"unknown tool" variant, so the orchestrator never has to catch handler
exceptions itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatState(str, Enum):  # noqa: UP042
    """States of one streamed chat response."""

    STREAMING_TEXT = "streaming_text"
    ACCUMULATING_TOOL_CALL = "accumulating_tool_call"
    TOOL_CALL_COMPLETE = "tool_call_complete"
    DISPATCHING = "dispatching"
    AWAITING_FOLLOWUP_COMPLETION = "awaiting_followup_completion"
    STREAMING_FOLLOWUP_TEXT = "streaming_followup_text"
    DONE = "done"


class ChatTurn(BaseModel):
    """A ``{role, content}`` message as sent by clients and to the model."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class ConversationMessage(BaseModel):
    """A persisted chat history message.

    Tool-role messages hold ``{name, arguments, result}`` JSON and are
    excluded from the user-visible transcript.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    user_id: str
    role: MessageRole
    content: str
    tool_name: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def is_visible(self) -> bool:
        return self.role in (MessageRole.USER, MessageRole.ASSISTANT)


class ToolCallAccumulator(BaseModel):
    """Mutable-by-copy buffer for one streamed tool call."""

    model_config = ConfigDict(frozen=True)

    tool_name: str | None = None
    argument_buffer: str = ""
    is_complete: bool = False

    def append(self, name: str | None, arguments: str | None) -> ToolCallAccumulator:
        # The name arrives on the first fragment only; later fragments carry
        # argument text.
        return self.model_copy(
            update={
                "tool_name": self.tool_name or name or None,
                "argument_buffer": self.argument_buffer + (arguments or ""),
            }
        )


class ToolResult(BaseModel):
    """Structured outcome of a tool dispatch."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    unknown_tool: bool = False
    # Set when the tool wiped the conversation; the turn is not persisted.
    history_cleared: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Flatten into the dict handed back to the model."""
        payload: dict[str, Any] = {"success": self.success}
        if self.message:
            payload["message"] = self.message
        payload.update(self.data)
        return payload


class Persona(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    short_desc: str | None = None
    prompt: str | None = None


class UserProfile(BaseModel):
    """A chat user's stored profile."""

    model_config = ConfigDict(frozen=True)

    id: str
    persona_id: str | None = None
    name: str | None = None
    age: int | None = None
    occupation: str | None = None
    hobby: str | None = None
    is_deleted: bool = False


# Fields update_user_profile may write.
PROFILE_FIELDS: tuple[str, ...] = ("name", "age", "occupation", "hobby")
