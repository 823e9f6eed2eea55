"""Abstract base class for chat completion providers with tool calling.

The chat orchestrator consumes a *stream* of :class:`CompletionDelta`
objects for the primary response and issues a *non-streaming* completion
for the follow-up after a tool call.  Providers translate their SDK's
chunk format into ``CompletionDelta`` so the orchestrator never sees
vendor types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CompletionDelta:
    """One incremental piece of a streamed completion.

    A delta carries any of: a content fragment, a tool-call fragment (name
    on the first fragment, argument text on later ones) and the finish
    reason on the final chunk (``"stop"``, ``"tool_calls"``, ``"length"``).
    """

    content: str | None = None
    tool_name: str | None = None
    tool_arguments: str | None = None
    finish_reason: str | None = None

    @property
    def has_tool_fragment(self) -> bool:
        return self.tool_name is not None or self.tool_arguments is not None


# Concrete implementations: OpenAIChatProvider
# Located in: iqrchat/providers/llm/
class IChatCompletionProvider(ABC):
    """Contract for chat completion backends."""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[CompletionDelta]:
        """Stream a completion for *messages* as :class:`CompletionDelta` items.

        Parameters
        ----------
        messages:
            ``{"role", "content"}`` dicts in conversation order.
        tools:
            Tool declarations (``{"name", "description", "parameters"}``).

        Raises
        ------
        iqrchat.utils.errors.LLMError
            If the request fails before or during streaming.
        """

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Return a single non-streamed completion for *messages*.

        Raises
        ------
        iqrchat.utils.errors.LLMError
            If the call fails or returns no content.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
