"""OpenAI-compatible chat completion adapter with streamed tool calls.

Wraps the ``openai`` async client to implement
:class:`IChatCompletionProvider`.  Streaming responses are translated into
:class:`CompletionDelta` items: content fragments, tool-call fragments
(name first, then argument text) and the final ``finish_reason``.  When a
custom ``openai_base_url`` is configured, the client points at that
OpenAI-compatible endpoint instead.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import openai
import structlog

from iqrchat.config.settings import Settings
from iqrchat.interfaces.chat_completion_provider import CompletionDelta, IChatCompletionProvider
from iqrchat.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OpenAIChatProvider(IChatCompletionProvider):
    """Chat provider backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o`` by default.  Tool declarations are passed in the
    ``tools`` format with ``tool_choice="auto"``; only the first tool call
    of a response is forwarded, since the orchestrator dispatches one tool
    per turn.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_chat_model or "gpt-4o"
        self._provider_label = (
            "openai-compatible" if settings.openai_base_url else "openai"
        )

    # ------------------------------------------------------------------
    # IChatCompletionProvider implementation
    # ------------------------------------------------------------------

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[CompletionDelta]:
        """Stream a completion, yielding one :class:`CompletionDelta` per chunk."""
        request: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            request["tools"] = [{"type": "function", "function": tool} for tool in tools]
            request["tool_choice"] = "auto"

        try:
            response = await self._client.chat.completions.create(**request)
            async for chunk in response:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                tool_name: str | None = None
                tool_arguments: str | None = None
                if delta is not None and delta.tool_calls:
                    call = delta.tool_calls[0]
                    # Only the first tool call of a response is honoured.
                    if call.index in (None, 0) and call.function is not None:
                        tool_name = call.function.name or None
                        tool_arguments = call.function.arguments or None
                yield CompletionDelta(
                    content=(delta.content if delta is not None else None) or None,
                    tool_name=tool_name,
                    tool_arguments=tool_arguments,
                    finish_reason=choice.finish_reason,
                )
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} stream timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Return a single non-streamed completion for *messages*."""
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise LLMError(
                message=f"{self._provider_label} timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)
