"""Streaming chat orchestrator with single-tool dispatch.

One call to :meth:`ChatOrchestrator.stream_reply` drives one assistant turn
through the :class:`~iqrchat.models.chat.ChatState` machine::

    streaming_text ──► done
          │
          ▼ (first tool-call fragment)
    accumulating_tool_call ──(finish_reason != "tool_calls")──► streaming_text
          │ (finish_reason == "tool_calls")
          ▼
    tool_call_complete ► dispatching ► awaiting_followup_completion
          ► streaming_followup_text ► done

Text deltas are markdown-stripped and yielded as they arrive.  Once a tool
call starts, nothing more from the primary stream reaches the caller; the
visible reply is the follow-up completion instead.  The user message is
persisted before the model is called, the hidden tool message and the
assistant reply only once their content is final.  Text streamed before a
tool call is stored with the follow-up reply as one assistant message, so
the transcript matches what was shown.  A tool that clears the history
(``delete_user_data``) leaves nothing behind for the turn.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog

from iqrchat.interfaces.chat_completion_provider import IChatCompletionProvider
from iqrchat.interfaces.chat_store import IConversationStore, IProfileStore
from iqrchat.models.chat import (
    ChatState,
    ChatTurn,
    ConversationMessage,
    MessageRole,
    Persona,
    ToolCallAccumulator,
    ToolResult,
    UserProfile,
)
from iqrchat.services.chat.arguments import parse_tool_arguments
from iqrchat.services.chat.prompts import (
    DEFAULT_SYSTEM_PROMPT,
    ERROR_MESSAGE,
    build_context_prompt,
    build_followup_instruction,
    detect_intent_hints,
)
from iqrchat.services.chat.tool_registry import ToolContext, ToolDispatchRegistry
from iqrchat.utils.errors import IQRChatError
from iqrchat.utils.logging import get_logger
from iqrchat.utils.text_normalizer import strip_markdown


def render_tool_message(message: ConversationMessage) -> str:
    """Render a stored tool message as system context for the model."""
    try:
        payload = json.loads(message.content)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return f"Function {message.tool_name or 'unknown'} result: {message.content}"
    name = payload.get("name") or message.tool_name or "unknown"
    return f"Function {name} result: {json.dumps(payload.get('result', {}))}"


class ChatOrchestrator:
    """Runs one streamed assistant turn, dispatching at most one tool.

    Parameters
    ----------
    llm:
        Streaming chat completion backend.
    registry:
        Tools offered to the model and dispatched by exact name.
    conversations / profiles:
        Chat persistence; usually the same SQLite store.
    history_limit:
        Number of stored messages replayed to the model.
    """

    def __init__(
        self,
        llm: IChatCompletionProvider,
        registry: ToolDispatchRegistry,
        conversations: IConversationStore,
        profiles: IProfileStore,
        history_limit: int = 20,
        followup_temperature: float = 0.7,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._conversations = conversations
        self._profiles = profiles
        self._history_limit = history_limit
        self._followup_temperature = followup_temperature
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream_reply(
        self,
        user_id: str,
        messages: Sequence[ChatTurn],
        system_prompt: str | None = None,
        use_tools: bool = True,
    ) -> AsyncIterator[str]:
        """Yield the visible reply to *messages* as plain-text pieces.

        *system_prompt* replaces the persona prompt (product chat uses
        this).  Provider failures never raise out of the generator; the
        fixed apology is appended to the stream instead.
        """
        user = await self._ensure_user(user_id)
        persona = await self._resolve_persona(user)

        history = await self._conversations.recent_messages(user_id, limit=self._history_limit)
        latest = next((m for m in reversed(messages) if m.role is MessageRole.USER), None)
        if latest is not None:
            await self._conversations.add_message(
                ConversationMessage(user_id=user_id, role=MessageRole.USER, content=latest.content)
            )

        model_messages = self._build_messages(
            persona=persona,
            user=user,
            history=history,
            messages=messages,
            system_prompt=system_prompt,
            use_tools=use_tools,
        )
        tools = self._registry.schemas() if use_tools else None

        state = ChatState.STREAMING_TEXT
        accumulator = ToolCallAccumulator()
        streamed: list[str] = []
        tool_used = False
        persist = True

        try:
            async for delta in self._llm.stream(model_messages, tools=tools):
                if delta.has_tool_fragment:
                    if state is ChatState.STREAMING_TEXT:
                        state = ChatState.ACCUMULATING_TOOL_CALL
                    accumulator = accumulator.append(delta.tool_name, delta.tool_arguments)
                elif state is ChatState.STREAMING_TEXT and delta.content:
                    text = strip_markdown(delta.content)
                    if text:
                        streamed.append(text)
                        yield text

                if state is ChatState.ACCUMULATING_TOOL_CALL and delta.finish_reason:
                    if delta.finish_reason == "tool_calls":
                        accumulator = accumulator.model_copy(update={"is_complete": True})
                        state = ChatState.TOOL_CALL_COMPLETE
                        break
                    self._logger.info(
                        "tool_call_abandoned",
                        user_id=user_id,
                        finish_reason=delta.finish_reason,
                    )
                    accumulator = ToolCallAccumulator()
                    state = ChatState.STREAMING_TEXT

            if state is ChatState.TOOL_CALL_COMPLETE:
                tool_used = True
                state = ChatState.DISPATCHING
                name, result = await self._dispatch_tool(user_id, accumulator)
                persist = not result.history_cleared

                state = ChatState.AWAITING_FOLLOWUP_COMPLETION
                reply = await self._followup_reply(
                    user_id, name, result, messages, history, system_prompt
                )
                state = ChatState.STREAMING_FOLLOWUP_TEXT
                if reply:
                    streamed.append(reply)
                    yield reply
        except IQRChatError as exc:
            self._logger.error("chat_turn_failed", user_id=user_id, state=state.value, error=str(exc))
            yield ERROR_MESSAGE
            if persist:
                await self._save_assistant(user_id, "".join(streamed))
            return

        state = ChatState.DONE
        if persist:
            await self._save_assistant(user_id, "".join(streamed))
        self._logger.info(
            "chat_turn_completed",
            user_id=user_id,
            state=state.value,
            tool=accumulator.tool_name if tool_used else None,
            characters=sum(len(piece) for piece in streamed),
        )

    async def visible_history(self, user_id: str, limit: int | None = None) -> list[ConversationMessage]:
        """Return the user-visible transcript (tool messages excluded)."""
        recent = await self._conversations.recent_messages(user_id, limit=limit or self._history_limit)
        return [message for message in recent if message.is_visible]

    # ------------------------------------------------------------------
    # Tool call
    # ------------------------------------------------------------------

    async def _dispatch_tool(
        self, user_id: str, accumulator: ToolCallAccumulator
    ) -> tuple[str, ToolResult]:
        """Parse the argument buffer, dispatch and store the hidden tool message.

        Raises
        ------
        ToolArgumentParseError
            If the argument buffer cannot be parsed; nothing is dispatched.
        """
        name = accumulator.tool_name or ""
        arguments = parse_tool_arguments(accumulator.argument_buffer)

        result = await self._registry.dispatch(name, arguments, ToolContext(user_id=user_id))
        self._logger.info("tool_call_dispatched", user_id=user_id, tool=name, success=result.success)
        if not result.history_cleared:
            await self._conversations.add_message(
                ConversationMessage(
                    user_id=user_id,
                    role=MessageRole.TOOL,
                    content=json.dumps(
                        {"name": name, "arguments": arguments, "result": result.to_payload()}
                    ),
                    tool_name=name,
                )
            )
        return name, result

    async def _followup_reply(
        self,
        user_id: str,
        name: str,
        result: ToolResult,
        messages: Sequence[ChatTurn],
        history: list[ConversationMessage],
        system_prompt: str | None,
    ) -> str:
        """Ask the model to answer in persona from the tool result.

        Raises
        ------
        LLMError
            If the follow-up completion fails.
        """
        # The tool may have switched persona or reset the user.
        user = await self._profiles.get_user(user_id)
        persona = await self._resolve_persona(user)
        followup = self._build_followup_messages(
            persona, name, result, messages, history, system_prompt
        )
        raw = await self._llm.complete(followup, temperature=self._followup_temperature)
        return strip_markdown(raw).strip()

    # ------------------------------------------------------------------
    # Message assembly
    # ------------------------------------------------------------------

    def _build_messages(
        self,
        persona: Persona,
        user: UserProfile,
        history: list[ConversationMessage],
        messages: Sequence[ChatTurn],
        system_prompt: str | None,
        use_tools: bool,
    ) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt or persona.prompt or DEFAULT_SYSTEM_PROMPT}
        ]
        if use_tools:
            result.append({"role": "system", "content": build_context_prompt(persona.name, user)})
        result.extend(self._history_messages(history))
        result.extend(
            {"role": turn.role.value, "content": turn.content}
            for turn in messages
            if turn.role is not MessageRole.TOOL
        )
        if use_tools:
            latest = next((m for m in reversed(messages) if m.role is MessageRole.USER), None)
            if latest is not None:
                for hint in detect_intent_hints(latest.content):
                    result.append({"role": "system", "content": hint})
        return result

    def _build_followup_messages(
        self,
        persona: Persona,
        tool_name: str,
        result: ToolResult,
        messages: Sequence[ChatTurn],
        history: list[ConversationMessage],
        system_prompt: str | None,
    ) -> list[dict[str, Any]]:
        followup: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt or persona.prompt or DEFAULT_SYSTEM_PROMPT},
            {"role": "system", "content": build_followup_instruction(persona.name)},
        ]
        followup.extend(self._history_messages(history))
        followup.extend(
            {"role": turn.role.value, "content": turn.content}
            for turn in messages
            if turn.role in (MessageRole.USER, MessageRole.ASSISTANT)
        )
        followup.append(
            {
                "role": "system",
                "content": f"Function {tool_name} result: {json.dumps(result.to_payload())}",
            }
        )
        return followup

    @staticmethod
    def _history_messages(history: list[ConversationMessage]) -> list[dict[str, Any]]:
        rendered: list[dict[str, Any]] = []
        for message in history:
            if message.role is MessageRole.TOOL:
                rendered.append({"role": "system", "content": render_tool_message(message)})
            else:
                rendered.append({"role": message.role.value, "content": message.content})
        return rendered

    # ------------------------------------------------------------------
    # Users and personas
    # ------------------------------------------------------------------

    async def _ensure_user(self, user_id: str) -> UserProfile:
        user = await self._profiles.get_user(user_id)
        if user is not None and not user.is_deleted:
            return user
        default = await self._profiles.default_persona()
        self._logger.info(
            "chat_user_ensured",
            user_id=user_id,
            reset=user is not None,
            persona=default.name,
        )
        return await self._profiles.create_user(user_id, default.id)

    async def _resolve_persona(self, user: UserProfile | None) -> Persona:
        if user is not None and user.persona_id:
            persona = await self._profiles.get_persona(user.persona_id)
            if persona is not None:
                return persona
        return await self._profiles.default_persona()

    async def _save_assistant(self, user_id: str, content: str) -> None:
        if not content:
            return
        await self._conversations.add_message(
            ConversationMessage(user_id=user_id, role=MessageRole.ASSISTANT, content=content)
        )
