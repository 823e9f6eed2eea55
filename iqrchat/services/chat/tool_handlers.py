"""Built-in tool handlers: personas and user profile management.

Each handler receives the parsed argument dict and a
:class:`~iqrchat.services.chat.tool_registry.ToolContext` and returns a
:class:`~iqrchat.models.chat.ToolResult`.  Arguments are validated here,
not in the registry, because the model routinely sends partial objects.
"""

from __future__ import annotations

from typing import Any

import structlog

from iqrchat.interfaces.chat_store import IConversationStore, IProfileStore
from iqrchat.models.chat import PROFILE_FIELDS, Persona, ToolResult
from iqrchat.services.chat.tool_registry import ToolContext, ToolDispatchRegistry
from iqrchat.utils.logging import get_logger
from iqrchat.utils.text_normalizer import fuzzy_match

MIN_AGE = 0
MAX_AGE = 150

FUNCTION_SCHEMAS: dict[str, dict[str, Any]] = {
    "get_personas": {
        "description": (
            "Get a list of all available personas/roles/characters that the AI assistant "
            "can switch to. Use this when the user asks about available personas, roles, "
            "characters, or modes."
        ),
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    "set_persona": {
        "description": (
            "Change the AI assistant to a different persona/role/character. Use this when "
            "the user wants to switch to a different persona or talk to a specific type of "
            "assistant."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "persona_name": {
                    "type": "string",
                    "description": (
                        "The name of the persona to switch to (e.g., 'Doctor', 'Chef', "
                        "'Travel Guide', 'Tutor')"
                    ),
                },
            },
            "required": ["persona_name"],
        },
    },
    "delete_user_data": {
        "description": (
            "Delete all of the user's stored profile data and chat history. Use this when "
            "the user asks to delete their data, account, or wants you to forget about them."
        ),
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    "update_user_profile": {
        "description": (
            "Update the user's profile information. Use this when the user shares personal "
            "information such as their name, age, occupation, or hobbies."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The user's name"},
                "age": {"type": "integer", "description": "The user's age in years"},
                "occupation": {"type": "string", "description": "The user's job or profession"},
                "hobby": {"type": "string", "description": "The user's hobby or interest"},
            },
            "required": [],
        },
    },
    "get_user_profile": {
        "description": (
            "Get the user's stored profile information. Use this when the user asks what you "
            "know about them, their name, age, occupation, or hobbies."
        ),
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
}


def _coerce_age(value: Any) -> int | None:
    # bool is an int subclass; "true" is not an age.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        age = value
    elif isinstance(value, float) and value.is_integer():
        age = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        age = int(value.strip())
    else:
        return None
    return age if MIN_AGE <= age <= MAX_AGE else None


def clean_profile_fields(args: dict[str, Any]) -> dict[str, Any]:
    """Keep only recognised, valid profile fields from *args*."""
    fields: dict[str, Any] = {}
    for key in PROFILE_FIELDS:
        if key not in args or args[key] is None:
            continue
        if key == "age":
            age = _coerce_age(args[key])
            if age is not None:
                fields[key] = age
            continue
        value = str(args[key]).strip()
        if value:
            fields[key] = value
    return fields


class ProfileToolHandlers:
    """Persona and profile handlers backed by the chat stores."""

    def __init__(self, profiles: IProfileStore, conversations: IConversationStore) -> None:
        self._profiles = profiles
        self._conversations = conversations
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def get_personas(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        personas = await self._profiles.list_personas()
        if not personas:
            return ToolResult(success=False, message="No personas available in the system")

        user = await self._profiles.get_user(context.user_id)
        active_id = user.persona_id if user else None
        listed = [
            {
                "id": persona.id,
                "name": persona.name,
                "description": persona.short_desc,
                "active": persona.id == active_id,
            }
            for persona in personas
        ]
        return ToolResult(
            success=True,
            message=f"Found {len(listed)} personas",
            data={"personas": listed},
        )

    async def set_persona(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        query = str(args.get("persona_name") or "").strip()
        if not query:
            return ToolResult(success=False, message="No persona name provided")

        personas = await self._profiles.list_personas()
        persona, exact = self._match_persona(query, personas)
        if persona is None:
            available = ", ".join(p.name for p in personas)
            return ToolResult(
                success=False,
                message=f'Persona "{query}" not found. Available personas: {available}',
            )

        await self._profiles.update_user(context.user_id, {"persona_id": persona.id})
        self._logger.info("persona_switched", user_id=context.user_id, persona=persona.name)
        message = (
            f"Successfully switched to {persona.name} persona"
            if exact
            else f'Switched to the {persona.name} persona (matched from "{query}")'
        )
        return ToolResult(
            success=True,
            message=message,
            data={"persona": {"id": persona.id, "name": persona.name}},
        )

    async def update_user_profile(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        fields = clean_profile_fields(args)
        if not fields:
            return ToolResult(success=False, message="No valid profile data provided")

        await self._profiles.update_user(context.user_id, fields)
        self._logger.info("profile_updated", user_id=context.user_id, fields=sorted(fields))
        return ToolResult(success=True, message="Profile updated", data={"updated": fields})

    async def get_user_profile(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        user = await self._profiles.get_user(context.user_id)
        if user is None or user.is_deleted:
            return ToolResult(success=False, message="User account has been deleted")
        profile = {key: getattr(user, key) for key in PROFILE_FIELDS}
        return ToolResult(success=True, data={"profile": profile})

    async def delete_user_data(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        await self._profiles.soft_delete_user(context.user_id)
        removed = await self._conversations.delete_messages(context.user_id)
        self._logger.info("user_data_deleted", user_id=context.user_id, messages=removed)
        return ToolResult(
            success=True,
            message="Your profile and chat history have been deleted successfully.",
            history_cleared=True,
        )

    @staticmethod
    def _match_persona(query: str, personas: list[Persona]) -> tuple[Persona | None, bool]:
        """Exact case-insensitive match, then substring, then fuzzy."""
        lowered = query.lower()
        for persona in personas:
            if persona.name.lower() == lowered:
                return persona, True
        for persona in personas:
            name = persona.name.lower()
            if lowered in name or name in lowered:
                return persona, False
        best = fuzzy_match(query, [p.name for p in personas])
        if best is not None:
            return next(p for p in personas if p.name == best), False
        return None, False


def register_default_tools(
    registry: ToolDispatchRegistry,
    profiles: IProfileStore,
    conversations: IConversationStore,
) -> ProfileToolHandlers:
    """Register the five built-in tools on *registry*."""
    handlers = ProfileToolHandlers(profiles, conversations)
    for name, schema in FUNCTION_SCHEMAS.items():
        registry.register(name, getattr(handlers, name), schema)
    return handlers
