"""Abstract base classes for chat persistence.

Two contracts, usually served by one backend:

* :class:`IConversationStore` -- the message history, including hidden
  tool-role messages.
* :class:`IProfileStore` -- user profiles and the persona catalogue that
  the tool handlers read and write.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from iqrchat.models.chat import ConversationMessage, Persona, UserProfile


# Concrete implementations: SQLiteChatStore
# Located in: iqrchat/providers/storage/
class IConversationStore(ABC):
    """Contract for chat history persistence."""

    @abstractmethod
    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        """Append *message*; returns it with its id populated."""

    @abstractmethod
    async def recent_messages(self, user_id: str, limit: int = 20) -> list[ConversationMessage]:
        """Return up to *limit* most recent messages, oldest first.

        Includes tool-role messages (model context); callers filter for the
        visible transcript.
        """

    @abstractmethod
    async def delete_messages(self, user_id: str) -> int:
        """Delete all of the user's messages; returns the number removed."""


class IProfileStore(ABC):
    """Contract for user profiles and personas."""

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile | None:
        """Return the user (deleted or not), or ``None``."""

    @abstractmethod
    async def create_user(self, user_id: str, persona_id: str) -> UserProfile:
        """Create (or reset a soft-deleted) user with *persona_id*."""

    @abstractmethod
    async def update_user(self, user_id: str, fields: dict[str, Any]) -> UserProfile:
        """Write *fields* to the profile; returns the updated profile."""

    @abstractmethod
    async def soft_delete_user(self, user_id: str) -> None:
        """Clear profile fields and mark the user deleted."""

    @abstractmethod
    async def list_personas(self) -> list[Persona]:
        """Return all personas ordered by name."""

    @abstractmethod
    async def get_persona(self, persona_id: str) -> Persona | None:
        """Return a persona by id, or ``None``."""

    @abstractmethod
    async def default_persona(self) -> Persona:
        """Return the persona assigned to new users."""
