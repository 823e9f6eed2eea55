"""Prompt text and intent detection for the chat path.

Everything the orchestrator sends to the model besides the conversation
itself lives here: the default system prompt, the per-user context prompt,
the follow-up instruction issued after a tool call, the product-chat system
prompt and the regex-based intent hints that nudge the model towards the
right tool.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from iqrchat.models.chat import UserProfile
from iqrchat.models.chunk import Chunk
from iqrchat.models.product import Product

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, friendly AI assistant. Your goal is to provide accurate "
    "and helpful information to the user.\n\n"
    "Respond conversationally and be friendly while maintaining accuracy. If you "
    "don't know something, admit it rather than making up information."
)

ERROR_MESSAGE = "\n\nSorry, there was an error processing your request. Please try again."

_NOT_PROVIDED = "Not provided yet"

_CONTEXT_TEMPLATE = """\
You are currently using the "{persona}" persona. The user's profile data that I have is:
- Name: {name}
- Age: {age}
- Occupation: {occupation}
- Hobby: {hobby}

IMPORTANT INSTRUCTIONS:

1. When the user asks about available personas, assistants, roles, or characters, you MUST use the get_personas function.
   Examples: "What personas are available?", "Show me the roles", "What characters can you be?", "Tell me about the personas"

2. When the user wants to switch personas, you MUST use the set_persona function with the requested persona name.
   Examples: "Switch to doctor", "Be a chef", "I want to talk to a travel guide", "Can you be a tutor?"

3. USER PROFILE MANAGEMENT:
   a. When a user asks about their stored information or profile details, ALWAYS use the get_user_profile function.
      Examples: "What's my name?", "Do you know my age?", "What do you know about me?", "What's my job?"

   b. When a user shares personal information that should be remembered, ALWAYS use the update_user_profile function.
      Examples: "My name is John", "I am 30 years old", "I work as a teacher", "My hobby is painting"

   c. When a user asks to delete their data or account, ALWAYS use the delete_user_data function.
      Examples: "Delete my account", "Remove my data", "Forget about me", "Delete everything you know about me"

4. For general conversation, respond naturally as your current persona.

The user doesn't see these capabilities directly, but you should respond to their requests naturally as if these are things you can do. Don't mention functions or capabilities directly.
"""

_FOLLOWUP_TEMPLATE = """\
You are responding to a function call result.
Use this context to formulate a natural, persona-appropriate response.
Format in a conversational way as if you're continuing the conversation.
Don't mention that you received function data or that you're processing a result.
Just incorporate the information naturally in your response as the "{persona}" persona.

IMPORTANT FUNCTION RESULT GUIDELINES:

1. For 'get_personas' results:
  - List all the available personas clearly
  - Mention which one is currently active
  - Be enthusiastic about the options

2. For 'set_persona' results:
  - If successful, express enthusiasm about the new persona
  - If failed, apologize and suggest available options
  - Don't mention technical details of the failure

3. For profile updates or data deletion:
  - Confirm the action naturally
  - Don't expose technical details
"""


def build_context_prompt(persona_name: str, profile: UserProfile | None) -> str:
    """Return the per-request context prompt listing the stored profile."""

    def _field(value: object) -> str:
        return str(value) if value not in (None, "") else _NOT_PROVIDED

    return _CONTEXT_TEMPLATE.format(
        persona=persona_name,
        name=_field(profile.name if profile else None),
        age=_field(profile.age if profile else None),
        occupation=_field(profile.occupation if profile else None),
        hobby=_field(profile.hobby if profile else None),
    )


def build_followup_instruction(persona_name: str) -> str:
    return _FOLLOWUP_TEMPLATE.format(persona=persona_name)


# ---------------------------------------------------------------------------
# Intent hints
# ---------------------------------------------------------------------------

_ASKING_FOR_PERSONAS = re.compile(
    r"(?:what|which|list|show|available|tell me about|what are the|can you list)"
    r".*(?:personas?|roles?|characters?|assistants?|modes?)",
    re.IGNORECASE,
)
_CHANGING_PERSONA = (
    re.compile(
        r"(?:switch|change|use|activate|be|become|act as|set|choose)(?: the| a| your)? "
        r"(?:personas?|roles?|characters?|assistants?|modes?)(?: to| as)?",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:i want|i'd like|can you be|be a|can i talk to|talk to)(?: the| a)? "
        r"([a-z]+)(?:persona|assistant|role|character|mode)?",
        re.IGNORECASE,
    ),
)
_ASKING_ABOUT_PROFILE = re.compile(
    r"(?:what|do you know|tell me|show me).*(?:my name|my age|my profile|my job|my hobby"
    r"|about me|my occupation|my info|my information)",
    re.IGNORECASE,
)
_PROVIDING_PROFILE = re.compile(
    r"(?:my name is|i am|i'm|my age is|i work as|my job is|my occupation is|my hobby is"
    r"|i like to|i enjoy)",
    re.IGNORECASE,
)
_DELETE_TARGETS = ("data", "information", "profile", "everything", "forget", "account")

HINT_PERSONAS = (
    "The user is specifically asking about available personas. You MUST use the "
    "get_personas function to respond appropriately."
)
HINT_CHANGE_PERSONA = (
    "The user is trying to change personas. Extract the requested persona name and "
    "use the set_persona function."
)
HINT_PROFILE_QUERY = (
    "The user is asking about their profile information. You MUST use the "
    "get_user_profile function to retrieve and share their stored information."
)
HINT_PROFILE_UPDATE = (
    "The user is sharing personal information. You MUST use the update_user_profile "
    "function to save this information to their profile."
)
HINT_DELETE = (
    "The user is asking to delete their data. You MUST use the delete_user_data "
    "function to handle this request appropriately."
)


def detect_intent_hints(message: str) -> list[str]:
    """Return the system hints matching the user's latest message, in fixed order."""
    text = message.lower()
    hints: list[str] = []
    if _ASKING_FOR_PERSONAS.search(text):
        hints.append(HINT_PERSONAS)
    if any(pattern.search(text) for pattern in _CHANGING_PERSONA):
        hints.append(HINT_CHANGE_PERSONA)
    if _ASKING_ABOUT_PROFILE.search(text):
        hints.append(HINT_PROFILE_QUERY)
    if _PROVIDING_PROFILE.search(text):
        hints.append(HINT_PROFILE_UPDATE)
    if "delete" in text and any(word in text for word in _DELETE_TARGETS):
        hints.append(HINT_DELETE)
    return hints


# ---------------------------------------------------------------------------
# Product chat
# ---------------------------------------------------------------------------

def build_product_prompt(product: Product, chunks: Sequence[Chunk]) -> str:
    """System prompt for a chat bound to one product's document."""
    lines = [
        product.system_prompt
        or (
            f"You are a knowledgeable assistant for the product \"{product.name}\". "
            "Answer questions using the product information and document excerpts below. "
            "If the answer is not in them, say so instead of guessing."
        ),
        "",
        "PRODUCT INFORMATION:",
        f"- Name: {product.name}",
    ]
    if product.description:
        lines.append(f"- Description: {product.description}")
    if chunks:
        lines += ["", "RELEVANT DOCUMENT EXCERPTS:"]
        for number, chunk in enumerate(chunks, start=1):
            page = chunk.metadata.get("page_start")
            label = f"[{number}]" if page is None else f"[{number}] (page {page})"
            lines += [label, chunk.content, ""]
    lines.append("Respond in plain conversational text without markdown formatting.")
    return "\n".join(lines).strip()
