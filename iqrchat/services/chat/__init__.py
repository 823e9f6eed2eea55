"""Chat services: the streaming orchestrator, tool registry and handlers."""

from iqrchat.services.chat.arguments import parse_tool_arguments
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.product_chat import ProductChatService
from iqrchat.services.chat.tool_handlers import (
    FUNCTION_SCHEMAS,
    ProfileToolHandlers,
    register_default_tools,
)
from iqrchat.services.chat.tool_registry import ToolContext, ToolDispatchRegistry

__all__ = [
    "FUNCTION_SCHEMAS",
    "ChatOrchestrator",
    "ProductChatService",
    "ProfileToolHandlers",
    "ToolContext",
    "ToolDispatchRegistry",
    "parse_tool_arguments",
    "register_default_tools",
]
