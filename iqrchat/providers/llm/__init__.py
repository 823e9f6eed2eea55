"""Chat completion provider adapters.

One concrete implementation of IChatCompletionProvider
(iqrchat/interfaces/chat_completion_provider.py):
    - OpenAIChatProvider -- gpt-4o with streamed tool calls (also supports
      OpenAI-compatible APIs through ``openai_base_url``)

main.py builds it when OPENAI_API_KEY is set and stores it on app.state.
"""

from iqrchat.providers.llm.openai_chat_provider import OpenAIChatProvider

__all__ = ["OpenAIChatProvider"]
