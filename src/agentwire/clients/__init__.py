"""
Backend adapters for agentwire.

Every adapter implements the ChatClient contract: translate a history,
declare the registered tools, apply the tool choice, and return exactly
one Message per call.

Architecture:
    - ChatClient: Abstract base with tool declarations and httpx transport
    - merge_stream: Folds typed response events into the final Message
    - OllamaClient / OpenAIClient / AnthropicClient / GeminiClient
    - create_client: Picks and configures the adapter from LLMSettings
"""

from agentwire.clients.anthropic import AnthropicClient
from agentwire.clients.base import ChatClient, ChatRequest, ToolSpec, build_parameters
from agentwire.clients.factory import create_client
from agentwire.clients.gemini import GeminiClient
from agentwire.clients.ollama import OllamaClient
from agentwire.clients.openai import OpenAIClient
from agentwire.clients.stream import (
    Done,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallFragment,
    UsageReport,
    merge_stream,
)

__all__ = [
    "ChatClient",
    "ChatRequest",
    "ToolSpec",
    "build_parameters",
    "create_client",
    "OllamaClient",
    "OpenAIClient",
    "AnthropicClient",
    "GeminiClient",
    "Done",
    "StreamEvent",
    "TextDelta",
    "ThinkingDelta",
    "ToolCallFragment",
    "UsageReport",
    "merge_stream",
]
