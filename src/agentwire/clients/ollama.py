"""
Ollama backend adapter.

Ollama runs local models behind a small HTTP API. This adapter talks to
``/api/chat`` and reads newline-delimited JSON when streaming.

Requirements:
    - Ollama must be installed and running (`ollama serve`)
    - The model must be pulled (`ollama pull gpt-oss:latest`)

Ollama has no native tool choice parameter. Tool choice is expressed by a
directive system message instead: AUTO encourages tool use, ANY and NAMED
mandate it. Thinking is requested with the ``think`` flag, which is only
sent to models known to support it.

Usage:
    from agentwire.clients.ollama import OllamaClient

    with OllamaClient(model="gpt-oss:latest", registry=toolset) as client:
        reply = client.chat([UserMessage(content="List the files here")])
"""

import itertools
from collections.abc import Iterator, Sequence
from typing import Any

import httpx

from agentwire.clients.base import ChatClient, ChatRequest, ToolSpec
from agentwire.clients.stream import (
    Done,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallFragment,
    UsageReport,
)
from agentwire.errors import ChatError, ModelNotFoundError
from agentwire.schema import (
    AssistantMessage,
    Message,
    SystemMessage,
    TokenUsage,
    ToolCallMessage,
    ToolChoice,
    ToolChoiceMode,
    ToolResultMessage,
    UserMessage,
    link_tool_turns,
)

DEFAULT_OLLAMA_URL = "http://localhost:11434"

TEMPERATURE = 0.1

# Model families that accept the ``think`` request flag
THINKING_MODELS = ("gpt-oss", "deepseek-r1", "qwen3")

AUTO_DIRECTIVE = (
    "You are a helpful assistant. When the user asks you to perform tasks, "
    "you should use the available tools to help them. Always use the "
    "appropriate tool when one is available for the task at hand."
)
ANY_DIRECTIVE = (
    "You are a helpful assistant. You MUST use at least one of the available "
    "tools to help the user with their request. Do not provide a response "
    "without using a tool."
)
NAMED_DIRECTIVE = (
    "You are a helpful assistant. You MUST use the '{name}' tool to help the "
    "user with their request. Do not provide a response without using this "
    "specific tool."
)


def is_thinking_model(model: str) -> bool:
    """True if the model belongs to a family that supports ``think``."""
    lowered = model.lower()
    return any(family in lowered for family in THINKING_MODELS)


def tool_directive(choice: ToolChoice) -> str | None:
    """System directive for a tool choice, or None when tools are hidden."""
    if choice.mode == ToolChoiceMode.AUTO:
        return AUTO_DIRECTIVE
    if choice.mode == ToolChoiceMode.ANY:
        return ANY_DIRECTIVE
    if choice.mode == ToolChoiceMode.NAMED:
        return NAMED_DIRECTIVE.format(name=choice.name)
    return None


class OllamaClient(ChatClient):
    """
    ChatClient implementation for Ollama.

    Example:
        client = OllamaClient(model="qwen3:8b", thinking=True)
        client.set_registry(FileSystemToolset(FileSystemConfig(), "."))
        reply = client.chat_with_tool_choice(history, ToolChoice.tool("read_file"))
    """

    backend = "ollama"
    default_base_url = DEFAULT_OLLAMA_URL
    default_max_tokens = 4096

    def _build_request(
        self,
        messages: Sequence[Message],
        tools: list[ToolSpec],
        choice: ToolChoice,
        thinking: bool,
    ) -> ChatRequest:
        wire_messages = self._convert_messages(messages)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": wire_messages,
            "stream": self.stream,
            "options": {
                "temperature": TEMPERATURE,
                "num_predict": self.max_tokens,
            },
        }

        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.description,
                        "parameters": spec.parameters,
                    },
                }
                for spec in tools
            ]
            directive = tool_directive(choice)
            if directive:
                _add_directive(wire_messages, directive)

        if is_thinking_model(self.model):
            payload["think"] = thinking

        return ChatRequest(path="/api/chat", payload=payload)

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        links = link_tool_turns(messages)
        wire: list[dict[str, Any]] = []

        for index, message in enumerate(messages):
            if isinstance(message, SystemMessage):
                wire.append({"role": "system", "content": message.content})
            elif isinstance(message, UserMessage):
                entry: dict[str, Any] = {"role": "user", "content": message.content}
                if message.images:
                    entry["images"] = list(message.images)
                wire.append(entry)
            elif isinstance(message, AssistantMessage):
                entry = {"role": "assistant", "content": message.content}
                if message.thinking:
                    entry["thinking"] = message.thinking
                wire.append(entry)
            elif isinstance(message, ToolCallMessage):
                wire.append({
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {
                            "function": {
                                "name": message.tool_name,
                                "arguments": message.arguments,
                            }
                        }
                    ],
                })
            elif isinstance(message, ToolResultMessage):
                link = links[index]
                content = f"Error: {message.error}" if message.is_error else message.content
                entry = {"role": "tool", "content": content}
                if link.tool_name:
                    entry["tool_name"] = link.tool_name
                wire.append(entry)

        return wire

    # -------------------------------------------------------------------------
    # Response decoding
    # -------------------------------------------------------------------------

    def _decode_response(self, data: dict[str, Any]) -> Iterator[StreamEvent]:
        yield from self._chunk_events(data, itertools.count())
        yield Done(reason=data.get("done_reason") or "stop")

    def _decode_stream(self, lines: Iterator[str]) -> Iterator[StreamEvent]:
        calls = itertools.count()
        for chunk in self._json_lines(lines):
            yield from self._chunk_events(chunk, calls)
            if chunk.get("done"):
                yield Done(reason=chunk.get("done_reason") or "stop")
                return

    def _chunk_events(self, chunk: dict[str, Any], calls: Iterator[int]) -> Iterator[StreamEvent]:
        if "error" in chunk:
            error = str(chunk["error"])
            if "model" in error and "not found" in error:
                raise ModelNotFoundError(backend=self.backend, model=self.model)
            raise ChatError(
                message=f"ollama error: {error}",
                backend=self.backend,
                model=self.model,
            )

        message = chunk.get("message") or {}
        if message.get("thinking"):
            yield ThinkingDelta(message["thinking"])
        if message.get("content"):
            yield TextDelta(message["content"])

        if chunk.get("done") and ("prompt_eval_count" in chunk or "eval_count" in chunk):
            yield UsageReport(
                TokenUsage(
                    input_tokens=chunk.get("prompt_eval_count") or 0,
                    output_tokens=chunk.get("eval_count") or 0,
                )
            )

        # Ollama sends each tool call whole, never in pieces
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments")
            yield ToolCallFragment(
                index=next(calls),
                call_id=call.get("id"),
                name=function.get("name"),
                arguments=arguments if isinstance(arguments, dict) else None,
                arguments_delta=arguments if isinstance(arguments, str) else "",
                final=True,
            )

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def list_models(self) -> list[str]:
        """Names of the models pulled into the local Ollama."""
        response = self._get_client().get("/api/tags")
        if response.status_code != 200:
            return []
        return [m["name"] for m in response.json().get("models", [])]

    def check_connection(self) -> tuple[bool, str]:
        """
        Check if Ollama is accessible and the model is available.

        Returns:
            Tuple of (is_ok, message)
        """
        try:
            models = self.list_models()
        except httpx.ConnectError:
            return False, f"Cannot connect to Ollama at {self.base_url}. Is it running?"
        except httpx.HTTPError as e:
            return False, f"Error checking Ollama: {e}"

        if not models:
            return False, f"No models available. Run: ollama pull {self.model}"

        # Accept both "model" and "model:tag"
        model_base = self.model.split(":")[0]
        available = any(m == self.model or m.startswith(f"{model_base}:") for m in models)
        if not available:
            return (
                False,
                f"Model '{self.model}' not found. Available: {', '.join(models[:3])}",
            )
        return True, f"Connected to Ollama, model '{self.model}' available"


def _add_directive(wire_messages: list[dict[str, Any]], directive: str) -> None:
    """Prepend the directive, or extend a leading system message with it."""
    if wire_messages and wire_messages[0]["role"] == "system":
        existing = wire_messages[0]["content"]
        wire_messages[0] = {
            **wire_messages[0],
            "content": f"{existing}\n\n{directive}" if existing else directive,
        }
    else:
        wire_messages.insert(0, {"role": "system", "content": directive})
