"""
Anthropic backend adapter.

Talks to the Messages API (``/v1/messages``). The wire format differs from
the chat-completions family in a few ways this module takes care of:

    - System messages go in the top-level ``system`` field
    - Roles must alternate, so consecutive turns of the same role are
      merged into one message with several content blocks
    - Tool calls are ``tool_use`` blocks on an assistant turn and results
      are ``tool_result`` blocks on the following user turn
    - ``max_tokens`` is mandatory

Extended thinking is requested for capable models when the turn lets the
model decide (AUTO or NONE). The API refuses thinking together with a
forced tool choice, and needs signed thinking blocks replayed inside a
tool loop, so thinking is left off in both cases.
"""

import json
from collections.abc import Iterator, Sequence
from typing import Any

from agentwire.clients.base import ChatClient, ChatRequest, ToolSpec
from agentwire.clients.stream import (
    Done,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolCallFragment,
    UsageReport,
    iter_sse,
)
from agentwire.errors import ChatError
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

DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"

THINKING_BUDGET_TOKENS = 2048

# Model families with extended thinking
THINKING_MODELS = (
    "claude-3-7-sonnet",
    "claude-sonnet-4",
    "claude-opus-4",
    "claude-haiku-4",
)


def supports_thinking(model: str) -> bool:
    lowered = model.lower()
    return any(family in lowered for family in THINKING_MODELS)


def anthropic_tool_choice(choice: ToolChoice) -> dict[str, Any] | None:
    if choice.mode == ToolChoiceMode.AUTO:
        return {"type": "auto"}
    if choice.mode == ToolChoiceMode.ANY:
        return {"type": "any"}
    if choice.mode == ToolChoiceMode.NAMED:
        return {"type": "tool", "name": choice.name}
    return None


def in_tool_loop(messages: Sequence[Message]) -> bool:
    """True if tool turns follow the most recent user message."""
    for message in reversed(messages):
        if isinstance(message, (ToolCallMessage, ToolResultMessage)):
            return True
        if isinstance(message, UserMessage):
            return False
    return False


class AnthropicClient(ChatClient):
    """ChatClient implementation for the Anthropic Messages API."""

    backend = "anthropic"
    default_base_url = DEFAULT_ANTHROPIC_URL
    default_max_tokens = 8192

    def _headers(self) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _build_request(
        self,
        messages: Sequence[Message],
        tools: list[ToolSpec],
        choice: ToolChoice,
        thinking: bool,
    ) -> ChatRequest:
        system = "\n\n".join(
            m.content for m in messages if isinstance(m, SystemMessage) and m.content
        )
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(messages),
        }
        if system:
            payload["system"] = system

        if tools:
            payload["tools"] = [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "input_schema": spec.parameters,
                }
                for spec in tools
            ]
            payload["tool_choice"] = anthropic_tool_choice(choice)

        if (
            thinking
            and supports_thinking(self.model)
            and choice.mode in (ToolChoiceMode.AUTO, ToolChoiceMode.NONE)
            and self.max_tokens > THINKING_BUDGET_TOKENS
            and not in_tool_loop(messages)
        ):
            payload["thinking"] = {"type": "enabled", "budget_tokens": THINKING_BUDGET_TOKENS}

        if self.stream:
            payload["stream"] = True

        return ChatRequest(path="/v1/messages", payload=payload)

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        links = link_tool_turns(messages)
        wire: list[dict[str, Any]] = []

        def append(role: str, blocks: list[dict[str, Any]]) -> None:
            if not blocks:
                return
            if wire and wire[-1]["role"] == role:
                wire[-1]["content"].extend(blocks)
            else:
                wire.append({"role": role, "content": blocks})

        for index, message in enumerate(messages):
            if isinstance(message, UserMessage):
                blocks = [
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": "image/png", "data": image},
                    }
                    for image in message.images
                ]
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                append("user", blocks)
            elif isinstance(message, AssistantMessage):
                if message.content:
                    append("assistant", [{"type": "text", "text": message.content}])
            elif isinstance(message, ToolCallMessage):
                append("assistant", [{
                    "type": "tool_use",
                    "id": links[index].call_id,
                    "name": message.tool_name,
                    "input": message.arguments,
                }])
            elif isinstance(message, ToolResultMessage):
                link = links[index]
                if link.paired:
                    block: dict[str, Any] = {
                        "type": "tool_result",
                        "tool_use_id": link.call_id,
                        "content": message.text,
                    }
                    if message.is_error:
                        block["is_error"] = True
                    append("user", [block])
                else:
                    append("user", [{"type": "text", "text": f"Tool result: {message.text}"}])

        return wire

    # -------------------------------------------------------------------------
    # Response decoding
    # -------------------------------------------------------------------------

    def _decode_response(self, data: dict[str, Any]) -> Iterator[StreamEvent]:
        self._check_error(data)
        if data.get("usage"):
            yield UsageReport(_usage(data["usage"]))

        for index, block in enumerate(data.get("content") or []):
            kind = block.get("type")
            if kind == "thinking" and block.get("thinking"):
                yield ThinkingDelta(block["thinking"])
            elif kind == "text" and block.get("text"):
                yield TextDelta(block["text"])
            elif kind == "tool_use":
                yield ToolCallFragment(
                    index=index,
                    call_id=block.get("id"),
                    name=block.get("name"),
                    arguments=block.get("input") or {},
                    final=True,
                )

        yield Done(reason=data.get("stop_reason") or "end_turn")

    def _decode_stream(self, lines: Iterator[str]) -> Iterator[StreamEvent]:
        tool_blocks: set[int] = set()
        stop_reason = "end_turn"

        for event in iter_sse(lines):
            try:
                data = json.loads(event.data)
            except json.JSONDecodeError as e:
                raise ChatError(
                    message=f"malformed stream event from anthropic: {event.data[:200]}",
                    backend=self.backend,
                    model=self.model,
                ) from e

            kind = data.get("type") or event.event
            if kind == "error":
                self._check_error(data)

            elif kind == "message_start":
                usage = (data.get("message") or {}).get("usage")
                if usage:
                    yield UsageReport(_usage(usage))

            elif kind == "content_block_start":
                block = data.get("content_block") or {}
                if block.get("type") == "tool_use":
                    index = data.get("index", 0)
                    tool_blocks.add(index)
                    yield ToolCallFragment(
                        index=index,
                        call_id=block.get("id"),
                        name=block.get("name"),
                    )

            elif kind == "content_block_delta":
                delta = data.get("delta") or {}
                delta_type = delta.get("type")
                if delta_type == "text_delta" and delta.get("text"):
                    yield TextDelta(delta["text"])
                elif delta_type == "thinking_delta" and delta.get("thinking"):
                    yield ThinkingDelta(delta["thinking"])
                elif delta_type == "input_json_delta":
                    yield ToolCallFragment(
                        index=data.get("index", 0),
                        arguments_delta=delta.get("partial_json") or "",
                    )

            elif kind == "content_block_stop":
                index = data.get("index", 0)
                if index in tool_blocks:
                    yield ToolCallFragment(index=index, final=True)

            elif kind == "message_delta":
                stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                if data.get("usage"):
                    yield UsageReport(_usage(data["usage"]))

            elif kind == "message_stop":
                yield Done(reason=stop_reason)
                return

    def _check_error(self, data: dict[str, Any]) -> None:
        if data.get("type") != "error":
            return
        error = data.get("error") or {}
        raise ChatError(
            message=f"anthropic error: {error.get('type', 'error')}: {error.get('message', '')}",
            backend=self.backend,
            model=self.model,
        )


def _usage(raw: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        input_tokens=raw.get("input_tokens") or 0,
        output_tokens=raw.get("output_tokens") or 0,
    )
