"""
OpenAI backend adapter.

Talks to the Chat Completions API (``/chat/completions``), which is also
spoken by many compatible servers. Tool calls and results are threaded
through the native ``tool_calls`` / ``tool_call_id`` slots. Servers that
stream reasoning put it in ``reasoning_content`` (or ``reasoning``); it is
surfaced as thinking.

Streaming uses Server-Sent Events with ``stream_options.include_usage``
so token counts arrive in a final chunk before ``[DONE]``.
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

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"

STREAM_DONE = "[DONE]"


def openai_tool_choice(choice: ToolChoice) -> str | dict[str, Any] | None:
    """Native ``tool_choice`` value, or None when tools are not sent."""
    if choice.mode == ToolChoiceMode.AUTO:
        return "auto"
    if choice.mode == ToolChoiceMode.ANY:
        return "required"
    if choice.mode == ToolChoiceMode.NAMED:
        return {"type": "function", "function": {"name": choice.name}}
    return None


def image_url(image: str) -> str:
    """Data URL for an opaque base64 image."""
    if image.startswith(("data:", "http://", "https://")):
        return image
    return f"data:image/png;base64,{image}"


class OpenAIClient(ChatClient):
    """
    ChatClient implementation for OpenAI and compatible servers.

    Example:
        client = OpenAIClient(model="gpt-4o-mini", api_key=os.environ["OPENAI_API_KEY"])
        reply = client.chat_with_tool_choice(history, ToolChoice.any())
    """

    backend = "openai"
    default_base_url = DEFAULT_OPENAI_URL

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    def _build_request(
        self,
        messages: Sequence[Message],
        tools: list[ToolSpec],
        choice: ToolChoice,
        thinking: bool,
    ) -> ChatRequest:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
        }
        if self.max_tokens:
            payload["max_completion_tokens"] = self.max_tokens

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
            payload["tool_choice"] = openai_tool_choice(choice)

        if self.stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}

        return ChatRequest(path="/chat/completions", payload=payload)

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        links = link_tool_turns(messages)
        wire: list[dict[str, Any]] = []

        for index, message in enumerate(messages):
            if isinstance(message, SystemMessage):
                wire.append({"role": "system", "content": message.content})
            elif isinstance(message, UserMessage):
                if message.images:
                    parts: list[dict[str, Any]] = [{"type": "text", "text": message.content}]
                    parts.extend(
                        {"type": "image_url", "image_url": {"url": image_url(image)}}
                        for image in message.images
                    )
                    wire.append({"role": "user", "content": parts})
                else:
                    wire.append({"role": "user", "content": message.content})
            elif isinstance(message, AssistantMessage):
                wire.append({"role": "assistant", "content": message.content})
            elif isinstance(message, ToolCallMessage):
                link = links[index]
                wire.append({
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": link.call_id,
                            "type": "function",
                            "function": {
                                "name": message.tool_name,
                                "arguments": json.dumps(message.arguments),
                            },
                        }
                    ],
                })
            elif isinstance(message, ToolResultMessage):
                link = links[index]
                if link.paired:
                    wire.append({
                        "role": "tool",
                        "tool_call_id": link.call_id,
                        "content": message.text,
                    })
                else:
                    # The API rejects tool messages without a preceding call
                    wire.append({"role": "user", "content": f"Tool result: {message.text}"})

        return wire

    # -------------------------------------------------------------------------
    # Response decoding
    # -------------------------------------------------------------------------

    def _decode_response(self, data: dict[str, Any]) -> Iterator[StreamEvent]:
        self._check_error(data)
        if data.get("usage"):
            yield UsageReport(_usage(data["usage"]))

        choices = data.get("choices") or []
        if not choices:
            yield Done(reason="empty")
            return

        message = choices[0].get("message") or {}
        reasoning = message.get("reasoning_content") or message.get("reasoning")
        if reasoning:
            yield ThinkingDelta(reasoning)
        if message.get("content"):
            yield TextDelta(message["content"])

        for index, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            yield ToolCallFragment(
                index=index,
                call_id=call.get("id"),
                name=function.get("name"),
                arguments_delta=function.get("arguments") or "",
                final=True,
            )

        yield Done(reason=choices[0].get("finish_reason") or "stop")

    def _decode_stream(self, lines: Iterator[str]) -> Iterator[StreamEvent]:
        finish_reason = "stop"
        for event in iter_sse(lines):
            if event.data.strip() == STREAM_DONE:
                yield Done(reason=finish_reason)
                return

            try:
                chunk = json.loads(event.data)
            except json.JSONDecodeError as e:
                raise ChatError(
                    message=f"malformed stream chunk from openai: {event.data[:200]}",
                    backend=self.backend,
                    model=self.model,
                ) from e
            self._check_error(chunk)

            if chunk.get("usage"):
                yield UsageReport(_usage(chunk["usage"]))

            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                if reasoning:
                    yield ThinkingDelta(reasoning)
                if delta.get("content"):
                    yield TextDelta(delta["content"])
                for call in delta.get("tool_calls") or []:
                    function = call.get("function") or {}
                    yield ToolCallFragment(
                        index=call.get("index", 0),
                        call_id=call.get("id"),
                        name=function.get("name"),
                        arguments_delta=function.get("arguments") or "",
                    )
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

    def _check_error(self, data: dict[str, Any]) -> None:
        error = data.get("error")
        if not error:
            return
        detail = error.get("message") if isinstance(error, dict) else str(error)
        raise ChatError(
            message=f"openai error: {detail}",
            backend=self.backend,
            model=self.model,
        )


def _usage(raw: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        input_tokens=raw.get("prompt_tokens") or 0,
        output_tokens=raw.get("completion_tokens") or 0,
        total_tokens=raw.get("total_tokens") or 0,
    )
