"""
Gemini backend adapter.

Talks to the Generative Language REST API:

    POST /models/{model}:generateContent
    POST /models/{model}:streamGenerateContent?alt=sse

Roles are ``user`` and ``model``; system messages become the top-level
``systemInstruction``. Tool calls are ``functionCall`` parts on a model
turn and results are ``functionResponse`` parts on the next user turn,
matched by function name. Tool choice maps onto
``toolConfig.functionCallingConfig`` (AUTO / ANY / NONE, with
``allowedFunctionNames`` for a named tool).

The stream has no terminal sentinel: the chunk carrying a
``finishReason`` ends the turn.
"""

import copy
import itertools
import json
from collections.abc import Generator, Iterator, Sequence
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

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"

# Model families that return thought summaries
THINKING_MODELS = ("gemini-2.5", "gemini-3")


def supports_thinking(model: str) -> bool:
    lowered = model.lower()
    return any(family in lowered for family in THINKING_MODELS)


def gemini_parameters(schema: dict[str, Any]) -> dict[str, Any]:
    """Adapt a JSON-schema object to the OpenAPI subset Gemini accepts."""
    adapted = copy.deepcopy(schema)
    for prop in adapted.get("properties", {}).values():
        # Arrays must declare their item type
        if prop.get("type") == "array" and "items" not in prop:
            prop["items"] = {"type": "string"}
    return adapted


def function_calling_config(choice: ToolChoice) -> dict[str, Any]:
    if choice.mode == ToolChoiceMode.ANY:
        return {"mode": "ANY"}
    if choice.mode == ToolChoiceMode.NAMED:
        return {"mode": "ANY", "allowedFunctionNames": [choice.name]}
    if choice.mode == ToolChoiceMode.NONE:
        return {"mode": "NONE"}
    return {"mode": "AUTO"}


class GeminiClient(ChatClient):
    """ChatClient implementation for Google Gemini."""

    backend = "gemini"
    default_base_url = DEFAULT_GEMINI_URL

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"x-goog-api-key": self.api_key}

    def _build_request(
        self,
        messages: Sequence[Message],
        tools: list[ToolSpec],
        choice: ToolChoice,
        thinking: bool,
    ) -> ChatRequest:
        payload: dict[str, Any] = {"contents": self._convert_messages(messages)}

        system = "\n\n".join(
            m.content for m in messages if isinstance(m, SystemMessage) and m.content
        )
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        if tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": spec.name,
                            "description": spec.description,
                            "parameters": gemini_parameters(spec.parameters),
                        }
                        for spec in tools
                    ]
                }
            ]
            payload["toolConfig"] = {"functionCallingConfig": function_calling_config(choice)}

        generation: dict[str, Any] = {}
        if self.max_tokens:
            generation["maxOutputTokens"] = self.max_tokens
        if supports_thinking(self.model):
            generation["thinkingConfig"] = {"includeThoughts": thinking}
        if generation:
            payload["generationConfig"] = generation

        if self.stream:
            return ChatRequest(
                path=f"/models/{self.model}:streamGenerateContent",
                payload=payload,
                params={"alt": "sse"},
            )
        return ChatRequest(path=f"/models/{self.model}:generateContent", payload=payload)

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        links = link_tool_turns(messages)
        contents: list[dict[str, Any]] = []

        def append(role: str, parts: list[dict[str, Any]]) -> None:
            if not parts:
                return
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].extend(parts)
            else:
                contents.append({"role": role, "parts": parts})

        for index, message in enumerate(messages):
            if isinstance(message, UserMessage):
                parts: list[dict[str, Any]] = []
                if message.content:
                    parts.append({"text": message.content})
                parts.extend(
                    {"inlineData": {"mimeType": "image/png", "data": image}}
                    for image in message.images
                )
                append("user", parts)
            elif isinstance(message, AssistantMessage):
                if message.content:
                    append("model", [{"text": message.content}])
            elif isinstance(message, ToolCallMessage):
                append("model", [
                    {"functionCall": {"name": message.tool_name, "args": message.arguments}}
                ])
            elif isinstance(message, ToolResultMessage):
                link = links[index]
                if link.paired:
                    if message.is_error:
                        response = {"error": message.error}
                    else:
                        response = {"content": message.content}
                    append("user", [
                        {"functionResponse": {"name": link.tool_name, "response": response}}
                    ])
                else:
                    append("user", [{"text": f"Tool result: {message.text}"}])

        return contents

    # -------------------------------------------------------------------------
    # Response decoding
    # -------------------------------------------------------------------------

    def _decode_response(self, data: dict[str, Any]) -> Iterator[StreamEvent]:
        finish = yield from self._chunk_events(data, itertools.count())
        yield Done(reason=finish or "STOP")

    def _decode_stream(self, lines: Iterator[str]) -> Iterator[StreamEvent]:
        calls = itertools.count()
        for event in iter_sse(lines):
            try:
                chunk = json.loads(event.data)
            except json.JSONDecodeError as e:
                raise ChatError(
                    message=f"malformed stream chunk from gemini: {event.data[:200]}",
                    backend=self.backend,
                    model=self.model,
                ) from e
            finish = yield from self._chunk_events(chunk, calls)
            if finish:
                yield Done(reason=finish)
                return

    def _chunk_events(
        self, chunk: dict[str, Any], calls: Iterator[int]
    ) -> Generator[StreamEvent, None, str | None]:
        """Yield events for one response chunk and return its finish reason."""
        if "error" in chunk:
            error = chunk["error"]
            detail = error.get("message") if isinstance(error, dict) else str(error)
            raise ChatError(
                message=f"gemini error: {detail}",
                backend=self.backend,
                model=self.model,
            )

        usage = chunk.get("usageMetadata")
        if usage and (usage.get("promptTokenCount") or usage.get("candidatesTokenCount")):
            yield UsageReport(
                TokenUsage(
                    input_tokens=usage.get("promptTokenCount") or 0,
                    output_tokens=usage.get("candidatesTokenCount") or 0,
                    total_tokens=usage.get("totalTokenCount") or 0,
                )
            )

        candidates = chunk.get("candidates") or []
        if not candidates:
            block_reason = (chunk.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise ChatError(
                    message=f"gemini blocked the prompt: {block_reason}",
                    backend=self.backend,
                    model=self.model,
                )
            return None

        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "functionCall" in part:
                call = part["functionCall"]
                yield ToolCallFragment(
                    index=next(calls),
                    call_id=call.get("id"),
                    name=call.get("name"),
                    arguments=call.get("args") or {},
                    final=True,
                )
            elif part.get("text"):
                if part.get("thought"):
                    yield ThinkingDelta(part["text"])
                else:
                    yield TextDelta(part["text"])

        return candidate.get("finishReason")
