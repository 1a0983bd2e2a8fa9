"""
Unit tests for the Anthropic adapter.

Tests cover:
- Request payload: system hoisting, headers, tool_choice
- When extended thinking is requested
- Role merging and tool_use / tool_result threading
- SSE stream and single-shot decoding
"""

import json
from collections.abc import Callable

import pytest

from agentwire.clients import AnthropicClient
from agentwire.clients.anthropic import THINKING_BUDGET_TOKENS, in_tool_loop
from agentwire.errors import ChatError
from agentwire.schema import (
    AssistantMessage,
    SystemMessage,
    TokenUsage,
    ToolCallMessage,
    ToolChoice,
    ToolResultMessage,
    UserMessage,
)
from agentwire.tools import ToolRegistry

from conftest import RecordingTransport

HISTORY = [UserMessage(content="summarize a.txt")]

TEXT_REPLY = {
    "type": "message",
    "role": "assistant",
    "content": [{"type": "text", "text": "Hello"}],
    "stop_reason": "end_turn",
    "usage": {"input_tokens": 10, "output_tokens": 4},
}


def sse(*events: dict) -> list[str]:
    lines: list[str] = []
    for event in events:
        lines.extend([f"event: {event['type']}", f"data: {json.dumps(event)}", ""])
    return lines


def text_delta(text: str, index: int = 0) -> dict:
    delta = {"type": "text_delta", "text": text}
    return {"type": "content_block_delta", "index": index, "delta": delta}


def make_client(
    transport: RecordingTransport,
    model: str = "claude-sonnet-4-5",
    stream: bool = False,
    registry: ToolRegistry | None = None,
) -> AnthropicClient:
    return AnthropicClient(
        model=model,
        api_key="sk-ant-test",
        stream=stream,
        registry=registry,
        client=transport.client(),
    )


# =============================================================================
# Request Tests
# =============================================================================


class TestRequest:
    """Tests for the /v1/messages payload."""

    def test_basic_payload(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        history = [SystemMessage(content="Be brief."), SystemMessage(content="No lists."), *HISTORY]
        make_client(transport).chat(history)

        request = transport.requests[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        payload = transport.last_payload
        assert payload["system"] == "Be brief.\n\nNo lists."
        assert payload["max_tokens"] == 8192
        assert payload["messages"] == [
            {"role": "user", "content": [{"type": "text", "text": "summarize a.txt"}]}
        ]
        assert "tools" not in payload

    def test_tools(
        self,
        recording: Callable[..., RecordingTransport],
        echo_registry: ToolRegistry,
    ) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport, registry=echo_registry).chat(HISTORY)
        payload = transport.last_payload
        assert payload["tools"][0] == {
            "name": "echo",
            "description": "Echo text (echo)",
            "input_schema": {
                "type": "object",
                "properties": {"text": {"type": "string", "description": "Text to echo"}},
                "required": ["text"],
            },
        }
        assert payload["tool_choice"] == {"type": "auto"}

    @pytest.mark.parametrize(
        ("choice", "expected"),
        [
            (ToolChoice.any(), {"type": "any"}),
            (ToolChoice.tool("shout"), {"type": "tool", "name": "shout"}),
        ],
    )
    def test_forced_choice(
        self,
        recording: Callable[..., RecordingTransport],
        echo_registry: ToolRegistry,
        choice: ToolChoice,
        expected: dict,
    ) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport, registry=echo_registry).chat_with_tool_choice(HISTORY, choice)
        assert transport.last_payload["tool_choice"] == expected

    def test_role_merging_and_tool_threading(
        self, recording: Callable[..., RecordingTransport]
    ) -> None:
        transport = recording(TEXT_REPLY)
        history = [
            UserMessage(content="read it"),
            AssistantMessage(content="Reading."),
            ToolCallMessage(call_id="toolu_1", tool_name="read_file", arguments={"path": "a"}),
            ToolResultMessage(call_id="toolu_1", error="file does not exist"),
            UserMessage(content="try b"),
        ]
        make_client(transport).chat(history)

        assert transport.last_payload["messages"] == [
            {"role": "user", "content": [{"type": "text", "text": "read it"}]},
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Reading."},
                    {
                        "type": "tool_use",
                        "id": "toolu_1",
                        "name": "read_file",
                        "input": {"path": "a"},
                    },
                ],
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_1",
                        "content": "file does not exist",
                        "is_error": True,
                    },
                    {"type": "text", "text": "try b"},
                ],
            },
        ]

    def test_unpaired_result_as_text(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport).chat([*HISTORY, ToolResultMessage(call_id="x", content="data")])
        blocks = transport.last_payload["messages"][0]["content"]
        assert blocks[-1] == {"type": "text", "text": "Tool result: data"}

    def test_images(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport).chat([UserMessage(content="see", images=("QUJD",))])
        blocks = transport.last_payload["messages"][0]["content"]
        assert blocks[0]["source"] == {"type": "base64", "media_type": "image/png", "data": "QUJD"}
        assert blocks[1] == {"type": "text", "text": "see"}


class TestThinking:
    """Tests for when extended thinking is requested."""

    def test_enabled_for_capable_model(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport).chat(HISTORY, enable_thinking=True)
        assert transport.last_payload["thinking"] == {
            "type": "enabled",
            "budget_tokens": THINKING_BUDGET_TOKENS,
        }

    def test_not_requested(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport).chat(HISTORY)
        assert "thinking" not in transport.last_payload

    def test_old_model(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        make_client(transport, model="claude-3-5-haiku-latest").chat(HISTORY, enable_thinking=True)
        assert "thinking" not in transport.last_payload

    def test_off_for_forced_choice(
        self,
        recording: Callable[..., RecordingTransport],
        echo_registry: ToolRegistry,
    ) -> None:
        transport = recording(TEXT_REPLY)
        client = make_client(transport, registry=echo_registry)
        client.thinking = True
        client.chat_with_tool_choice(HISTORY, ToolChoice.any())
        assert "thinking" not in transport.last_payload

    def test_off_in_tool_loop(self, recording: Callable[..., RecordingTransport]) -> None:
        transport = recording(TEXT_REPLY)
        history = [
            *HISTORY,
            ToolCallMessage(call_id="t1", tool_name="read_file"),
            ToolResultMessage(call_id="t1", content="text"),
        ]
        make_client(transport).chat(history, enable_thinking=True)
        assert "thinking" not in transport.last_payload

    def test_in_tool_loop(self) -> None:
        assert not in_tool_loop(HISTORY)
        assert in_tool_loop([*HISTORY, ToolCallMessage(tool_name="x")])
        assert not in_tool_loop([ToolCallMessage(tool_name="x"), UserMessage(content="next")])


# =============================================================================
# Decoding Tests
# =============================================================================


class TestDecoding:
    """Tests for response decoding."""

    def test_single_shot_text(self, recording: Callable[..., RecordingTransport]) -> None:
        reply = make_client(recording(TEXT_REPLY)).chat(HISTORY)
        assert isinstance(reply, AssistantMessage)
        assert reply.content == "Hello"
        assert reply.usage == TokenUsage(input_tokens=10, output_tokens=4)

    def test_single_shot_tool_use(self, recording: Callable[..., RecordingTransport]) -> None:
        body = {
            "content": [
                {"type": "thinking", "thinking": "need the file", "signature": "sig"},
                {"type": "text", "text": "Let me read it."},
                {"type": "tool_use", "id": "toolu_9", "name": "read_file", "input": {"path": "a"}},
            ],
            "stop_reason": "tool_use",
        }
        reply = make_client(recording(body)).chat(HISTORY)
        assert isinstance(reply, ToolCallMessage)
        assert reply.call_id == "toolu_9"
        assert reply.arguments == {"path": "a"}
        assert reply.thinking == "need the file"

    def test_stream_text(self, recording: Callable[..., RecordingTransport]) -> None:
        lines = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 25}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text"}},
            {"type": "ping"},
            text_delta("Hel"),
            text_delta("lo"),
            {"type": "content_block_stop", "index": 0},
            {
                "type": "message_delta",
                "delta": {"stop_reason": "end_turn"},
                "usage": {"output_tokens": 6},
            },
            {"type": "message_stop"},
        )
        reply = make_client(recording(lines), stream=True).chat(HISTORY)
        assert reply.content == "Hello"
        assert reply.usage == TokenUsage(input_tokens=25, output_tokens=6)

    def test_stream_tool_use(self, recording: Callable[..., RecordingTransport]) -> None:
        lines = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 30}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}},
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "thinking_delta", "thinking": "check a"},
            },
            {"type": "content_block_stop", "index": 0},
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_2", "name": "read_file"},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '{"path": '},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '"a.txt"}'},
            },
            {"type": "content_block_stop", "index": 1},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
        )
        reply = make_client(recording(lines), stream=True).chat(HISTORY)
        assert isinstance(reply, ToolCallMessage)
        assert reply.call_id == "toolu_2"
        assert reply.tool_name == "read_file"
        assert reply.arguments == {"path": "a.txt"}
        assert reply.thinking == "check a"

    def test_stream_error_event(self, recording: Callable[..., RecordingTransport]) -> None:
        error = {"type": "overloaded_error", "message": "Overloaded"}
        lines = sse({"type": "error", "error": error})
        with pytest.raises(ChatError) as exc_info:
            make_client(recording(lines), stream=True).chat(HISTORY)
        assert exc_info.value.message == "anthropic error: overloaded_error: Overloaded"
