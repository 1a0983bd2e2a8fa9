"""
Pytest configuration and fixtures for agentwire tests.

This module provides shared fixtures used across unit and security tests.
"""

import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import httpx
import pytest

from agentwire.schema import ArgumentType, FileSystemConfig, ToolArgument
from agentwire.tools import FileSystemToolset, FunctionTool, ToolRegistry, ToolResult


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def fs_config() -> FileSystemConfig:
    """File sandbox config without post-write validation."""
    return FileSystemConfig(auto_validate=False)


@pytest.fixture
def toolset(temp_dir: Path, fs_config: FileSystemConfig) -> FileSystemToolset:
    """File toolset rooted at the temp directory."""
    return FileSystemToolset(fs_config, working_dir=temp_dir)


def echo_tool(name: str = "echo") -> FunctionTool:
    """A tool that returns its ``text`` argument."""
    return FunctionTool(
        name=name,
        description=f"Echo text ({name})",
        handler=lambda context, args: ToolResult.ok(str(args.get("text", ""))),
        arguments=(
            ToolArgument(
                name="text",
                description="Text to echo",
                type=ArgumentType.STRING,
                required=True,
            ),
        ),
    )


@pytest.fixture
def echo_registry() -> ToolRegistry:
    """Registry with echo and shout tools."""
    registry = ToolRegistry()
    registry.register(echo_tool("echo"))
    registry.register(
        FunctionTool(
            name="shout",
            description="Upper-case text",
            handler=lambda context, args: ToolResult.ok(str(args["text"]).upper()),
            arguments=(ToolArgument(name="text", required=True),),
        )
    )
    return registry


class RecordingTransport:
    """
    httpx.MockTransport wrapper that records requests and replays canned bodies.

    Each response is either a dict (sent as JSON) or a list of text lines
    (sent as a streaming body joined by newlines).
    """

    def __init__(self, *responses: Any, status_code: int = 200) -> None:
        self.responses = list(responses)
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.responses.pop(0) if self.responses else {}
        if isinstance(body, list):
            content = ("\n".join(body) + "\n").encode()
            return httpx.Response(self.status_code, content=content)
        if isinstance(body, str):
            return httpx.Response(self.status_code, text=body)
        return httpx.Response(self.status_code, json=body)

    def client(self, base_url: str = "http://backend.test") -> httpx.Client:
        return httpx.Client(base_url=base_url, transport=httpx.MockTransport(self.handler))

    @property
    def last_payload(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def recording() -> Callable[..., RecordingTransport]:
    """Factory for RecordingTransport instances."""
    return RecordingTransport
