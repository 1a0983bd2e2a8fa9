"""
Base class for backend adapters.

A ChatClient turns a conversation history into one backend call and the
reply into exactly one Message: an AssistantMessage for a text turn or a
ToolCallMessage for a tool turn. The parts every backend shares live
here:

    - Tool choice handling: which tool declarations are sent for
      NONE / AUTO / ANY / NAMED, and the errors for impossible choices
    - JSON-schema parameters built from ToolArgument declarations
    - The httpx transport, with transport errors mapped onto ChatError
      subclasses (no retries)
    - Dispatch to the single merge routine for streaming and single-shot
      responses alike

Adapters supply the wire format through three hooks:

    _build_request(messages, tools, choice, thinking) -> ChatRequest
    _decode_response(data) -> Iterator[StreamEvent]
    _decode_stream(lines) -> Iterator[StreamEvent]

Usage:
    with OllamaClient(model="qwen3:8b") as client:
        client.set_registry(toolset)
        reply = client.chat(history)
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx
import structlog

from agentwire.clients.stream import StreamEvent, merge_stream
from agentwire.context import CallContext
from agentwire.errors import (
    BackendConnectionError,
    BackendHTTPError,
    BackendTimeoutError,
    ChatError,
    ModelNotFoundError,
    StreamInterruptedError,
    ToolChoiceError,
)
from agentwire.schema import (
    AssistantMessage,
    Message,
    ToolArgument,
    ToolCallMessage,
    ToolChoice,
    ToolChoiceMode,
)
from agentwire.tools.base import Tool
from agentwire.tools.registry import ToolRegistry


@dataclass(frozen=True)
class ToolSpec:
    """
    Backend-neutral tool declaration.

    Attributes:
        name: Tool name
        description: Tool description shown to the model
        parameters: JSON-schema object describing the arguments
    """

    name: str
    description: str
    parameters: dict[str, Any]

    @classmethod
    def from_tool(cls, tool: Tool) -> "ToolSpec":
        return cls(
            name=tool.name,
            description=tool.description,
            parameters=build_parameters(tool.arguments),
        )


def build_parameters(arguments: Sequence[ToolArgument]) -> dict[str, Any]:
    """
    Build a JSON-schema object from declared arguments.

    ``required`` is only present when at least one argument is required;
    several backends reject an empty list.
    """
    properties: dict[str, Any] = {}
    required: list[str] = []
    for arg in arguments:
        properties[arg.name] = {
            "type": arg.type.value,
            "description": arg.description,
        }
        if arg.required:
            required.append(arg.name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


@dataclass(frozen=True)
class ChatRequest:
    """One HTTP request to a backend."""

    path: str
    payload: dict[str, Any]
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


class ChatClient(ABC):
    """
    Abstract base class for backend adapters.

    Args:
        model: Model identifier
        base_url: Backend endpoint (adapter default when None)
        api_key: Credential, for backends that need one
        max_tokens: Output budget (0 = adapter default)
        thinking: Default for surfacing reasoning in chat_with_tool_choice()
        timeout_seconds: HTTP timeout per call
        stream: Use the streaming endpoint
        registry: Tools offered to the model
        client: Pre-built httpx.Client (tests pass one with a MockTransport)
        logger: structlog logger
    """

    backend: ClassVar[str] = ""
    default_base_url: ClassVar[str] = ""
    default_max_tokens: ClassVar[int] = 0

    def __init__(
        self,
        model: str,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        max_tokens: int = 0,
        thinking: bool = False,
        timeout_seconds: float = 120.0,
        stream: bool = True,
        registry: ToolRegistry | None = None,
        client: httpx.Client | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.model = model
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.api_key = api_key
        self.max_tokens = max_tokens or self.default_max_tokens
        self.thinking = thinking
        self.timeout_seconds = timeout_seconds
        self.stream = stream
        self.registry = registry
        self._client = client
        self._owns_client = client is None
        self._logger = (logger or structlog.get_logger(__name__)).bind(
            backend=self.backend,
            model=model,
        )

    # -------------------------------------------------------------------------
    # HTTP client lifecycle
    # -------------------------------------------------------------------------

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ChatClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Public contract
    # -------------------------------------------------------------------------

    def set_registry(self, registry: ToolRegistry | None) -> None:
        """Attach (or detach, with None) the tools offered to the model."""
        self.registry = registry

    def chat(
        self,
        messages: Sequence[Message],
        enable_thinking: bool = False,
        context: CallContext | None = None,
    ) -> AssistantMessage | ToolCallMessage:
        """
        Run one turn, letting the model decide whether to use a tool.

        Args:
            messages: Conversation history
            enable_thinking: Ask the model to surface its reasoning
            context: Cancellation context

        Returns:
            AssistantMessage or a single ToolCallMessage

        Raises:
            ChatError: On transport, decoding or cancellation failures
        """
        choice = ToolChoice.auto() if self._has_tools() else ToolChoice.none()
        return self._complete(messages, choice, enable_thinking, context)

    def chat_with_tool_choice(
        self,
        messages: Sequence[Message],
        tool_choice: ToolChoice,
        context: CallContext | None = None,
    ) -> AssistantMessage | ToolCallMessage:
        """
        Run one turn under an explicit tool choice.

        NONE hides the tools, AUTO lets the model decide, ANY forces some
        tool and NAMED forces (and only declares) one tool.

        Raises:
            ToolChoiceError: NAMED tool is not registered, or ANY without tools
            ChatError: On transport, decoding or cancellation failures
        """
        return self._complete(messages, tool_choice, self.thinking, context)

    def tool_declarations(self, choice: ToolChoice) -> list[ToolSpec]:
        """
        Tools to declare downstream for a tool choice.

        Returns:
            Sorted specs; empty for NONE or when no tools are registered

        Raises:
            ToolChoiceError: NAMED tool is not registered, or ANY without tools
        """
        if choice.mode == ToolChoiceMode.NONE:
            return []

        tools = self.registry.tools() if self.registry is not None else {}

        if choice.mode == ToolChoiceMode.NAMED:
            tool = tools.get(choice.name or "")
            if tool is None:
                raise ToolChoiceError(
                    backend=self.backend,
                    model=self.model,
                    tool=choice.name or "",
                )
            return [ToolSpec.from_tool(tool)]

        if choice.mode == ToolChoiceMode.ANY and not tools:
            raise ToolChoiceError(
                message="tool choice 'any' requires at least one registered tool",
                backend=self.backend,
                model=self.model,
            )

        return [ToolSpec.from_tool(tools[name]) for name in sorted(tools)]

    # -------------------------------------------------------------------------
    # Adapter hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _build_request(
        self,
        messages: Sequence[Message],
        tools: list[ToolSpec],
        choice: ToolChoice,
        thinking: bool,
    ) -> ChatRequest:
        """Translate history, tools and choice into the backend request."""
        ...

    @abstractmethod
    def _decode_response(self, data: dict[str, Any]) -> Iterator[StreamEvent]:
        """Decode a single-shot JSON response into events ending with Done."""
        ...

    @abstractmethod
    def _decode_stream(self, lines: Iterator[str]) -> Iterator[StreamEvent]:
        """Decode streamed response lines into events ending with Done."""
        ...

    def _headers(self) -> dict[str, str]:
        """Authentication and version headers for every request."""
        return {}

    # -------------------------------------------------------------------------
    # Turn execution
    # -------------------------------------------------------------------------

    def _has_tools(self) -> bool:
        return self.registry is not None and len(self.registry) > 0

    def _complete(
        self,
        messages: Sequence[Message],
        choice: ToolChoice,
        thinking: bool,
        context: CallContext | None,
    ) -> AssistantMessage | ToolCallMessage:
        if context is not None:
            context.raise_if_cancelled(backend=self.backend, model=self.model)

        tools = self.tool_declarations(choice)
        request = self._build_request(messages, tools, choice, thinking)
        self._logger.debug(
            "chat_request_sent",
            messages=len(messages),
            tools=[t.name for t in tools],
            tool_choice=choice.mode.value,
            stream=self.stream,
        )

        if self.stream:
            events = self._decode_stream(self._stream_lines(request, context))
        else:
            events = self._decode_response(self._post(request, context))

        reply = merge_stream(
            events,
            backend=self.backend,
            model=self.model,
            context=context,
            logger=self._logger,
        )
        self._logger.info(
            "chat_reply_received",
            kind=reply.kind,
            tool=getattr(reply, "tool_name", None),
            total_tokens=reply.usage.total_tokens if reply.usage else None,
        )
        return reply

    def _post(self, request: ChatRequest, context: CallContext | None) -> dict[str, Any]:
        """Send a single-shot request and return the decoded JSON body."""
        client = self._get_client()
        try:
            response = client.send(self._http_request(client, request, context), stream=True)
            unregister = context.on_cancel(response.close) if context is not None else None
            try:
                response.read()
            finally:
                if unregister is not None:
                    unregister()
                response.close()
        except (httpx.TransportError, httpx.StreamError) as e:
            raise self._transport_error(e, context, mid_stream=False) from e

        self._raise_for_status(response.status_code, response.text)
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ChatError(
                message=f"Invalid JSON from {self.backend}: {e}",
                backend=self.backend,
                model=self.model,
            ) from e
        if not isinstance(data, dict):
            raise ChatError(
                message=f"Unexpected response from {self.backend}: {type(data).__name__}",
                backend=self.backend,
                model=self.model,
            )
        return data

    def _stream_lines(self, request: ChatRequest, context: CallContext | None) -> Iterator[str]:
        """
        Send a streaming request and yield response lines.

        The response is closed when the generator is closed, which the
        merge does as soon as the turn is decided. While it is open, a
        cancel or an expired deadline closes it from the cancelling
        thread, which aborts a blocked read.
        """
        client = self._get_client()
        try:
            response = client.send(self._http_request(client, request, context), stream=True)
        except (httpx.TransportError, httpx.StreamError) as e:
            raise self._transport_error(e, context, mid_stream=True) from e

        unregister = context.on_cancel(response.close) if context is not None else None
        try:
            if response.status_code >= 400:
                body = response.read().decode("utf-8", errors="replace")
                self._raise_for_status(response.status_code, body)
            for line in response.iter_lines():
                if context is not None:
                    context.raise_if_cancelled(backend=self.backend, model=self.model)
                yield line
        except (httpx.TransportError, httpx.StreamError) as e:
            raise self._transport_error(e, context, mid_stream=True) from e
        finally:
            if unregister is not None:
                unregister()
            response.close()

    def _http_request(
        self,
        client: httpx.Client,
        request: ChatRequest,
        context: CallContext | None,
    ) -> httpx.Request:
        """Build the POST for ``request`` with a timeout bounded by the deadline."""
        timeout = self.timeout_seconds
        remaining = context.remaining() if context is not None else None
        if remaining is not None:
            timeout = min(timeout, remaining)
        return client.build_request(
            "POST",
            request.path,
            json=request.payload,
            params=request.params or None,
            headers={**self._headers(), **request.headers},
            timeout=timeout,
        )

    def _transport_error(
        self,
        error: Exception,
        context: CallContext | None,
        mid_stream: bool,
    ) -> ChatError:
        # A cancel closes the response, which surfaces here as a read failure
        if context is not None and context.cancelled:
            return context.cancelled_error(backend=self.backend, model=self.model)
        if isinstance(error, httpx.TimeoutException):
            return self._timeout_error()
        if isinstance(error, httpx.ConnectError) or not mid_stream:
            return self._connection_error(error)
        return StreamInterruptedError(
            message=f"{self.backend} stream failed: {error}",
            backend=self.backend,
            model=self.model,
        )

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code < 400:
            return
        if status_code == 404 and "model" in body.lower():
            raise ModelNotFoundError(backend=self.backend, model=self.model)
        raise BackendHTTPError(
            backend=self.backend,
            model=self.model,
            status_code=status_code,
            body=body,
        )

    def _timeout_error(self) -> BackendTimeoutError:
        return BackendTimeoutError(
            backend=self.backend,
            model=self.model,
            timeout_seconds=self.timeout_seconds,
        )

    def _connection_error(self, error: Exception) -> BackendConnectionError:
        err = BackendConnectionError(backend=self.backend, model=self.model, url=self.base_url)
        err.context["underlying_error"] = str(error)
        return err

    def _json_lines(self, lines: Iterator[str]) -> Iterator[dict[str, Any]]:
        """Decode newline-delimited JSON, skipping blank lines."""
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise StreamInterruptedError(
                    message=f"malformed stream line: {line[:200]}",
                    backend=self.backend,
                    model=self.model,
                ) from e

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.model}>"
