"""
Typed response events and the merge that turns them into one Message.

Every adapter, streaming or not, decodes its backend's response into an
iterator of these events and hands it to merge_stream():

    TextDelta          a piece of the answer text
    ThinkingDelta      a piece of reasoning text
    ToolCallFragment   part (or all) of one proposed tool call
    UsageReport        token counts
    Done               the backend finished the turn

Merge rules:
    - Text and thinking are concatenated in arrival order, independently
    - The first tool call to appear is the only one surfaced; fragments
      are accumulated per index until the call is complete
    - A call is complete on a fragment marked final, when a fragment for
      a different call arrives, or at Done; the merge then returns at
      once and closes the event iterator
    - The context is checked before every event; cancellation raises
    - An iterator that runs dry before Done raises StreamInterruptedError
    - No text and no tool call raises EmptyResponseError
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import structlog

from agentwire.clients.arguments import decode_arguments
from agentwire.context import CallContext
from agentwire.errors import EmptyResponseError, StreamInterruptedError, ToolCallParseError
from agentwire.schema import AssistantMessage, TokenUsage, ToolCallMessage


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    """
    One piece of a proposed tool call.

    Attributes:
        index: Position of the call within the turn; fragments with the same
            index belong to the same call
        call_id: Backend call identifier, usually on the first fragment
        name: Tool name, usually on the first fragment
        arguments_delta: Next chunk of the JSON argument text
        arguments: Complete decoded arguments, for backends that send objects
        final: True when the backend signals this call is complete
    """

    index: int = 0
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str = ""
    arguments: dict[str, Any] | None = None
    final: bool = False


@dataclass(frozen=True)
class UsageReport:
    usage: TokenUsage


@dataclass(frozen=True)
class Done:
    reason: str = "stop"


StreamEvent: TypeAlias = TextDelta | ThinkingDelta | ToolCallFragment | UsageReport | Done


@dataclass
class _PendingCall:
    index: int
    call_id: str | None = None
    name: str = ""
    deltas: list[str] = field(default_factory=list)
    arguments: dict[str, Any] | None = None

    def absorb(self, fragment: ToolCallFragment) -> None:
        if fragment.call_id and not self.call_id:
            self.call_id = fragment.call_id
        if fragment.name:
            self.name = self.name or fragment.name
        if fragment.arguments_delta:
            self.deltas.append(fragment.arguments_delta)
        if fragment.arguments is not None:
            self.arguments = {**(self.arguments or {}), **fragment.arguments}


def _merge_usage(current: TokenUsage | None, update: TokenUsage) -> TokenUsage:
    # Backends report input and output counts in different events
    if current is None:
        return update
    return TokenUsage(
        input_tokens=update.input_tokens or current.input_tokens,
        output_tokens=update.output_tokens or current.output_tokens,
    )


def merge_stream(
    events: Iterable[StreamEvent],
    *,
    backend: str,
    model: str = "",
    context: CallContext | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> AssistantMessage | ToolCallMessage:
    """
    Merge response events into the final Message of a turn.

    Args:
        events: Decoded events, in arrival order
        backend: Backend name for error reporting
        model: Model name for error reporting
        context: Cancellation context of the call
        logger: structlog logger

    Returns:
        ToolCallMessage for the first proposed tool call, else AssistantMessage

    Raises:
        ChatCancelledError: The context was cancelled mid-stream
        StreamInterruptedError: Events ended without Done
        EmptyResponseError: Neither text nor a tool call was produced
        ToolCallParseError: Tool call arguments could not be decoded
    """
    log = logger or structlog.get_logger(__name__)
    content: list[str] = []
    thinking: list[str] = []
    usage: TokenUsage | None = None
    call: _PendingCall | None = None
    call_complete = False
    done = False

    iterator = iter(events)
    try:
        for event in iterator:
            if context is not None:
                context.raise_if_cancelled(backend=backend, model=model)

            if isinstance(event, TextDelta):
                content.append(event.text)
            elif isinstance(event, ThinkingDelta):
                thinking.append(event.text)
            elif isinstance(event, UsageReport):
                usage = _merge_usage(usage, event.usage)
            elif isinstance(event, ToolCallFragment):
                if call is not None and event.index != call.index:
                    log.debug("extra_tool_call_discarded", backend=backend, index=event.index)
                    call_complete = True
                    break
                if call is None:
                    call = _PendingCall(index=event.index)
                call.absorb(event)
                if event.final:
                    call_complete = True
                    break
            elif isinstance(event, Done):
                done = True
                break
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()

    if call is not None and (call_complete or done):
        return _build_call(call, thinking, usage, backend, model)

    if context is not None:
        context.raise_if_cancelled(backend=backend, model=model)
    if not done:
        raise StreamInterruptedError(backend=backend, model=model)

    text = "".join(content)
    if not text:
        raise EmptyResponseError(backend=backend, model=model)

    log.debug("response_merged", backend=backend, chars=len(text), thinking=bool(thinking))
    return AssistantMessage(
        content=text,
        thinking="".join(thinking) or None,
        usage=usage,
    )


def _build_call(
    call: _PendingCall,
    thinking: list[str],
    usage: TokenUsage | None,
    backend: str,
    model: str,
) -> ToolCallMessage:
    raw = "".join(call.deltas)
    if not call.name:
        raise ToolCallParseError(
            message="tool call without a tool name",
            backend=backend,
            model=model,
            raw_arguments=raw,
        )

    if call.arguments is not None and not raw:
        arguments: dict[str, Any] | None = call.arguments
    else:
        arguments, error = decode_arguments(raw)
        if error is not None or arguments is None:
            raise ToolCallParseError(
                message=f"cannot parse arguments for tool call {call.name}: {error}",
                backend=backend,
                model=model,
                tool=call.name,
                raw_arguments=raw,
            )
        if call.arguments:
            arguments = {**call.arguments, **arguments}

    return ToolCallMessage(
        call_id=call.call_id,
        tool_name=call.name,
        arguments=arguments,
        thinking="".join(thinking) or None,
        usage=usage,
    )


# =============================================================================
# Wire helpers
# =============================================================================


@dataclass(frozen=True)
class ServerSentEvent:
    event: str
    data: str


def iter_sse(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    """
    Parse Server-Sent Events from decoded text lines.

    Multi-line ``data:`` fields are joined with newlines; comments and
    unknown fields are ignored. A trailing event without a blank line is
    still emitted.
    """
    event = ""
    data: list[str] = []
    for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                yield ServerSentEvent(event=event or "message", data="\n".join(data))
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield ServerSentEvent(event=event or "message", data="\n".join(data))
