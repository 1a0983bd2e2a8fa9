"""
Schema definitions for agentwire.

This module defines the Pydantic models shared by every layer:
- Message variants: the conversation vocabulary exchanged with backends
- ToolArgument/ToolChoice: how tools are described and how their use is forced
- TokenUsage: best-effort accounting attached to backend replies
- Settings: the YAML configuration (backend, file sandbox, logging)

Design Decisions:
    - Messages are immutable once constructed (frozen=True)
    - Message is a tagged union discriminated by the ``kind`` field
    - Unknown fields are rejected (extra="forbid") so config typos surface early
    - Tool call/result pairing lives here so every adapter threads tool turns
      the same way
"""

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class ArgumentType(str, Enum):
    """JSON-schema type of a tool argument."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class ToolChoiceMode(str, Enum):
    """
    How strongly a turn should use tools.

    NONE omits tool declarations even if tools are registered.
    AUTO lets the backend decide. ANY forces some tool. NAMED forces the
    tool carried in ToolChoice.name.
    """

    NONE = "none"
    AUTO = "auto"
    ANY = "any"
    NAMED = "named"


# =============================================================================
# Message Models
# =============================================================================


class TokenUsage(BaseModel):
    """Token counts reported by a backend for one call."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def fill_total(cls, data: Any) -> Any:
        """Derive total_tokens when the backend only reports the parts."""
        if isinstance(data, dict) and not data.get("total_tokens"):
            total = (data.get("input_tokens") or 0) + (data.get("output_tokens") or 0)
            data = {**data, "total_tokens": total}
        return data


class UserMessage(BaseModel):
    """
    A user turn.

    Attributes:
        content: The user's text
        images: Opaque base64-encoded images attached to the turn
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["user"] = "user"
    content: str = Field(default="", description="User text")
    images: tuple[str, ...] = Field(
        default=(),
        description="Base64-encoded images, passed through untouched",
    )


class AssistantMessage(BaseModel):
    """
    A plain text reply from the model.

    Attributes:
        content: The final answer text
        thinking: Reasoning text the backend surfaced separately, if any
        usage: Token accounting for the call that produced this message
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["assistant"] = "assistant"
    content: str = Field(default="", description="Final answer text")
    thinking: str | None = Field(default=None, description="Separate reasoning text")
    usage: TokenUsage | None = Field(default=None, description="Best-effort token usage")


class SystemMessage(BaseModel):
    """A system instruction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["system"] = "system"
    content: str = Field(default="", description="Instruction text")


class ToolCallMessage(BaseModel):
    """
    A request from the model to run one tool.

    Attributes:
        call_id: Backend-assigned call identifier (None when the backend has none)
        tool_name: Name of the requested tool
        arguments: Decoded JSON arguments
        timestamp: When the adapter decoded the call
        thinking: Reasoning text emitted before the call, if any
        usage: Token accounting for the call that produced this message
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["tool_call"] = "tool_call"
    call_id: str | None = Field(default=None, description="Backend call identifier")
    tool_name: str = Field(..., min_length=1, description="Requested tool")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the call was decoded",
    )
    thinking: str | None = Field(default=None, description="Reasoning before the call")
    usage: TokenUsage | None = Field(default=None, description="Best-effort token usage")


class ToolResultMessage(BaseModel):
    """
    The outcome of a tool call, fed back to the model.

    A non-empty ``error`` marks a failure the model should read and react to;
    it is data, not an exception.

    Attributes:
        call_id: Identifier of the ToolCallMessage this answers (None to pair by position)
        content: Success text
        error: Failure text
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["tool_result"] = "tool_result"
    call_id: str | None = Field(default=None, description="Answered call identifier")
    content: str = Field(default="", description="Success text")
    error: str | None = Field(default=None, description="Failure text")

    @property
    def is_error(self) -> bool:
        """True when the tool reported a failure."""
        return bool(self.error)

    @property
    def text(self) -> str:
        """The text the model should see: the error when present, else content."""
        return self.error if self.error else self.content


Message = Annotated[
    UserMessage | AssistantMessage | SystemMessage | ToolCallMessage | ToolResultMessage,
    Field(discriminator="kind"),
]


# =============================================================================
# Tool Description Models
# =============================================================================


class ToolArgument(BaseModel):
    """
    One declared argument of a tool.

    Attributes:
        name: Argument name as the model must send it
        description: What the argument means
        type: JSON-schema type of the value
        required: Whether the tool refuses calls without it
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Argument name")
    description: str = Field(default="", description="What the argument means")
    type: ArgumentType = Field(default=ArgumentType.STRING, description="JSON-schema type")
    required: bool = Field(default=False, description="Whether the argument is mandatory")


class ToolChoice(BaseModel):
    """
    Tool-use directive for one turn.

    Use the constructors rather than building instances by hand:
        ToolChoice.none(), ToolChoice.auto(), ToolChoice.any(), ToolChoice.tool("read_file")
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ToolChoiceMode = Field(default=ToolChoiceMode.AUTO)
    name: str | None = Field(default=None, description="Tool forced by NAMED mode")

    @model_validator(mode="after")
    def check_name(self) -> "ToolChoice":
        """NAMED needs a tool name; the other modes must not carry one."""
        if self.mode == ToolChoiceMode.NAMED and not self.name:
            msg = "Named tool choice requires a tool name"
            raise ValueError(msg)
        if self.mode != ToolChoiceMode.NAMED and self.name:
            msg = f"Tool choice mode {self.mode.value} does not take a tool name"
            raise ValueError(msg)
        return self

    @classmethod
    def none(cls) -> "ToolChoice":
        """Do not offer tools for this turn."""
        return cls(mode=ToolChoiceMode.NONE)

    @classmethod
    def auto(cls) -> "ToolChoice":
        """Let the backend decide whether to call a tool."""
        return cls(mode=ToolChoiceMode.AUTO)

    @classmethod
    def any(cls) -> "ToolChoice":
        """Force the backend to call some tool."""
        return cls(mode=ToolChoiceMode.ANY)

    @classmethod
    def tool(cls, name: str) -> "ToolChoice":
        """Force the backend to call the named tool."""
        return cls(mode=ToolChoiceMode.NAMED, name=name)


# =============================================================================
# Tool Turn Pairing
# =============================================================================


@dataclass(frozen=True)
class ToolLink:
    """
    Resolved threading information for one tool call or tool result.

    Attributes:
        call_id: Identifier to send to the backend (synthesized when missing)
        tool_name: Name of the tool the call/result belongs to
        paired: False for a result whose call is not in the history
    """

    call_id: str
    tool_name: str
    paired: bool = True


def link_tool_turns(messages: Sequence[Any]) -> dict[int, ToolLink]:
    """
    Pair tool results with the calls they answer.

    Pairing is by call_id when the result carries one, otherwise by
    position: an id-less result answers the oldest call still unanswered.
    Calls without an identifier get a synthetic ``call_<n>`` id so that
    backends requiring ids can thread the pair. Synthetic ids never reuse
    an identifier already present in the history; ``n`` is advanced past
    any collision.

    Args:
        messages: Conversation history

    Returns:
        Mapping from history index to ToolLink, for every ToolCallMessage
        and ToolResultMessage in the history
    """
    links: dict[int, ToolLink] = {}
    pending: dict[str, str] = {}
    positional: deque[str] = deque()
    call_count = 0
    taken = {
        m.call_id
        for m in messages
        if isinstance(m, (ToolCallMessage, ToolResultMessage)) and m.call_id is not None
    }

    def synthesize(n: int) -> str:
        while f"call_{n}" in taken:
            n += 1
        taken.add(f"call_{n}")
        return f"call_{n}"

    for index, message in enumerate(messages):
        if isinstance(message, ToolCallMessage):
            call_id = message.call_id or synthesize(call_count)
            call_count += 1
            pending[call_id] = message.tool_name
            if message.call_id is None:
                positional.append(call_id)
            links[index] = ToolLink(call_id=call_id, tool_name=message.tool_name)

        elif isinstance(message, ToolResultMessage):
            if message.call_id is not None and message.call_id in pending:
                call_id = message.call_id
            elif message.call_id is None and positional:
                call_id = positional.popleft()
            elif message.call_id is None and pending:
                call_id = next(iter(pending))
            else:
                links[index] = ToolLink(
                    call_id=message.call_id or synthesize(call_count),
                    tool_name="",
                    paired=False,
                )
                continue

            if call_id in positional:
                positional.remove(call_id)
            links[index] = ToolLink(call_id=call_id, tool_name=pending.pop(call_id))

    return links


# =============================================================================
# Settings Models
# =============================================================================


class LLMSettings(BaseModel):
    """
    Backend adapter configuration.

    Credentials are not part of this model; the client factory reads them
    from the environment.

    Attributes:
        backend: Which adapter to build
        model: Model identifier passed to the backend
        base_url: Override for the backend endpoint
        thinking: Ask thinking-capable models to surface reasoning
        max_tokens: Output token budget (0 = backend default)
        timeout_seconds: HTTP timeout per call
        stream: Use the streaming endpoint
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: Literal["ollama", "openai", "anthropic", "gemini"] = Field(
        default="ollama",
        description="Backend adapter to use",
    )
    model: str = Field(default="gpt-oss:latest", min_length=1, description="Model identifier")
    base_url: str | None = Field(default=None, description="Backend endpoint override")
    thinking: bool = Field(default=True, description="Request reasoning output when supported")
    max_tokens: int = Field(default=0, ge=0, description="Output token budget (0 = default)")
    timeout_seconds: float = Field(default=120.0, gt=0, le=3600, description="HTTP timeout")
    stream: bool = Field(default=True, description="Use streaming responses")


class FileSystemConfig(BaseModel):
    """
    Sandbox configuration for the file toolset.

    Attributes:
        allowed_directories: Extra roots besides the working directory
        blacklisted_files: Glob patterns matched against basename and full path
        max_file_bytes: Largest file read_file will return
        auto_validate: Run language checkers after writes and edits
        validation_timeout_seconds: Time limit for each checker command
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed_directories: list[str] = Field(
        default_factory=list,
        description="Additional allowed roots",
    )
    blacklisted_files: list[str] = Field(
        default_factory=lambda: ["*.env", "*secret*", "*.pem", "*.key"],
        description="Glob patterns for files that are never touched",
    )
    max_file_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        description="Maximum file size returned by read_file",
        gt=0,
    )
    auto_validate: bool = Field(
        default=True,
        description="Run language checkers after writes and edits",
    )
    validation_timeout_seconds: int = Field(
        default=30,
        description="Per-checker timeout",
        gt=0,
        le=600,
    )

    @field_validator("blacklisted_files")
    @classmethod
    def drop_empty_patterns(cls, v: list[str]) -> list[str]:
        """Empty patterns would match nothing useful; ignore them."""
        return [p for p in v if p.strip()]


class LoggingSettings(BaseModel):
    """Log level and renderer selection."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = Field(default=False, alias="json")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v


class Settings(BaseModel):
    """
    Complete agentwire configuration.

    Attributes:
        llm: Backend adapter settings
        filesystem: File sandbox settings
        logging: Logging settings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    filesystem: FileSystemConfig = Field(default_factory=FileSystemConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_settings(path: Path | str | None) -> Settings:
    """
    Load settings from a YAML (or JSON) file.

    Args:
        path: Path to the file; None or a missing file yields defaults

    Returns:
        Validated Settings object

    Raises:
        ValidationError: If the file doesn't match the schema
    """
    if path is None:
        return Settings()
    path = Path(path)
    if not path.exists():
        return Settings()
    with path.open() as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def load_settings_from_string(content: str) -> Settings:
    """Load settings from a YAML string."""
    data = yaml.safe_load(content)
    return Settings.model_validate(data or {})
