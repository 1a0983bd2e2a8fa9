"""
Exception hierarchy for agentwire.

All agentwire exceptions inherit from AgentwireError, allowing callers to
catch every agentwire-specific exception with a single except clause.

Exception Categories:
    - AccessError: File access refused by the sandbox (path, blacklist, staleness)
    - ToolError: Registry and dispatch problems
    - ChatError: Backend adapter failures (transport, decoding, cancellation)
    - ConfigurationError: Invalid settings

Two kinds of failure flow through this module. Access errors are raised
inside the file toolset and converted to ToolResult.fail() at the tool
boundary, so the model sees them as text it can act on. Chat errors are
hard failures that propagate out of ChatClient calls to the caller.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (tool, path, backend where applicable)
    - All errors provide actionable suggestions where possible
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Access errors: 1xxx
ERROR_ACCESS_DENIED = 1001
ERROR_ACCESS_PATH_RESOLUTION = 1002
ERROR_ACCESS_PATH_NOT_ALLOWED = 1003
ERROR_ACCESS_PATH_BLACKLISTED = 1004
ERROR_ACCESS_NOT_READ = 1005
ERROR_ACCESS_STALE_READ = 1006
ERROR_ACCESS_SIZE_EXCEEDED = 1007

# Tool errors: 2xxx
ERROR_TOOL_NOT_FOUND = 2001
ERROR_TOOL_INVALID_ARGS = 2002
ERROR_TOOL_REGISTRY = 2003

# Chat errors: 3xxx
ERROR_CHAT_FAILED = 3001
ERROR_CHAT_CONNECTION = 3002
ERROR_CHAT_TIMEOUT = 3003
ERROR_CHAT_HTTP = 3004
ERROR_CHAT_MODEL_NOT_FOUND = 3005
ERROR_CHAT_EMPTY_RESPONSE = 3006
ERROR_CHAT_TOOL_CALL_PARSE = 3007
ERROR_CHAT_CANCELLED = 3008
ERROR_CHAT_STREAM_INTERRUPTED = 3009
ERROR_CHAT_TOOL_CHOICE = 3010

# Configuration errors: 4xxx
ERROR_CONFIG_INVALID = 4001
ERROR_CONFIG_MISSING_CREDENTIALS = 4002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class AgentwireError(Exception):
    """
    Base exception for all agentwire errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Access Errors
# =============================================================================


@dataclass
class AccessError(AgentwireError):
    """
    Raised when the file sandbox refuses an operation.

    Every subclass is user-correctable: the file toolset turns it into a
    ToolResult error whose text is the message below, and the model is
    expected to adjust its arguments and retry.

    Attributes:
        path: The path the operation targeted
    """

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"file access denied: {self.path}"
        if self.code == 0:
            self.code = ERROR_ACCESS_DENIED
        self.context["path"] = self.path


@dataclass
class PathResolutionError(AccessError):
    """Raised when an absolute path lies outside the working directory."""

    working_dir: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"absolute path {self.path} is outside working directory {self.working_dir}"
            )
        if self.code == 0:
            self.code = ERROR_ACCESS_PATH_RESOLUTION
        if not self.suggestion:
            self.suggestion = "Use a path relative to the working directory"
        super().__post_init__()
        self.context["working_dir"] = self.working_dir


@dataclass
class PathNotAllowedError(AccessError):
    """Raised when a resolved path is not under any allowed root."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "file access denied: path is not within allowed directories"
        if self.code == 0:
            self.code = ERROR_ACCESS_PATH_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = "Add the directory to filesystem.allowed_directories"
        super().__post_init__()


@dataclass
class PathBlacklistedError(AccessError):
    """Raised when a path matches a blacklisted pattern."""

    pattern: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"file access denied: {self.path} matches blacklisted pattern {self.pattern}"
            )
        if self.code == 0:
            self.code = ERROR_ACCESS_PATH_BLACKLISTED
        super().__post_init__()
        self.context["pattern"] = self.pattern


@dataclass
class ReadBeforeWriteError(AccessError):
    """Raised when an existing file is overwritten without a prior read."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                "read-write semantics violation: "
                f"file {self.path} was not read before write attempt"
            )
        if self.code == 0:
            self.code = ERROR_ACCESS_NOT_READ
        if not self.suggestion:
            self.suggestion = "Read the file first, then retry the write"
        super().__post_init__()


@dataclass
class StaleReadError(AccessError):
    """Raised when a file changed on disk after it was last read."""

    read_at_ns: int = 0
    modified_at_ns: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                "read-write semantics violation: "
                f"file {self.path} was modified after last read"
            )
        if self.code == 0:
            self.code = ERROR_ACCESS_STALE_READ
        if not self.suggestion:
            self.suggestion = "Re-read the file to pick up the latest contents"
        super().__post_init__()
        self.context.update({
            "read_at_ns": self.read_at_ns,
            "modified_at_ns": self.modified_at_ns,
        })


@dataclass
class SizeExceededError(AccessError):
    """Raised when a file is larger than the configured read limit."""

    actual_size: int = 0
    max_size: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"file {self.path} is too large: {self.actual_size} > {self.max_size} bytes"
            )
        if self.code == 0:
            self.code = ERROR_ACCESS_SIZE_EXCEEDED
        if not self.suggestion:
            self.suggestion = "Increase filesystem.max_file_bytes or read a smaller file"
        super().__post_init__()
        self.context.update({
            "actual_size": self.actual_size,
            "max_size": self.max_size,
        })


# =============================================================================
# Tool Errors
# =============================================================================


@dataclass
class ToolError(AgentwireError):
    """
    Base class for registry and dispatch errors.

    Attributes:
        tool: Name of the tool involved
    """

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["tool"] = self.tool


@dataclass
class ToolNotFoundError(ToolError):
    """Raised when a tool is not registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"tool {self.tool} not found"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check tool name spelling or register the tool"
        super().__post_init__()


@dataclass
class ToolInvalidArgsError(ToolError):
    """Raised when tool arguments cannot be converted or are incomplete."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid arguments for {self.tool}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_INVALID_ARGS
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class RegistryError(ToolError):
    """Raised on unsupported registry operations."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "registry operation not supported"
        if self.code == 0:
            self.code = ERROR_TOOL_REGISTRY
        super().__post_init__()


# =============================================================================
# Chat Errors
# =============================================================================


@dataclass
class ChatError(AgentwireError):
    """
    Base class for backend adapter errors.

    These are hard failures: they propagate out of ChatClient.chat() and
    ChatClient.chat_with_tool_choice() and are never retried here.

    Attributes:
        backend: Backend name (ollama, openai, anthropic, gemini)
        model: Model identifier the request targeted
    """

    backend: str = ""
    model: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.backend} chat request failed"
        if self.code == 0:
            self.code = ERROR_CHAT_FAILED
        self.context.update({
            "backend": self.backend,
            "model": self.model,
        })


@dataclass
class BackendConnectionError(ChatError):
    """Raised when the backend cannot be reached."""

    url: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot connect to {self.backend} at {self.url}"
        if self.code == 0:
            self.code = ERROR_CHAT_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the backend is running and llm.base_url is correct"
        super().__post_init__()
        self.context["url"] = self.url


@dataclass
class BackendTimeoutError(ChatError):
    """Raised when the backend does not answer in time."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.backend} request timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_CHAT_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase llm.timeout_seconds"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class BackendHTTPError(ChatError):
    """Raised when the backend answers with a non-success status."""

    status_code: int = 0
    body: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.backend} returned HTTP {self.status_code}: {self.body[:200]}"
        if self.code == 0:
            self.code = ERROR_CHAT_HTTP
        super().__post_init__()
        self.context["status_code"] = self.status_code


@dataclass
class ModelNotFoundError(ChatError):
    """Raised when the requested model is not available on the backend."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Model '{self.model}' not found on {self.backend}"
        if self.code == 0:
            self.code = ERROR_CHAT_MODEL_NOT_FOUND
        if not self.suggestion and self.backend == "ollama":
            self.suggestion = f"Pull the model first: ollama pull {self.model}"
        super().__post_init__()


@dataclass
class EmptyResponseError(ChatError):
    """Raised when a response carries neither text nor a tool call."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"empty response from {self.backend}"
        if self.code == 0:
            self.code = ERROR_CHAT_EMPTY_RESPONSE
        super().__post_init__()


@dataclass
class ToolCallParseError(ChatError):
    """Raised when tool call arguments from the backend cannot be decoded."""

    tool: str = ""
    raw_arguments: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"cannot parse arguments for tool call {self.tool}"
        if self.code == 0:
            self.code = ERROR_CHAT_TOOL_CALL_PARSE
        super().__post_init__()
        self.context.update({
            "tool": self.tool,
            "raw_arguments": self.raw_arguments[:500],
        })


@dataclass
class ChatCancelledError(ChatError):
    """Raised when the caller cancels a chat call or its deadline passes."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "chat call cancelled"
        if self.code == 0:
            self.code = ERROR_CHAT_CANCELLED
        super().__post_init__()


@dataclass
class StreamInterruptedError(ChatError):
    """Raised when a stream ends before its terminal event."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.backend} stream ended before completion"
        if self.code == 0:
            self.code = ERROR_CHAT_STREAM_INTERRUPTED
        super().__post_init__()


@dataclass
class ToolChoiceError(ChatError):
    """Raised when a tool choice names a tool that is not registered."""

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"tool choice names unknown tool {self.tool}"
        if self.code == 0:
            self.code = ERROR_CHAT_TOOL_CHOICE
        super().__post_init__()
        self.context["tool"] = self.tool


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigurationError(AgentwireError):
    """Raised when settings are invalid or incomplete."""

    setting: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid setting: {self.setting}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["setting"] = self.setting


@dataclass
class MissingCredentialsError(ConfigurationError):
    """Raised when a backend needs an API key that is not set."""

    env_var: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.env_var} environment variable not set"
        if self.code == 0:
            self.code = ERROR_CONFIG_MISSING_CREDENTIALS
        if not self.suggestion:
            self.suggestion = f"export {self.env_var}=..."
        super().__post_init__()
        self.context["env_var"] = self.env_var
