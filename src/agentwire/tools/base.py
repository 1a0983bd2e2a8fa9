"""
Base classes for the tool interface.

This module defines the core abstractions for tools in agentwire:
- Tool: Abstract base class that all tools must implement
- FunctionTool: Wraps a plain handler function as a Tool
- ToolResult: Standardized result format from tool execution
- coerce_arguments: Conversion of raw model arguments into plain JSON values

Design Principles:
    - Tools return ToolResult and never raise for user-facing problems
      (bad arguments, denied paths, missing files); the model reads the
      error text and retries
    - Hard failures (programming errors, unreachable dependencies) may
      still propagate out of execute()
    - Tools describe their arguments with ToolArgument so adapters can
      build backend schemas without knowing the tool
    - Argument values crossing the tool boundary are restricted to
      str, int, float, bool, list and dict
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from agentwire.context import CallContext
from agentwire.errors import ToolInvalidArgsError
from agentwire.schema import ArgumentType, ToolArgument

ArgValue: TypeAlias = str | int | float | bool | list["ArgValue"] | dict[str, "ArgValue"]


@dataclass(frozen=True)
class ToolResult:
    """
    Standardized output from tool execution.

    Exactly one of ``text`` and ``error`` is meaningful: a non-empty error
    marks the call as failed and is what the model gets to see.

    Attributes:
        text: Output text on success
        error: Failure text the model should act on
        metadata: Additional metadata about the execution (not sent to the model)
    """

    text: str = ""
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, text: str, **metadata: Any) -> "ToolResult":
        """Create a successful result."""
        return cls(text=text, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "ToolResult":
        """Create a failed result."""
        return cls(error=error, metadata=metadata)

    @property
    def is_error(self) -> bool:
        """True when the tool reported a failure."""
        return bool(self.error)


# =============================================================================
# Argument Conversion
# =============================================================================


def _coerce_value(value: Any, where: str) -> ArgValue:
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        converted: dict[str, ArgValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                msg = f"{where}: object keys must be strings, got {type(key).__name__}"
                raise ToolInvalidArgsError(validation_error=msg)
            if item is None:
                continue
            converted[key] = _coerce_value(item, f"{where}.{key}")
        return converted
    if isinstance(value, (list, tuple)):
        items: list[ArgValue] = []
        for i, item in enumerate(value):
            if item is None:
                msg = f"{where}[{i}]: null is not allowed in arrays"
                raise ToolInvalidArgsError(validation_error=msg)
            items.append(_coerce_value(item, f"{where}[{i}]"))
        return items
    msg = f"{where}: unsupported value of type {type(value).__name__}"
    raise ToolInvalidArgsError(validation_error=msg)


def coerce_arguments(raw: Mapping[str, Any] | None) -> dict[str, ArgValue]:
    """
    Convert raw tool-call arguments into plain JSON values.

    None values are treated as omitted arguments and dropped. Tuples become
    lists. Anything else outside str/int/float/bool/list/dict is rejected.

    Args:
        raw: Arguments as decoded from a backend (or supplied by a caller)

    Returns:
        A new dict containing only supported value types

    Raises:
        ToolInvalidArgsError: If a value cannot be represented
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        msg = f"arguments must be an object, got {type(raw).__name__}"
        raise ToolInvalidArgsError(validation_error=msg)
    converted = _coerce_value(raw, "arguments")
    assert isinstance(converted, dict)
    return converted


_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


def convert_declared(value: ArgValue, expected: ArgumentType) -> ArgValue:
    """
    Convert a value to the declared argument type where unambiguous.

    Models regularly send ``"true"`` for booleans and ``"3"`` for numbers;
    those are converted. Everything else must already have the right type.

    Raises:
        ValueError: If the value does not fit the declared type
    """
    if expected == ArgumentType.STRING:
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    elif expected == ArgumentType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
    elif expected == ArgumentType.NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                pass
            else:
                return int(number) if number.is_integer() and "." not in value else number
    elif expected == ArgumentType.ARRAY:
        if isinstance(value, list):
            return value
    elif expected == ArgumentType.OBJECT:
        if isinstance(value, dict):
            return value

    msg = f"expected {expected.value}, got {type(value).__name__}"
    raise ValueError(msg)


# =============================================================================
# Tool Interface
# =============================================================================


class Tool(ABC):
    """
    Abstract base class for all agentwire tools.

    Each tool:
    - Has a unique name (e.g., "read_file", "find_file")
    - Declares its arguments as ToolArgument instances
    - Implements the execute() method
    - Returns a ToolResult

    Example:
        class EchoTool(Tool):
            @property
            def name(self) -> str:
                return "echo"

            @property
            def arguments(self) -> Sequence[ToolArgument]:
                return (ToolArgument(name="message", required=True),)

            def execute(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
                return ToolResult.ok(args["message"])
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        The unique identifier for this tool.

        Names may contain letters, digits, underscores and hyphens so every
        backend accepts them as function names.
        """
        ...

    @property
    def description(self) -> str:
        """Human-readable description shown to the model."""
        return f"Tool: {self.name}"

    @property
    def arguments(self) -> Sequence[ToolArgument]:
        """Declared arguments; the default is a tool without arguments."""
        return ()

    @abstractmethod
    def execute(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        """
        Execute the tool with the given arguments.

        Args:
            args: Converted arguments that passed validate_args()
            context: Cancellation context of the calling turn, if any

        Returns:
            ToolResult indicating success or failure

        Note:
            - Do NOT raise exceptions for expected failures (file not found, etc.)
            - Use ToolResult.fail() for expected errors
            - Only raise exceptions for unexpected/programming errors
        """
        ...

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Validate and normalize arguments against the declarations.

        Missing required arguments and values of the wrong type are reported.
        Convertible values (``"true"`` for a boolean) are rewritten in place.
        Undeclared arguments are left alone.

        Args:
            args: The arguments to validate

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: list[str] = []
        for arg in self.arguments:
            if arg.name not in args:
                if arg.required:
                    errors.append(f"missing required argument '{arg.name}'")
                continue
            try:
                args[arg.name] = convert_declared(args[arg.name], arg.type)
            except ValueError as e:
                errors.append(f"argument '{arg.name}': {e}")
        return errors

    def __repr__(self) -> str:
        """String representation of the tool."""
        return f"<Tool: {self.name}>"


ToolHandler: TypeAlias = Callable[[CallContext | None, dict[str, Any]], ToolResult]


class FunctionTool(Tool):
    """
    A tool backed by a plain function.

    Example:
        def shout(context, args):
            return ToolResult.ok(args["text"].upper())

        registry.register(FunctionTool(
            name="shout",
            description="Upper-case some text",
            arguments=[ToolArgument(name="text", required=True)],
            handler=shout,
        ))
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        arguments: Sequence[ToolArgument] = (),
    ) -> None:
        self._name = name
        self._description = description
        self._handler = handler
        self._arguments = tuple(arguments)

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def arguments(self) -> Sequence[ToolArgument]:
        return self._arguments

    def execute(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        return self._handler(context, args)
