"""
Tool registry and dispatcher for agentwire.

The registry maps tool names to tools and is the single entry point for
running a tool call. Dispatch never raises for user-facing problems: an
unknown tool, unconvertible arguments or a missing required argument all
come back as ToolResult.fail() so the model can correct itself.

Design:
    - No global registry; callers construct and pass registries explicitly
    - Thread-safe registration and lookup
    - CompositeToolRegistry flattens several registries into one namespace,
      later sources winning on name clashes
    - execute_tool_call() bridges ToolCallMessage -> ToolResultMessage

Usage:
    registry = ToolRegistry()
    registry.register(MyTool())
    result = registry.dispatch("my_tool", {"x": 1})
"""

import re
import threading
from collections.abc import Iterable, Iterator
from typing import Any

import structlog

from agentwire.context import CallContext
from agentwire.errors import RegistryError, ToolInvalidArgsError, ToolNotFoundError
from agentwire.schema import ToolCallMessage, ToolResultMessage
from agentwire.tools.base import Tool, ToolResult, coerce_arguments

TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ToolRegistry:
    """
    Registry for looking up and dispatching tools by name.

    Attributes:
        _tools: Internal mapping of tool names to tool instances
        _lock: Guards _tools against concurrent registration
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, Tool] = {}
        self._lock = threading.RLock()
        self._logger = logger or structlog.get_logger(__name__)

    def register(self, tool: Tool) -> None:
        """
        Register a tool in the registry.

        A tool with the same name replaces the previous one.

        Args:
            tool: The tool instance to register

        Raises:
            ValueError: If tool is None or its name is empty or not a valid
                function name
        """
        if tool is None:
            msg = "Cannot register None as a tool"
            raise ValueError(msg)

        name = tool.name
        if not name:
            msg = "Tool must have a non-empty name"
            raise ValueError(msg)
        if not TOOL_NAME_PATTERN.match(name):
            msg = f"Invalid tool name {name!r}: use letters, digits, '_' or '-'"
            raise ValueError(msg)

        with self._lock:
            if name in self._tools:
                self._logger.debug("tool_replaced", tool=name)
            self._tools[name] = tool

    def get(self, name: str) -> Tool | None:
        """
        Look up a tool by name.

        Returns:
            The registered tool instance, or None if not found
        """
        with self._lock:
            return self._tools.get(name)

    def require(self, name: str) -> Tool:
        """
        Look up a tool by name, raising if it is missing.

        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(tool=name)
        return tool

    def tools(self) -> dict[str, Tool]:
        """Snapshot of the name -> tool mapping."""
        with self._lock:
            return dict(self._tools)

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        with self._lock:
            return name in self._tools

    def unregister(self, name: str) -> bool:
        """
        Remove a tool from the registry.

        Returns:
            True if the tool was removed, False if it wasn't registered
        """
        with self._lock:
            return self._tools.pop(name, None) is not None

    def clear(self) -> None:
        """Remove all tools from the registry."""
        with self._lock:
            self._tools.clear()

    def list_tools(self) -> list[str]:
        """List all registered tool names in sorted order."""
        with self._lock:
            return sorted(self._tools)

    def dispatch(
        self,
        name: str,
        args: dict[str, Any] | None,
        context: CallContext | None = None,
    ) -> ToolResult:
        """
        Run a tool by name.

        Args:
            name: Tool to run
            args: Raw arguments as sent by the model
            context: Cancellation context of the calling turn

        Returns:
            The tool's result, or a failed ToolResult for an unknown tool
            or invalid arguments

        Raises:
            ChatCancelledError: If the context was cancelled before the tool ran
        """
        log = self._logger.bind(tool=name)

        tool = self.get(name)
        if tool is None:
            log.warning("tool_not_found")
            return ToolResult.fail(ToolNotFoundError(tool=name).message)

        try:
            converted = coerce_arguments(args)
        except ToolInvalidArgsError as e:
            log.warning("tool_arguments_rejected", error=e.validation_error)
            return ToolResult.fail(f"Invalid arguments for {name}: {e.validation_error}")

        errors = tool.validate_args(converted)
        if errors:
            log.warning("tool_arguments_rejected", error="; ".join(errors))
            return ToolResult.fail(f"Invalid arguments for {name}: {'; '.join(errors)}")

        if context is not None:
            context.raise_if_cancelled()

        log.debug("tool_dispatch_started", arguments=sorted(converted))
        result = tool.execute(converted, context)
        if result.is_error:
            log.info("tool_dispatch_failed", error=result.error)
        else:
            log.debug("tool_dispatch_succeeded", chars=len(result.text))
        return result

    def __len__(self) -> int:
        """Return the number of registered tools."""
        with self._lock:
            return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        """Iterate over a snapshot of the registered tools."""
        return iter(list(self.tools().values()))

    def __contains__(self, name: object) -> bool:
        """Check if a tool is registered using 'in' operator."""
        return isinstance(name, str) and self.has(name)

    def __repr__(self) -> str:
        """String representation of the registry."""
        tools = ", ".join(self.list_tools())
        return f"<{self.__class__.__name__}: [{tools}]>"


class CompositeToolRegistry(ToolRegistry):
    """
    Read-only union of several registries.

    The namespace is built once, at construction, by visiting the sources in
    order; a tool from a later source replaces an earlier one with the same
    name. Tools registered on a source afterwards are not picked up.

    register() is unsupported because each tool belongs to its source.
    """

    def __init__(
        self,
        *sources: ToolRegistry,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        for source in sources:
            for tool in source:
                if tool.name in self._tools:
                    self._logger.debug("tool_shadowed", tool=tool.name)
                self._tools[tool.name] = tool

    @classmethod
    def from_iterable(cls, sources: Iterable[ToolRegistry]) -> "CompositeToolRegistry":
        """Build a composite from any iterable of registries."""
        return cls(*sources)

    def register(self, tool: Tool) -> None:
        """
        Always fails.

        Raises:
            RegistryError: Register the tool on one of the source registries
        """
        raise RegistryError(
            message="composite registry does not support register",
            tool=getattr(tool, "name", ""),
            suggestion="Register the tool on a source registry before composing",
        )


def execute_tool_call(
    registry: ToolRegistry,
    call: ToolCallMessage,
    context: CallContext | None = None,
) -> ToolResultMessage:
    """
    Dispatch a ToolCallMessage and wrap the outcome for the history.

    Args:
        registry: Registry to dispatch through
        call: The tool call decoded by an adapter
        context: Cancellation context of the calling turn

    Returns:
        A ToolResultMessage answering ``call`` (same call_id)
    """
    result = registry.dispatch(call.tool_name, call.arguments, context)
    if result.is_error:
        return ToolResultMessage(call_id=call.call_id, error=result.error)
    return ToolResultMessage(call_id=call.call_id, content=result.text)
