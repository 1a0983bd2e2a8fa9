"""
Tools module for agentwire.

This module provides the tool interface, the registry/dispatcher and the
sandboxed file toolset.

Architecture:
    - Tool: Abstract base class defining the tool interface
    - FunctionTool: Adapter turning a plain handler into a Tool
    - ToolResult: Standardized result format (text or error)
    - ToolRegistry: Name -> tool mapping with dispatch()
    - CompositeToolRegistry: Read-only union of registries, last source wins
    - FileSystemToolset: read_file, write_file, edit_file, list_directory, find_file

Tool failures the model can fix are returned as ToolResult errors, never
raised.
"""

from agentwire.tools.base import FunctionTool, Tool, ToolResult, coerce_arguments
from agentwire.tools.fs import FileSystemToolset
from agentwire.tools.registry import CompositeToolRegistry, ToolRegistry, execute_tool_call

__all__ = [
    "Tool",
    "FunctionTool",
    "ToolResult",
    "coerce_arguments",
    "ToolRegistry",
    "CompositeToolRegistry",
    "execute_tool_call",
    "FileSystemToolset",
]
