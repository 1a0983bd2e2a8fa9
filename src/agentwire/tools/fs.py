"""
Sandboxed filesystem tools for agentwire.

This module provides the file toolset the model uses to inspect and change
a project:
- read_file: Read file contents
- write_file: Create or overwrite a file
- edit_file: Replace an exact string in a file
- list_directory: List the entries of a directory
- find_file: Find files or directories by name pattern

Security Note:
    Every tool runs its path through PathGuard first (working-directory
    resolution, allowed roots, blacklist). read/write/edit also apply the
    blacklist; list/find only check containment.

Read-before-write:
    Overwriting or editing an existing file requires a prior observation
    of it (read, write or edit) and an mtime no later than that
    observation. Creating a new file needs no prior read. A read of a
    missing file is recorded too, so the model can check a path and then
    create it.

All user-correctable failures come back as ToolResult.fail() with text
that tells the model what to do next.
"""

import os
from fnmatch import fnmatch
from pathlib import Path
from typing import Any

import structlog

from agentwire.context import CallContext
from agentwire.errors import AccessError, SizeExceededError
from agentwire.policy.engine import AccessPolicy, PathGuard
from agentwire.schema import ArgumentType, FileSystemConfig, ToolArgument
from agentwire.tools.base import Tool, ToolResult
from agentwire.tools.readstate import ReadRegistry
from agentwire.tools.registry import ToolRegistry
from agentwire.tools.validation import AutoValidator

MAX_FIND_RESULTS = 100
FIND_EXCLUDED_DIRS = frozenset({"node_modules", "vendor"})
FIND_TYPES = ("f", "d", "both")


def _read_text(path: str) -> str:
    # newline="" keeps CRLF files byte-identical through read/edit cycles
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _write_text(path: str, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


class FileSandbox:
    """
    State shared by the five file tools.

    Attributes:
        config: Sandbox configuration
        guard: Path resolution and access checks
        reads: Read timestamps for the read-before-write guard
        validator: Post-write checker (None when auto_validate is off)
    """

    def __init__(
        self,
        config: FileSystemConfig,
        working_dir: str,
        validator: AutoValidator | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or structlog.get_logger(__name__)
        self.policy = AccessPolicy.build(config, working_dir)
        self.guard = PathGuard(self.policy, logger=self.logger)
        self.reads = ReadRegistry()
        if validator is None and config.auto_validate:
            validator = AutoValidator(
                timeout_seconds=config.validation_timeout_seconds,
                logger=self.logger,
            )
        self.validator = validator if config.auto_validate else None

    def validation_summary(self, path: str) -> str:
        if self.validator is None:
            return ""
        return self.validator.validate(path)


class _FileTool(Tool):
    """Shared execute() plumbing: argument check and AccessError conversion."""

    def __init__(self, sandbox: FileSandbox) -> None:
        self.sandbox = sandbox

    def execute(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        args = dict(args)
        errors = self.validate_args(args)
        if errors:
            return ToolResult.fail(f"Invalid arguments: {'; '.join(errors)}")
        try:
            return self._run(args, context)
        except AccessError as e:
            return ToolResult.fail(e.message, path=e.path, code=e.code)

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        raise NotImplementedError

    def _require_path(self, args: dict[str, Any], errors: list[str], key: str = "path") -> None:
        value = args.get(key)
        if isinstance(value, str) and not value.strip():
            errors.append(f"'{key}' cannot be empty")


class ReadFileTool(_FileTool):
    """
    Read file contents.

    Arguments:
        path (str): File to read, relative to the working directory (required)

    Returns:
        On success: The file text
        On failure: Why the file could not be read
    """

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read file content with access control"

    @property
    def arguments(self) -> tuple[ToolArgument, ...]:
        return (
            ToolArgument(name="path", description="Path to the file to read", required=True),
        )

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = super().validate_args(args)
        self._require_path(args, errors)
        return errors

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        sandbox = self.sandbox
        path = sandbox.guard.authorize(args["path"])

        try:
            st = os.stat(path)
        except FileNotFoundError:
            sandbox.reads.record(path)
            return ToolResult.fail(f"file does not exist: {path}", path=path)
        except OSError as e:
            return ToolResult.fail(f"failed to read file: {e}", path=path)

        if os.path.isdir(path):
            return ToolResult.fail(
                f"{path} is a directory; use list_directory to see its contents",
                path=path,
            )
        if st.st_size > sandbox.config.max_file_bytes:
            raise SizeExceededError(
                path=path,
                actual_size=st.st_size,
                max_size=sandbox.config.max_file_bytes,
            )

        try:
            content = _read_text(path)
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {path}", path=path)
        except UnicodeDecodeError:
            return ToolResult.fail(f"{path} is not a UTF-8 text file", path=path)
        except OSError as e:
            return ToolResult.fail(f"failed to read file: {e}", path=path)

        sandbox.reads.record(path)
        sandbox.logger.debug("file_read", path=path, size=st.st_size)
        return ToolResult.ok(content, path=path, size=st.st_size)


class WriteFileTool(_FileTool):
    """
    Create or overwrite a file.

    Arguments:
        path (str): File to write (required)
        content (str): Full new content (required)

    Missing parent directories are created. Existing files must have been
    read (and not changed since) before they can be overwritten.
    """

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return (
            "Write file content with read-write semantics validation. "
            "IMPORTANT: You must provide both 'path' (file path) and "
            "'content' (full file content) parameters."
        )

    @property
    def arguments(self) -> tuple[ToolArgument, ...]:
        return (
            ToolArgument(
                name="path",
                description="Path to the file to write (required string parameter)",
                required=True,
            ),
            ToolArgument(
                name="content",
                description="Full content to write to the file (required string parameter)",
                required=True,
            ),
        )

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = super().validate_args(args)
        self._require_path(args, errors)
        return errors

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        sandbox = self.sandbox
        path = sandbox.guard.authorize(args["path"])
        content: str = args["content"]

        try:
            st = os.stat(path)
        except FileNotFoundError:
            st = None
        except OSError as e:
            return ToolResult.fail(f"failed to check file status: {e}", path=path)

        if st is not None:
            if os.path.isdir(path):
                return ToolResult.fail(f"{path} is a directory", path=path)
            sandbox.reads.check_writable(path, st.st_mtime_ns)

        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
        except OSError as e:
            return ToolResult.fail(f"failed to create directory: {e}", path=path)

        try:
            _write_text(path, content)
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {path}", path=path)
        except OSError as e:
            return ToolResult.fail(f"failed to write file: {e}", path=path)

        sandbox.reads.record(path)
        sandbox.logger.info("file_written", path=path, chars=len(content), created=st is None)

        validation = sandbox.validation_summary(path)
        return ToolResult.ok(
            f"Successfully wrote to {path}{validation}",
            path=path,
            created=st is None,
        )


class EditFileTool(_FileTool):
    """
    Replace an exact string in a file.

    Arguments:
        path (str): File to edit (required)
        old_string (str): Exact text to replace (required)
        new_string (str): Replacement text (required)
        replace_all (bool): Replace every occurrence, default False

    Without replace_all, old_string must occur exactly once so the edit is
    unambiguous.
    """

    @property
    def name(self) -> str:
        return "edit_file"

    @property
    def description(self) -> str:
        return "Advanced file editing with precise string replacement"

    @property
    def arguments(self) -> tuple[ToolArgument, ...]:
        return (
            ToolArgument(name="path", description="Path to the file to edit", required=True),
            ToolArgument(
                name="old_string",
                description=(
                    "Exact multiline string to replace "
                    "(must match exactly once unless replace_all=true)"
                ),
                required=True,
            ),
            ToolArgument(
                name="new_string",
                description="Precise replacement content (multiline supported)",
                required=True,
            ),
            ToolArgument(
                name="replace_all",
                description=(
                    "Replace all occurrences of old_string "
                    "(default: false, replaces only the first occurrence)"
                ),
                type=ArgumentType.BOOLEAN,
            ),
        )

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = super().validate_args(args)
        self._require_path(args, errors)
        if args.get("old_string") == "":
            errors.append("'old_string' cannot be empty")
        return errors

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        old: str = args["old_string"]
        new: str = args["new_string"]
        replace_all: bool = args.get("replace_all", False)

        if old == new:
            return ToolResult.fail("old_string and new_string cannot be identical")

        sandbox = self.sandbox
        path = sandbox.guard.authorize(args["path"])

        try:
            st = os.stat(path)
        except FileNotFoundError:
            return ToolResult.fail(
                f"file does not exist: {path} (use write_file to create it)",
                path=path,
            )
        except OSError as e:
            return ToolResult.fail(f"failed to check file status: {e}", path=path)

        sandbox.reads.check_writable(path, st.st_mtime_ns)
        if st.st_size > sandbox.config.max_file_bytes:
            raise SizeExceededError(
                path=path,
                actual_size=st.st_size,
                max_size=sandbox.config.max_file_bytes,
            )

        try:
            content = _read_text(path)
        except UnicodeDecodeError:
            return ToolResult.fail(f"{path} is not a UTF-8 text file", path=path)
        except OSError as e:
            return ToolResult.fail(f"failed to read file {path}: {e}", path=path)

        occurrences = content.count(old)
        if occurrences == 0:
            return ToolResult.fail(
                f"old_string not found in file {path}. "
                "Please ensure exact whitespace and formatting match.",
                path=path,
            )
        if occurrences > 1 and not replace_all:
            return ToolResult.fail(
                f"old_string appears {occurrences} times in file {path} "
                "(use replace_all=true to replace all occurrences)",
                path=path,
                occurrences=occurrences,
            )

        updated = content.replace(old, new) if replace_all else content.replace(old, new, 1)
        if updated == content:
            return ToolResult.fail("no changes made to file", path=path)

        try:
            _write_text(path, updated)
        except OSError as e:
            return ToolResult.fail(f"failed to write file {path}: {e}", path=path)

        sandbox.reads.record(path)
        replaced = occurrences if replace_all else 1
        sandbox.logger.info("file_edited", path=path, replaced=replaced)

        if replace_all:
            occurrence_info = f"Replaced {replaced} occurrence(s)"
        else:
            occurrence_info = "Replaced 1 occurrence"
        old_lines = old.count("\n") + 1
        new_lines = new.count("\n") + 1
        validation = sandbox.validation_summary(path)
        return ToolResult.ok(
            f"Successfully edited {path}\n"
            f"{occurrence_info}\n"
            f"Replaced {old_lines} line(s) with {new_lines} line(s)\n"
            f"Old content: {len(old)} characters\n"
            f"New content: {len(new)} characters"
            f"{validation}",
            path=path,
            replaced=replaced,
        )


class ListDirectoryTool(_FileTool):
    """
    List the entries of a directory.

    Arguments:
        path (str): Directory to list, default "." (the working directory)
    """

    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List directory contents with access control"

    @property
    def arguments(self) -> tuple[ToolArgument, ...]:
        return (
            ToolArgument(
                name="path",
                description="Path to the directory to list (defaults to current directory)",
            ),
        )

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        path = self.sandbox.guard.authorize(args.get("path") or ".", blacklist=False)

        try:
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda e: e.name)
                lines = [f"Contents of {path}:"]
                for entry in entries:
                    if entry.is_dir():
                        lines.append(f"  {entry.name}/ (directory)")
                    else:
                        lines.append(f"  {entry.name} (file)")
        except FileNotFoundError:
            return ToolResult.fail(f"directory does not exist: {path}", path=path)
        except NotADirectoryError:
            return ToolResult.fail(f"{path} is not a directory", path=path)
        except OSError as e:
            return ToolResult.fail(f"failed to read directory: {e}", path=path)

        return ToolResult.ok("\n".join(lines) + "\n", path=path, entries=len(lines) - 1)


class FindFileTool(_FileTool):
    """
    Find files or directories by name pattern.

    Arguments:
        name_pattern (str): Glob matched against entry names, e.g. "*.py" (required)
        path (str): Directory to search, default "."
        type (str): "f" files, "d" directories, "both"; default "f"

    Hidden directories, node_modules and vendor are skipped. At most
    MAX_FIND_RESULTS matches are listed, followed by a truncation notice.
    """

    @property
    def name(self) -> str:
        return "find_file"

    @property
    def description(self) -> str:
        return "Find files by name pattern within the allowed directories"

    @property
    def arguments(self) -> tuple[ToolArgument, ...]:
        return (
            ToolArgument(
                name="name_pattern",
                description=(
                    "File name pattern to search for "
                    "(supports wildcards like *.py, *test*, etc.)"
                ),
                required=True,
            ),
            ToolArgument(
                name="path",
                description="Directory path to search in (must be within allowed directories)",
            ),
            ToolArgument(
                name="type",
                description=(
                    "File type filter: 'f' for files, 'd' for directories, "
                    "or 'both' (default: 'f')"
                ),
            ),
        )

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        errors = super().validate_args(args)
        kind = args.get("type")
        if kind is not None and kind not in FIND_TYPES:
            errors.append("'type' must be one of 'f', 'd', 'both'")
        return errors

    def _run(self, args: dict[str, Any], context: CallContext | None) -> ToolResult:
        pattern: str = args["name_pattern"]
        kind: str = args.get("type") or "f"
        root = self.sandbox.guard.authorize(args.get("path") or ".", blacklist=False)

        if not os.path.isdir(root):
            return ToolResult.fail(f"{root} is not a directory", path=root)

        matches: list[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            if context is not None:
                context.raise_if_cancelled()
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in FIND_EXCLUDED_DIRS
            )
            if kind in ("d", "both"):
                matches.extend(os.path.join(dirpath, d) for d in dirnames if fnmatch(d, pattern))
            if kind in ("f", "both"):
                matches.extend(
                    os.path.join(dirpath, f)
                    for f in sorted(filenames)
                    if not f.startswith(".") and fnmatch(f, pattern)
                )

        if not matches:
            return ToolResult.ok(
                f"No files found matching pattern '{pattern}' in path '{root}'",
                path=root,
                matches=0,
            )

        total = len(matches)
        output = "\n".join(matches[:MAX_FIND_RESULTS])
        if total > MAX_FIND_RESULTS:
            output += (
                f"\n\n... (output truncated, showing first {MAX_FIND_RESULTS} "
                f"matches out of {total} total matches)"
            )
        return ToolResult.ok(output, path=root, matches=total)


class FileSystemToolset(ToolRegistry):
    """
    Registry holding the five sandboxed file tools.

    Example:
        toolset = FileSystemToolset(FileSystemConfig(), working_dir="/srv/project")
        toolset.dispatch("read_file", {"path": "README.md"})

    Args:
        config: Sandbox configuration
        working_dir: Base directory for relative paths; always an allowed root
        validator: Post-write checker (defaults to Python and Go checkers)
        logger: structlog logger
    """

    def __init__(
        self,
        config: FileSystemConfig,
        working_dir: str | Path,
        validator: AutoValidator | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self.sandbox = FileSandbox(
            config,
            str(working_dir),
            validator=validator,
            logger=self._logger,
        )
        for tool_cls in (
            ReadFileTool,
            WriteFileTool,
            EditFileTool,
            ListDirectoryTool,
            FindFileTool,
        ):
            self.register(tool_cls(self.sandbox))

    @property
    def working_dir(self) -> str:
        return self.sandbox.policy.working_dir

    @property
    def allowed_roots(self) -> tuple[str, ...]:
        return self.sandbox.policy.allowed_roots
