"""
Unit tests for the sandboxed file tools.

Tests cover:
- read_file: text, missing files, directories, size limit, encoding
- write_file: creation, read-before-write, stale reads
- edit_file: single and repeated occurrences, replace_all, rejections
- list_directory and find_file output
- Post-write validation summary
- Concurrent dispatch on one toolset
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from agentwire.schema import FileSystemConfig
from agentwire.tools import FileSystemToolset, ToolResult
from agentwire.tools.fs import MAX_FIND_RESULTS
from agentwire.tools.validation import STATUS_FAIL, AutoValidator, CheckResult, Validator


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def sample_file(temp_dir: Path) -> Path:
    """Create a sample text file."""
    path = temp_dir / "sample.txt"
    path.write_text("Hello, World!\nLine 2\n")
    return path


def touch_future(path: Path, seconds: int = 10) -> None:
    """Move a file's mtime into the future, as if someone else changed it."""
    future = time.time_ns() + seconds * 1_000_000_000
    os.utime(path, ns=(future, future))


# =============================================================================
# Toolset Tests
# =============================================================================


class TestToolset:
    """Tests for FileSystemToolset wiring."""

    def test_registers_five_tools(self, toolset: FileSystemToolset) -> None:
        assert toolset.list_tools() == [
            "edit_file",
            "find_file",
            "list_directory",
            "read_file",
            "write_file",
        ]

    def test_working_dir_is_first_root(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        assert toolset.working_dir == str(temp_dir)
        assert toolset.allowed_roots[0] == str(temp_dir)

    def test_relative_allowed_directory(self, temp_dir: Path) -> None:
        config = FileSystemConfig(allowed_directories=["../shared"], auto_validate=False)
        toolset = FileSystemToolset(config, working_dir=temp_dir / "app")
        assert toolset.allowed_roots[1] == str(temp_dir / "shared")


# =============================================================================
# read_file Tests
# =============================================================================


class TestReadFile:
    """Tests for read_file."""

    def test_read_text(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch("read_file", {"path": "sample.txt"})
        assert not result.is_error
        assert result.text == "Hello, World!\nLine 2\n"
        assert result.metadata["path"] == str(sample_file)

    def test_read_absolute_inside(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch("read_file", {"path": str(sample_file)})
        assert result.text.startswith("Hello")

    def test_crlf_preserved(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        (temp_dir / "win.txt").write_bytes(b"a\r\nb\r\n")
        assert toolset.dispatch("read_file", {"path": "win.txt"}).text == "a\r\nb\r\n"

    def test_missing_file(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        result = toolset.dispatch("read_file", {"path": "nope.txt"})
        assert result.is_error
        assert result.error.startswith("file does not exist")

    def test_missing_file_read_is_recorded(
        self, toolset: FileSystemToolset, temp_dir: Path
    ) -> None:
        toolset.dispatch("read_file", {"path": "later.txt"})
        assert str(temp_dir / "later.txt") in toolset.sandbox.reads

    def test_directory(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        (temp_dir / "sub").mkdir()
        result = toolset.dispatch("read_file", {"path": "sub"})
        assert result.is_error
        assert "list_directory" in result.error

    def test_binary_file(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        (temp_dir / "blob.bin").write_bytes(b"\x00\xff\xfe")
        result = toolset.dispatch("read_file", {"path": "blob.bin"})
        assert result.is_error
        assert "not a UTF-8 text file" in result.error

    def test_size_limit(self, temp_dir: Path) -> None:
        config = FileSystemConfig(max_file_bytes=10, auto_validate=False)
        toolset = FileSystemToolset(config, working_dir=temp_dir)
        (temp_dir / "big.txt").write_text("x" * 20)
        result = toolset.dispatch("read_file", {"path": "big.txt"})
        assert result.is_error
        assert "too large" in result.error

    def test_empty_path(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch("read_file", {"path": "  "})
        assert result.is_error
        assert "'path' cannot be empty" in result.error

    def test_missing_path(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch("read_file", {})
        assert result.error == "Invalid arguments for read_file: missing required argument 'path'"


# =============================================================================
# write_file Tests
# =============================================================================


class TestWriteFile:
    """Tests for write_file and the read-before-write guard."""

    def test_create_new_file(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        result = toolset.dispatch("write_file", {"path": "new.txt", "content": "hi"})
        assert not result.is_error
        assert result.text == f"Successfully wrote to {temp_dir / 'new.txt'}"
        assert result.metadata["created"] is True
        assert (temp_dir / "new.txt").read_text() == "hi"

    def test_creates_parent_directories(
        self, toolset: FileSystemToolset, temp_dir: Path
    ) -> None:
        result = toolset.dispatch("write_file", {"path": "a/b/c.txt", "content": "x"})
        assert not result.is_error
        assert (temp_dir / "a" / "b" / "c.txt").read_text() == "x"

    def test_overwrite_without_read(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch("write_file", {"path": "sample.txt", "content": "new"})
        assert result.is_error
        assert result.error == (
            "read-write semantics violation: "
            f"file {sample_file} was not read before write attempt"
        )
        assert sample_file.read_text() == "Hello, World!\nLine 2\n"

    def test_overwrite_after_read(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        result = toolset.dispatch("write_file", {"path": "sample.txt", "content": "new"})
        assert not result.is_error
        assert result.metadata["created"] is False
        assert sample_file.read_text() == "new"

    def test_stale_read(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        touch_future(sample_file)
        result = toolset.dispatch("write_file", {"path": "sample.txt", "content": "new"})
        assert result.is_error
        assert "was modified after last read" in result.error
        assert sample_file.read_text() == "Hello, World!\nLine 2\n"

    def test_write_after_write(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        toolset.dispatch("write_file", {"path": "w.txt", "content": "one"})
        result = toolset.dispatch("write_file", {"path": "w.txt", "content": "two"})
        assert not result.is_error
        assert (temp_dir / "w.txt").read_text() == "two"

    def test_missing_read_then_create(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        assert toolset.dispatch("read_file", {"path": "p.txt"}).is_error
        result = toolset.dispatch("write_file", {"path": "p.txt", "content": "made"})
        assert not result.is_error

    def test_directory_target(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        (temp_dir / "sub").mkdir()
        result = toolset.dispatch("write_file", {"path": "sub", "content": "x"})
        assert result.is_error
        assert "is a directory" in result.error

    def test_missing_content(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch("write_file", {"path": "x.txt"})
        assert result.is_error
        assert "missing required argument 'content'" in result.error

    def test_empty_content_allowed(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        result = toolset.dispatch("write_file", {"path": "empty.txt", "content": ""})
        assert not result.is_error
        assert (temp_dir / "empty.txt").read_text() == ""


# =============================================================================
# edit_file Tests
# =============================================================================


class TestEditFile:
    """Tests for edit_file."""

    @pytest.fixture
    def repeated(self, temp_dir: Path) -> Path:
        path = temp_dir / "repeat.txt"
        path.write_text("foo bar foo\n")
        return path

    def test_single_occurrence(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "World", "new_string": "There"},
        )
        assert not result.is_error
        assert "Replaced 1 occurrence\n" in result.text
        assert sample_file.read_text() == "Hello, There!\nLine 2\n"

    def test_edit_without_read(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "World", "new_string": "There"},
        )
        assert result.is_error
        assert "was not read before write attempt" in result.error

    def test_ambiguous_edit(self, toolset: FileSystemToolset, repeated: Path) -> None:
        toolset.dispatch("read_file", {"path": "repeat.txt"})
        result = toolset.dispatch(
            "edit_file",
            {"path": "repeat.txt", "old_string": "foo", "new_string": "baz"},
        )
        assert result.is_error
        assert "appears 2 times" in result.error
        assert repeated.read_text() == "foo bar foo\n"

    def test_replace_all(self, toolset: FileSystemToolset, repeated: Path) -> None:
        toolset.dispatch("read_file", {"path": "repeat.txt"})
        result = toolset.dispatch(
            "edit_file",
            {
                "path": "repeat.txt",
                "old_string": "foo",
                "new_string": "baz",
                "replace_all": "true",
            },
        )
        assert not result.is_error
        assert "Replaced 2 occurrence(s)" in result.text
        assert repeated.read_text() == "baz bar baz\n"

    def test_consecutive_edits(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "Hello", "new_string": "Hi"},
        )
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "Line 2", "new_string": "Line two"},
        )
        assert not result.is_error
        assert sample_file.read_text() == "Hi, World!\nLine two\n"

    def test_identical_strings(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "World", "new_string": "World"},
        )
        assert result.error == "old_string and new_string cannot be identical"

    def test_not_found(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "Moon", "new_string": "Sun"},
        )
        assert result.is_error
        assert "old_string not found" in result.error

    def test_missing_file(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch(
            "edit_file",
            {"path": "ghost.txt", "old_string": "a", "new_string": "b"},
        )
        assert result.is_error
        assert "use write_file to create it" in result.error

    def test_empty_old_string(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "", "new_string": "x"},
        )
        assert result.is_error
        assert "'old_string' cannot be empty" in result.error

    def test_stale_edit(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        toolset.dispatch("read_file", {"path": "sample.txt"})
        touch_future(sample_file)
        result = toolset.dispatch(
            "edit_file",
            {"path": "sample.txt", "old_string": "World", "new_string": "There"},
        )
        assert result.is_error
        assert "was modified after last read" in result.error


# =============================================================================
# list_directory Tests
# =============================================================================


class TestListDirectory:
    """Tests for list_directory."""

    def test_lists_sorted_entries(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        (temp_dir / "b.txt").write_text("b")
        (temp_dir / "a").mkdir()
        result = toolset.dispatch("list_directory", {})
        assert result.text == f"Contents of {temp_dir}:\n  a/ (directory)\n  b.txt (file)\n"
        assert result.metadata["entries"] == 2

    def test_missing_directory(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch("list_directory", {"path": "nope"})
        assert result.is_error
        assert "directory does not exist" in result.error

    def test_file_target(self, toolset: FileSystemToolset, sample_file: Path) -> None:
        result = toolset.dispatch("list_directory", {"path": "sample.txt"})
        assert result.is_error
        assert "is not a directory" in result.error


# =============================================================================
# find_file Tests
# =============================================================================


class TestFindFile:
    """Tests for find_file."""

    @pytest.fixture
    def tree(self, temp_dir: Path) -> Path:
        (temp_dir / "src" / "pkg").mkdir(parents=True)
        (temp_dir / "src" / "main.py").write_text("")
        (temp_dir / "src" / "pkg" / "util.py").write_text("")
        (temp_dir / "README.md").write_text("")
        (temp_dir / "node_modules" / "dep").mkdir(parents=True)
        (temp_dir / "node_modules" / "dep" / "index.py").write_text("")
        (temp_dir / ".git").mkdir()
        (temp_dir / ".git" / "hook.py").write_text("")
        return temp_dir

    def test_find_files(self, toolset: FileSystemToolset, tree: Path) -> None:
        result = toolset.dispatch("find_file", {"name_pattern": "*.py"})
        assert result.text.splitlines() == [
            str(tree / "src" / "main.py"),
            str(tree / "src" / "pkg" / "util.py"),
        ]

    def test_find_directories(self, toolset: FileSystemToolset, tree: Path) -> None:
        result = toolset.dispatch("find_file", {"name_pattern": "p*", "type": "d"})
        assert result.text == str(tree / "src" / "pkg")

    def test_no_matches(self, toolset: FileSystemToolset, tree: Path) -> None:
        result = toolset.dispatch("find_file", {"name_pattern": "*.rs"})
        assert not result.is_error
        assert result.text.startswith("No files found matching pattern '*.rs'")

    def test_truncation(self, toolset: FileSystemToolset, temp_dir: Path) -> None:
        for i in range(MAX_FIND_RESULTS + 5):
            (temp_dir / f"f{i:03d}.txt").write_text("")
        result = toolset.dispatch("find_file", {"name_pattern": "*.txt"})
        lines = result.text.splitlines()
        assert len([line for line in lines if line.endswith(".txt")]) == MAX_FIND_RESULTS
        assert lines[-1] == (
            f"... (output truncated, showing first {MAX_FIND_RESULTS} "
            f"matches out of {MAX_FIND_RESULTS + 5} total matches)"
        )
        assert result.metadata["matches"] == MAX_FIND_RESULTS + 5

    def test_invalid_type(self, toolset: FileSystemToolset) -> None:
        result = toolset.dispatch("find_file", {"name_pattern": "*", "type": "x"})
        assert result.is_error
        assert "'type' must be one of" in result.error


# =============================================================================
# Concurrency Tests
# =============================================================================


class TestConcurrentDispatch:
    """Tests for one toolset shared by several worker threads."""

    def test_workers_on_distinct_paths(
        self, toolset: FileSystemToolset, temp_dir: Path
    ) -> None:
        def work(n: int) -> list[ToolResult]:
            path = f"worker_{n}/notes.txt"
            results = [toolset.dispatch("write_file", {"path": path, "content": f"draft {n}\n"})]
            results.append(toolset.dispatch("read_file", {"path": path}))
            results.append(
                toolset.dispatch(
                    "edit_file",
                    {"path": path, "old_string": "draft", "new_string": "final"},
                )
            )
            results.append(toolset.dispatch("read_file", {"path": path}))
            return results

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(work, range(16)))

        for n, (write, first, edit, second) in enumerate(outcomes):
            assert not any(r.is_error for r in (write, first, edit, second)), n
            assert write.text.startswith("Successfully wrote to ")
            assert first.text == f"draft {n}\n"
            assert "Replaced 1 occurrence\n" in edit.text
            assert second.text == f"final {n}\n"
            assert (temp_dir / f"worker_{n}" / "notes.txt").read_text() == f"final {n}\n"


# =============================================================================
# Post-write Validation Tests
# =============================================================================


class AlwaysFails(Validator):
    language = "Text"
    extensions = (".txt",)

    def run(self, path: str, timeout_seconds: int) -> list[CheckResult]:
        return [CheckResult("lint", STATUS_FAIL, "Found 1 issue", "line 1: bad")]


class TestPostWriteValidation:
    """Tests for the validation summary appended to write results."""

    def test_summary_appended(self, temp_dir: Path) -> None:
        config = FileSystemConfig(auto_validate=True)
        toolset = FileSystemToolset(
            config,
            working_dir=temp_dir,
            validator=AutoValidator([AlwaysFails()]),
        )
        result = toolset.dispatch("write_file", {"path": "a.txt", "content": "x"})
        assert not result.is_error
        assert "Text validation results:" in result.text
        assert "[FAIL] lint: Found 1 issue" in result.text
        assert (temp_dir / "a.txt").read_text() == "x"

    def test_disabled(self, temp_dir: Path) -> None:
        config = FileSystemConfig(auto_validate=False)
        toolset = FileSystemToolset(
            config,
            working_dir=temp_dir,
            validator=AutoValidator([AlwaysFails()]),
        )
        result = toolset.dispatch("write_file", {"path": "a.txt", "content": "x"})
        assert "validation results" not in result.text
