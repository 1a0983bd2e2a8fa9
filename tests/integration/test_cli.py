"""
Integration tests for the agentwire CLI.

Tests the CLI commands end-to-end with a temp working directory and a
mocked HTTP backend.
"""

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

from agentwire import __version__, cli
from agentwire.cli import app
from agentwire.clients import OllamaClient

from conftest import RecordingTransport

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """Undo the logging setup each command performs."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def workdir(temp_dir: Path) -> Path:
    """Working directory with one text file."""
    (temp_dir / "notes.txt").write_text("remember the milk\n")
    return temp_dir


@pytest.fixture
def config_file(temp_dir: Path) -> Path:
    """Settings file that keeps log output off the terminal."""
    path = temp_dir / "agentwire.yaml"
    path.write_text("logging:\n  level: error\nfilesystem:\n  auto_validate: false\n")
    return path


def invoke(*args: str):
    return runner.invoke(app, list(args))


# =============================================================================
# Version and Help
# =============================================================================


class TestVersion:
    def test_version(self) -> None:
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_help_lists_commands(self) -> None:
        result = invoke("--help")
        assert result.exit_code == 0
        for command in ("tools", "call", "chat", "doctor"):
            assert command in result.stdout


# =============================================================================
# tools
# =============================================================================


class TestToolsCommand:
    """Tests for 'agentwire tools'."""

    def test_json_output(self, workdir: Path, config_file: Path) -> None:
        result = invoke("tools", "--workdir", str(workdir), "--config", str(config_file), "--json")
        assert result.exit_code == 0

        data = json.loads(result.stdout)
        assert data["working_dir"] == str(workdir)
        assert [t["name"] for t in data["tools"]] == [
            "edit_file",
            "find_file",
            "list_directory",
            "read_file",
            "write_file",
        ]
        read_file = data["tools"][3]
        assert read_file["parameters"]["required"] == ["path"]

    def test_table_output(self, workdir: Path, config_file: Path) -> None:
        result = invoke("tools", "--workdir", str(workdir), "--config", str(config_file))
        assert result.exit_code == 0
        assert "read_file" in result.stdout
        assert "Working directory" in result.stdout

    def test_invalid_config(self, workdir: Path, temp_dir: Path) -> None:
        bad = temp_dir / "bad.yaml"
        bad.write_text("llm:\n  backend: telepathy\n")
        result = invoke("tools", "--workdir", str(workdir), "--config", str(bad), "--json")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "config_load_error"


# =============================================================================
# call
# =============================================================================


class TestCallCommand:
    """Tests for 'agentwire call'."""

    def test_read_file(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call",
            "read_file",
            "--args",
            '{"path": "notes.txt"}',
            "--workdir",
            str(workdir),
            "--config",
            str(config_file),
            "--json",
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {"tool": "read_file", "text": "remember the milk\n", "error": None}

    def test_write_new_file(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call",
            "write_file",
            "--args",
            '{"path": "out/todo.md", "content": "- milk\\n"}',
            "--workdir",
            str(workdir),
            "--config",
            str(config_file),
        )
        assert result.exit_code == 0
        assert (workdir / "out" / "todo.md").read_text() == "- milk\n"

    def test_overwrite_without_read_refused(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call",
            "write_file",
            "--args",
            '{"path": "notes.txt", "content": "gone"}',
            "--workdir",
            str(workdir),
            "--config",
            str(config_file),
            "--json",
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"]
        assert (workdir / "notes.txt").read_text() == "remember the milk\n"

    def test_unknown_tool(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call", "delete_everything", "--workdir", str(workdir), "--config", str(config_file),
            "--json",
        )
        assert result.exit_code == 1
        assert "not found" in json.loads(result.stdout)["error"]

    def test_invalid_json_args(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call", "read_file", "--args", "{path:", "--workdir", str(workdir),
            "--config", str(config_file), "--json",
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "invalid_args"

    def test_args_must_be_object(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call", "read_file", "--args", "[1, 2]", "--workdir", str(workdir),
            "--config", str(config_file), "--json",
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["message"] == "--args must be a JSON object"

    def test_path_outside_workdir(self, workdir: Path, config_file: Path) -> None:
        result = invoke(
            "call", "read_file", "--args", '{"path": "../../etc/passwd"}',
            "--workdir", str(workdir), "--config", str(config_file), "--json",
        )
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"]


# =============================================================================
# chat
# =============================================================================


class TestChatCommand:
    """Tests for 'agentwire chat' against a mocked Ollama backend."""

    @pytest.fixture
    def backend(self, monkeypatch: pytest.MonkeyPatch) -> RecordingTransport:
        transport = RecordingTransport()

        def fake_create_client(settings, registry=None, logger=None, env=None):
            return OllamaClient(
                model=settings.model,
                thinking=settings.thinking,
                stream=False,
                registry=registry,
                client=transport.client(),
            )

        monkeypatch.setattr(cli, "create_client", fake_create_client)
        return transport

    def test_text_reply(
        self, backend: RecordingTransport, workdir: Path, config_file: Path
    ) -> None:
        backend.responses.append(
            {"message": {"role": "assistant", "content": "Hi there"}, "done": True}
        )
        result = invoke(
            "chat", "hello", "--workdir", str(workdir), "--config", str(config_file), "--json"
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["reply"]["kind"] == "assistant"
        assert data["reply"]["content"] == "Hi there"
        assert "tool_result" not in data

        payload = backend.last_payload
        assert payload["messages"][-1] == {"role": "user", "content": "hello"}
        assert [t["function"]["name"] for t in payload["tools"]][:2] == ["edit_file", "find_file"]

    def test_tool_call_dispatched(
        self, backend: RecordingTransport, workdir: Path, config_file: Path
    ) -> None:
        backend.responses.append({
            "message": {
                "role": "assistant",
                "content": "",
                "tool_calls": [
                    {"function": {"name": "read_file", "arguments": {"path": "notes.txt"}}}
                ],
            },
            "done": True,
        })
        result = invoke(
            "chat", "what do my notes say?", "--choice", "read_file",
            "--workdir", str(workdir), "--config", str(config_file), "--json",
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["reply"]["tool_name"] == "read_file"
        assert data["tool_result"]["content"] == "remember the milk\n"
        assert [t["function"]["name"] for t in backend.last_payload["tools"]] == ["read_file"]

    def test_system_message(
        self, backend: RecordingTransport, workdir: Path, config_file: Path
    ) -> None:
        backend.responses.append({"message": {"content": "ok"}, "done": True})
        result = invoke(
            "chat", "hi", "--choice", "none", "--system", "Be terse.",
            "--workdir", str(workdir), "--config", str(config_file), "--json",
        )
        assert result.exit_code == 0
        messages = backend.last_payload["messages"]
        assert messages[0] == {"role": "system", "content": "Be terse."}

    def test_backend_error(
        self, backend: RecordingTransport, workdir: Path, config_file: Path
    ) -> None:
        backend.responses.append({"error": "out of memory"})
        result = invoke(
            "chat", "hi", "--workdir", str(workdir), "--config", str(config_file), "--json"
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] is True
        assert data["message"] == "ollama error: out of memory"


# =============================================================================
# doctor
# =============================================================================


class TestDoctorCommand:
    """Tests for 'agentwire doctor' on a hosted backend (no network needed)."""

    @pytest.fixture
    def openai_config(self, temp_dir: Path) -> Path:
        path = temp_dir / "agentwire.yaml"
        path.write_text("llm:\n  backend: openai\n  model: gpt-4o-mini\n")
        return path

    def test_all_checks_pass(
        self, openai_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        result = invoke("doctor", "--config", str(openai_config), "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["ok"] is True
        assert data["version"] == __version__
        names = [check["name"] for check in data["checks"]]
        assert names == ["Python version", "Settings", "Credentials"]

    def test_missing_credentials(
        self, openai_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        result = invoke("doctor", "--config", str(openai_config), "--json")
        assert result.exit_code == 1
        credentials = json.loads(result.stdout)["checks"][2]
        assert credentials["ok"] is False
        assert credentials["message"] == "export OPENAI_API_KEY=..."

    def test_invalid_settings(self, temp_dir: Path) -> None:
        bad = temp_dir / "bad.yaml"
        bad.write_text("llm:\n  stream: sometimes\n")
        result = invoke("doctor", "--config", str(bad), "--json")
        assert result.exit_code == 1
        settings_check = json.loads(result.stdout)["checks"][1]
        assert settings_check["ok"] is False
