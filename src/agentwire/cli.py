"""
CLI entry point for agentwire.

This module provides the Typer-based command-line interface. The commands
are thin: they load settings, build the file toolset and a backend
adapter, and delegate to the library.

Commands:
    tools       List the registered tools and their arguments
    call        Dispatch one tool call through the file toolset
    chat        Run one turn against the configured backend
    doctor      Check configuration, credentials and backend reachability

Settings are read from ``--config`` (default ``agentwire.yaml`` in the
current directory; a missing file means defaults). Credentials come from
the environment, see agentwire.clients.factory.
"""

import json
import os
import sys
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agentwire import __version__
from agentwire.clients import OllamaClient, build_parameters, create_client
from agentwire.clients.factory import API_KEY_VARS
from agentwire.errors import AgentwireError
from agentwire.observability import configure_logging
from agentwire.schema import (
    AssistantMessage,
    Message,
    Settings,
    SystemMessage,
    ToolCallMessage,
    ToolChoice,
    ToolChoiceMode,
    UserMessage,
    load_settings,
)
from agentwire.tools import FileSystemToolset, execute_tool_call

DEFAULT_CONFIG = Path("agentwire.yaml")

app = typer.Typer(
    name="agentwire",
    help="Tool-calling conversation layer for local and hosted LLM backends.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to the settings YAML file. Defaults to agentwire.yaml.",
        dir_okay=False,
        resolve_path=True,
    ),
]

WorkdirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--workdir",
        "-w",
        help="Working directory for the file tools. Defaults to the current directory.",
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]

DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug logging and full error tracebacks.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]agentwire[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    agentwire - Let a language model use tools, safely.

    Offer sandboxed file tools to Ollama, OpenAI, Anthropic or Gemini
    models and run single tool-calling turns from the command line.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _load(config: Path | None, debug: bool, json_output: bool) -> Settings:
    """Load settings and configure logging, exiting with code 1 on bad config."""
    path = config or DEFAULT_CONFIG
    try:
        settings = load_settings(path)
    except (ValidationError, ValueError, OSError) as e:
        if json_output:
            _output_json_error("config_load_error", str(e), debug)
        else:
            console.print(f"[red]Error loading config {path}: {e}[/red]")
        raise typer.Exit(code=1)

    level = "DEBUG" if debug else settings.logging.level
    configure_logging(level, json_output=settings.logging.json_output)
    return settings


def _toolset(settings: Settings, workdir: Path | None) -> FileSystemToolset:
    return FileSystemToolset(settings.filesystem, workdir or Path.cwd())


def _parse_choice(value: str) -> ToolChoice:
    lowered = value.lower()
    if lowered == "auto":
        return ToolChoice.auto()
    if lowered == "any":
        return ToolChoice.any()
    if lowered == "none":
        return ToolChoice.none()
    return ToolChoice.tool(value)


def _output_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def _output_json_error(error_type: str, message: str, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    _output_json(output)


def _fail(error: AgentwireError, json_output: bool, debug: bool) -> None:
    if json_output:
        _output_json({"error": True, **error.to_dict()})
    else:
        console.print(f"[red]{error}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def tools(
    config: ConfigOption = None,
    workdir: WorkdirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    List the registered tools.

    Example:
        $ agentwire tools --workdir ./project
    """
    settings = _load(config, debug, json_output)
    toolset = _toolset(settings, workdir)

    if json_output:
        _output_json({
            "working_dir": toolset.working_dir,
            "allowed_roots": list(toolset.allowed_roots),
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": build_parameters(tool.arguments),
                }
                for tool in sorted(toolset, key=lambda t: t.name)
            ],
        })
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Arguments")
    table.add_column("Description")

    for tool in sorted(toolset, key=lambda t: t.name):
        args = ", ".join(
            f"{arg.name}{'' if arg.required else '?'}: {arg.type.value}" for arg in tool.arguments
        )
        summary = tool.description.splitlines()[0] if tool.description else ""
        table.add_row(tool.name, args, summary)

    console.print(f"[dim]Working directory: {toolset.working_dir}[/dim]")
    console.print(table)


@app.command()
def call(
    tool: Annotated[str, typer.Argument(help="Name of the tool to run.")],
    args: Annotated[
        str,
        typer.Option(
            "--args",
            "-a",
            help='Tool arguments as a JSON object, e.g. \'{"path": "README.md"}\'.',
        ),
    ] = "{}",
    config: ConfigOption = None,
    workdir: WorkdirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Dispatch one tool call and print the result.

    Each invocation starts with an empty read history, so overwriting an
    existing file with write_file is refused.

    Example:
        $ agentwire call find_file --args '{"name_pattern": "*.py"}'
    """
    settings = _load(config, debug, json_output)

    try:
        parsed = json.loads(args)
    except json.JSONDecodeError as e:
        if json_output:
            _output_json_error("invalid_args", f"--args is not valid JSON: {e}")
        else:
            console.print(f"[red]--args is not valid JSON: {e}[/red]")
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        if json_output:
            _output_json_error("invalid_args", "--args must be a JSON object")
        else:
            console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(code=1)

    toolset = _toolset(settings, workdir)
    result = toolset.dispatch(tool, parsed)

    if json_output:
        _output_json({"tool": tool, "text": result.text, "error": result.error})
    elif result.is_error:
        console.print(f"[red]✗ {tool}:[/red] {result.error}")
    else:
        console.print(result.text, markup=False, highlight=False)

    raise typer.Exit(code=1 if result.is_error else 0)


@app.command()
def chat(
    prompt: Annotated[str, typer.Argument(help="The user message to send.")],
    choice: Annotated[
        str,
        typer.Option(
            "--choice",
            help="Tool choice: auto, any, none, or the name of a tool to force.",
        ),
    ] = "auto",
    system: Annotated[
        Optional[str],
        typer.Option(
            "--system",
            "-s",
            help="System message to prepend.",
        ),
    ] = None,
    thinking: Annotated[
        Optional[bool],
        typer.Option(
            "--thinking/--no-thinking",
            help="Ask the model to surface its reasoning. Defaults to llm.thinking.",
        ),
    ] = None,
    config: ConfigOption = None,
    workdir: WorkdirOption = None,
    json_output: JsonOption = False,
    debug: DebugOption = False,
) -> None:
    """
    Run one turn against the configured backend.

    If the model answers with a tool call, the call is dispatched once
    through the file toolset and its result printed. There is no loop.

    Example:
        $ agentwire chat "What does README.md say?" --choice read_file
    """
    settings = _load(config, debug, json_output)
    toolset = _toolset(settings, workdir)
    llm = settings.llm
    if thinking is not None:
        llm = llm.model_copy(update={"thinking": thinking})

    try:
        tool_choice = _parse_choice(choice)
    except ValidationError as e:
        console.print(f"[red]Invalid --choice: {e}[/red]")
        raise typer.Exit(code=1)

    history: list[Message] = []
    if system:
        history.append(SystemMessage(content=system))
    history.append(UserMessage(content=prompt))

    try:
        with create_client(llm, registry=toolset) as client:
            if tool_choice.mode == ToolChoiceMode.AUTO:
                reply = client.chat(history, enable_thinking=llm.thinking)
            else:
                reply = client.chat_with_tool_choice(history, tool_choice)
    except AgentwireError as e:
        _fail(e, json_output, debug)
        return

    result = execute_tool_call(toolset, reply) if isinstance(reply, ToolCallMessage) else None

    if json_output:
        output: dict[str, Any] = {"reply": reply.model_dump(mode="json")}
        if result is not None:
            output["tool_result"] = result.model_dump(mode="json")
        _output_json(output)
    else:
        _display_reply(reply, result)

    raise typer.Exit(code=1 if result is not None and result.is_error else 0)


def _display_reply(reply: AssistantMessage | ToolCallMessage, result: Any) -> None:
    """Display a reply and, for a tool call, its result."""
    if reply.thinking:
        console.print(Panel(reply.thinking, title="thinking", border_style="dim", style="dim"))

    if isinstance(reply, AssistantMessage):
        console.print(reply.content, markup=False, highlight=False)
    else:
        console.print(
            f"[cyan]→ {reply.tool_name}[/cyan] [dim]{json.dumps(reply.arguments)}[/dim]"
        )
        if result.is_error:
            console.print(f"[red]✗ {result.error}[/red]")
        else:
            console.print(result.content, markup=False, highlight=False)

    if reply.usage:
        console.print(
            f"[dim]tokens: {reply.usage.input_tokens} in / "
            f"{reply.usage.output_tokens} out[/dim]"
        )


@app.command()
def doctor(
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Check system environment and backend configuration.

    Verifies:
    - Python version (3.11+)
    - Settings file validity
    - Credentials for the configured backend
    - Ollama connectivity and model availability (ollama backend only)

    Example:
        $ agentwire doctor
    """
    checks: list[dict[str, Any]] = []

    py_version = sys.version_info
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": f"{py_version.major}.{py_version.minor}.{py_version.micro}",
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })

    path = config or DEFAULT_CONFIG
    settings: Settings | None = None
    try:
        settings = load_settings(path)
        checks.append({
            "name": "Settings",
            "ok": True,
            "value": str(path),
            "message": "Loaded" if path.exists() else "Not found, using defaults",
        })
    except (ValidationError, ValueError, OSError) as e:
        checks.append({"name": "Settings", "ok": False, "value": str(path), "message": str(e)})

    if settings is not None:
        llm = settings.llm
        key_var = API_KEY_VARS.get(llm.backend)
        if key_var is not None:
            has_key = bool(os.environ.get(key_var))
            checks.append({
                "name": "Credentials",
                "ok": has_key,
                "value": key_var,
                "message": "Set" if has_key else f"export {key_var}=...",
            })
        if llm.backend == "ollama":
            with create_client(llm) as client:
                if isinstance(client, OllamaClient):
                    ok, message = client.check_connection()
                    checks.append({
                        "name": "Ollama",
                        "ok": ok,
                        "value": client.base_url,
                        "message": message,
                    })

    all_ok = all(check["ok"] for check in checks)

    if json_output:
        _output_json({"ok": all_ok, "version": __version__, "checks": checks})
    else:
        console.print(f"[bold]agentwire doctor[/bold] v{__version__}")
        console.print()
        for check in checks:
            icon = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            if check["ok"]:
                console.print(
                    f"{icon} {check['name']}: [dim]{check['value']}[/dim] - {check['message']}"
                )
            else:
                console.print(f"{icon} {check['name']}: [dim]{check['value']}[/dim]")
                console.print(f"    [red]{check['message']}[/red]")
        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


if __name__ == "__main__":
    app()
