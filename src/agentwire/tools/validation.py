"""
Post-write source checks for the file toolset.

After a successful write or edit, the toolset asks the AutoValidator for a
summary to append to its success text. A validator applies when the file
extension belongs to its language and the file's directory holds files of
that language (the written file counts). Checks are read-only and scoped
to the single file:

    - Python: in-process compile() dry run, then ``ruff check``
    - Go: ``go vet <file>``, then ``go build -n <file>``

A check that cannot run (tool not installed, timeout) reports status
"error". Results are informational: nothing here ever undoes a write.

Commands run with shell=False and a timeout, same as any other
subprocess agentwire starts.
"""

import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_ERROR = "error"

MAX_OUTPUT_LINES = 5


@dataclass(frozen=True)
class CheckResult:
    """
    Outcome of one check.

    Attributes:
        check: Human-readable check name
        status: "pass", "fail" or "error"
        summary: One-line description of the outcome
        output: Tool output for failures
    """

    check: str
    status: str
    summary: str
    output: str = ""


@dataclass(frozen=True)
class CommandOutcome:
    return_code: int | None
    output: str
    error: str | None = None


def run_command(cmd: Sequence[str], cwd: str, timeout_seconds: int) -> CommandOutcome:
    """
    Run a checker command and capture combined output.

    Never raises for a missing executable or timeout; the outcome carries
    the error text instead.
    """
    try:
        result = subprocess.run(
            list(cmd),
            cwd=cwd,
            capture_output=True,
            timeout=timeout_seconds,
            shell=False,
        )
    except subprocess.TimeoutExpired:
        return CommandOutcome(None, "", f"timed out after {timeout_seconds}s")
    except FileNotFoundError:
        return CommandOutcome(None, "", f"executable not found: {cmd[0]}")
    except OSError as e:
        return CommandOutcome(None, "", f"OS error: {e}")

    output = (result.stdout + result.stderr).decode("utf-8", errors="replace").strip()
    return CommandOutcome(result.returncode, output)


class Validator(ABC):
    """Checks for one source language."""

    language: str = ""
    extensions: tuple[str, ...] = ()

    def applies_to(self, path: str) -> bool:
        """True if ``path`` has a known extension and sits among sibling sources."""
        if Path(path).suffix.lower() not in self.extensions:
            return False
        directory = os.path.dirname(path)
        try:
            with os.scandir(directory) as entries:
                return any(
                    entry.is_file() and Path(entry.name).suffix.lower() in self.extensions
                    for entry in entries
                )
        except OSError:
            return False

    @abstractmethod
    def run(self, path: str, timeout_seconds: int) -> list[CheckResult]:
        """Run every check against ``path``."""
        ...


class PythonValidator(Validator):
    """Syntax check with compile() plus a ruff lint."""

    language = "Python"
    extensions = (".py",)

    def run(self, path: str, timeout_seconds: int) -> list[CheckResult]:
        return [self._compile(path), self._ruff(path, timeout_seconds)]

    def _compile(self, path: str) -> CheckResult:
        check = "compile - Check that the module parses"
        try:
            source = Path(path).read_bytes()
            compile(source, path, "exec", dont_inherit=True)
        except SyntaxError as e:
            detail = f"line {e.lineno}: {e.msg}" if e.lineno else str(e.msg)
            return CheckResult(check, STATUS_FAIL, "Syntax error found", detail)
        except (ValueError, OSError) as e:
            return CheckResult(check, STATUS_ERROR, f"Could not compile: {e}")
        return CheckResult(check, STATUS_PASS, "Module compiles")

    def _ruff(self, path: str, timeout_seconds: int) -> CheckResult:
        check = "ruff check - Static analysis for common mistakes"
        outcome = run_command(
            ["ruff", "check", "--quiet", "--no-cache", os.path.basename(path)],
            cwd=os.path.dirname(path),
            timeout_seconds=timeout_seconds,
        )
        if outcome.error is not None:
            return CheckResult(check, STATUS_ERROR, f"Could not run ruff: {outcome.error}")
        if outcome.return_code == 0:
            return CheckResult(check, STATUS_PASS, "No lint issues found")
        if not outcome.output:
            return CheckResult(check, STATUS_ERROR, f"ruff exited with {outcome.return_code}")
        issues = [line for line in outcome.output.splitlines() if line.strip()]
        return CheckResult(check, STATUS_FAIL, f"Found {len(issues)} lint issues", outcome.output)


class GoValidator(Validator):
    """go vet and a go build dry run."""

    language = "Go"
    extensions = (".go",)

    def run(self, path: str, timeout_seconds: int) -> list[CheckResult]:
        directory, name = os.path.split(path)
        return [
            self._vet(directory, name, timeout_seconds),
            self._build(directory, name, timeout_seconds),
        ]

    def _vet(self, directory: str, name: str, timeout_seconds: int) -> CheckResult:
        check = "go vet - Static analysis to find suspicious constructs"
        outcome = run_command(["go", "vet", name], cwd=directory, timeout_seconds=timeout_seconds)
        if outcome.error is not None:
            return CheckResult(check, STATUS_ERROR, f"Could not run go vet: {outcome.error}")
        if outcome.return_code == 0:
            return CheckResult(check, STATUS_PASS, "No vet issues found")
        if not outcome.output:
            return CheckResult(check, STATUS_ERROR, f"go vet exited with {outcome.return_code}")
        lines = outcome.output.splitlines()
        return CheckResult(check, STATUS_FAIL, f"Found {len(lines)} vet issues", outcome.output)

    def _build(self, directory: str, name: str, timeout_seconds: int) -> CheckResult:
        check = "go build -n - Check if code compiles without building"
        outcome = run_command(
            ["go", "build", "-n", name],
            cwd=directory,
            timeout_seconds=timeout_seconds,
        )
        if outcome.error is not None:
            return CheckResult(check, STATUS_ERROR, f"Could not run go build: {outcome.error}")
        if outcome.return_code == 0:
            return CheckResult(check, STATUS_PASS, "Code compiles successfully")
        return CheckResult(
            check, STATUS_FAIL, "Build would fail - compilation errors found", outcome.output
        )


def format_results(language: str, results: Sequence[CheckResult]) -> str:
    """Render results as the block appended to a write/edit success message."""
    if not results:
        return ""

    lines = ["", "", f"{language} validation results:"]
    passed = failed = 0
    for result in results:
        if result.status == STATUS_PASS:
            lines.append(f"[PASS] {result.check}: {result.summary}")
            passed += 1
        elif result.status == STATUS_FAIL:
            lines.append(f"[FAIL] {result.check}: {result.summary}")
            if result.output:
                output_lines = result.output.splitlines()
                shown = output_lines[:MAX_OUTPUT_LINES]
                lines.append("```")
                lines.extend(shown)
                if len(output_lines) > MAX_OUTPUT_LINES:
                    lines.append(f"... ({len(output_lines) - MAX_OUTPUT_LINES} more lines)")
                lines.append("```")
            failed += 1
        else:
            lines.append(f"[ERROR] {result.check}: {result.summary}")

    lines.append("")
    if failed == 0:
        lines.append(f"All {passed} validation checks passed.")
    else:
        lines.append(f"Validation summary: {passed} passed, {failed} failed")
    return "\n".join(lines) + "\n"


class AutoValidator:
    """
    Picks the validator for a written file and formats its results.

    Args:
        validators: Validators to consult, first match wins
        timeout_seconds: Per-command timeout
        logger: structlog logger
    """

    def __init__(
        self,
        validators: Sequence[Validator] | None = None,
        timeout_seconds: int = 30,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.validators = (
            list(validators) if validators is not None else [PythonValidator(), GoValidator()]
        )
        self.timeout_seconds = timeout_seconds
        self._logger = logger or structlog.get_logger(__name__)

    def validate(self, path: str) -> str:
        """Return the formatted summary for ``path``, or "" when nothing applies."""
        for validator in self.validators:
            if not validator.applies_to(path):
                continue
            results = validator.run(path, self.timeout_seconds)
            self._logger.debug(
                "file_validated",
                path=path,
                language=validator.language,
                statuses=[r.status for r in results],
            )
            return format_results(validator.language, results)
        return ""
