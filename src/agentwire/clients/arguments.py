"""
Decoding of tool-call arguments sent by backends.

Backends deliver tool arguments either as an object (Ollama, Gemini,
Anthropic single-shot) or as a JSON string assembled from fragments
(OpenAI, Anthropic streaming). Small local models also produce slightly
broken JSON:
- Trailing commas
- Single quotes instead of double quotes
- Unquoted keys
- Python literals (True/False/None)
- A missing closing brace when generation stopped early
- The object wrapped in a markdown code fence

Repair is best effort and bounded. When the text still does not decode to
a JSON object the caller gets an error description and raises
ToolCallParseError; arguments are never guessed.
"""

import json
import re
from collections.abc import Mapping
from typing import Any

MAX_REPAIR_ATTEMPTS = 3

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json_object(text: str) -> str | None:
    """
    Pull the first JSON object out of mixed text.

    Looks inside a code fence first, then scans for the first balanced
    ``{...}`` outside of string literals.

    Returns:
        The object text, or None if there is no opening brace
    """
    if not text or not text.strip():
        return None

    match = _CODE_FENCE.search(text)
    if match and match.group(1).lstrip().startswith("{"):
        text = match.group(1)

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    # Unbalanced: hand back the tail so repair can close it
    return text[start:]


def _close_brackets(text: str) -> str:
    stack: list[str] = []
    in_string = False
    escape_next = False
    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    if in_string:
        text += '"'
    return text + "".join(reversed(stack))


def _apply_repairs(text: str) -> str:
    """Apply a single round of repairs."""
    # Whole-line // comments only; URLs inside strings must survive
    text = re.sub(r"^\s*//.*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)

    if '"' not in text and "'" in text:
        text = text.replace("'", '"')

    text = re.sub(r"([{,])\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:", r'\1"\2":', text)

    text = re.sub(r"\bTrue\b", "true", text)
    text = re.sub(r"\bFalse\b", "false", text)
    text = re.sub(r"\bNone\b", "null", text)

    text = _close_brackets(text)
    text = re.sub(r",\s*([}\]])", r"\1", text)
    return text


def repair_json(text: str) -> str | None:
    """
    Attempt to repair malformed JSON.

    Returns:
        Text that json.loads accepts, or None if repair failed
    """
    if not text:
        return None

    for _ in range(MAX_REPAIR_ATTEMPTS):
        try:
            json.loads(text)
            return text
        except json.JSONDecodeError:
            pass

        repaired = _apply_repairs(text)
        if repaired == text:
            break
        text = repaired

    try:
        json.loads(text)
        return text
    except json.JSONDecodeError:
        return None


def decode_arguments(
    raw: str | Mapping[str, Any] | None,
) -> tuple[dict[str, Any] | None, str | None]:
    """
    Turn backend tool arguments into a dict.

    Args:
        raw: Object as sent by the backend, or its JSON text

    Returns:
        Tuple of (arguments, error_message)
        If successful: (dict, None)
        If failed: (None, error_description)

    Example:
        args, error = decode_arguments('{"path": "a.txt",}')
        # ({"path": "a.txt"}, None)
    """
    if raw is None:
        return {}, None
    if isinstance(raw, Mapping):
        return dict(raw), None
    if not isinstance(raw, str):
        return None, f"Unsupported arguments payload: {type(raw).__name__}"
    if not raw.strip():
        return {}, None

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        extracted = extract_json_object(raw)
        if extracted is None:
            return None, "No JSON object found in tool arguments"
        repaired = repair_json(extracted)
        if repaired is None:
            return None, "Tool arguments are not valid JSON and could not be repaired"
        parsed = json.loads(repaired)

    if parsed is None:
        return {}, None
    if not isinstance(parsed, dict):
        return None, f"Tool arguments must be a JSON object, got {type(parsed).__name__}"
    return parsed, None
