"""Robust extraction of structured answers from model output.

Model output is never assumed to be well formed: the JSON object may be
wrapped in prose or code fences and may contain raw control characters
inside string values. Parsing never raises; anything that cannot be
decoded comes back as ``Unparsed`` carrying the raw text.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

from ragsupport.common.errors import ParseError


_CODE_FENCE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?([\s\S]*?)```")

_VALID_ESCAPES = frozenset('"\\/bfnrtu')
_CONTROL_ESCAPES = {"\n": "n", "\t": "t", "\r": "r"}


@dataclass(frozen=True)
class Parsed:
    """Structured value decoded from model output."""

    value: dict[str, Any]
    raw: str


@dataclass(frozen=True)
class Unparsed:
    """Model output that could not be decoded."""

    raw: str
    reason: str = ""


ParseOutcome = Union[Parsed, Unparsed]


def strip_code_fences(text: str) -> str:
    """Return the first fenced block holding an object, or the text itself."""
    for match in _CODE_FENCE.finditer(text):
        body = match.group(1)
        if "{" in body:
            return body.strip()
    return text.strip()


def extract_json_object(text: str) -> str | None:
    """Locate the outermost balanced ``{...}`` object.

    Braces inside string literals are ignored. When the object starting at
    the first brace never closes, later braces are tried.

    Args:
        text: Text possibly containing a JSON object

    Returns:
        Object text, or None if no balanced object exists
    """
    start = text.find("{")
    while start != -1:
        end = _match_brace(text, start)
        if end is not None:
            return text[start:end + 1]
        start = text.find("{", start + 1)
    return None


def _match_brace(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def sanitize_control_characters(text: str) -> str:
    """Remove raw control characters while keeping valid escapes.

    Inside string literals, raw newlines, tabs and carriage returns become
    their escape sequences, other control characters are dropped, and a
    backslash starting an invalid escape is itself escaped. Outside strings
    only JSON whitespace is kept.
    """
    out: list[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if not in_string:
            if ch == '"':
                in_string = True
                out.append(ch)
            elif ord(ch) >= 0x20 or ch in _CONTROL_ESCAPES:
                out.append(ch)
            continue

        if escaped:
            escaped = False
            if ch in _VALID_ESCAPES:
                out.append(ch)
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
            elif ord(ch) < 0x20:
                out.append("\\")
            else:
                out.append("\\" + ch)
        elif ch == "\\":
            escaped = True
            out.append(ch)
        elif ch == '"':
            in_string = False
            out.append(ch)
        elif ch in _CONTROL_ESCAPES:
            out.append("\\" + _CONTROL_ESCAPES[ch])
        elif ord(ch) >= 0x20:
            out.append(ch)

    return "".join(out)


def decode_model_json(text: str) -> dict[str, Any]:
    """Decode the JSON object embedded in model output.

    Raises:
        ParseError: If no object can be decoded
    """
    if not text or not text.strip():
        raise ParseError("empty model output")

    candidate = extract_json_object(strip_code_fences(text))
    if candidate is None:
        raise ParseError("no JSON object found")

    try:
        value = json.loads(sanitize_control_characters(candidate))
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e

    if not isinstance(value, dict):
        raise ParseError("decoded value is not an object")
    return value


def parse_model_output(text: str | None) -> ParseOutcome:
    """Parse model output into a structured value.

    Args:
        text: Raw model output

    Returns:
        ``Parsed`` with the decoded object, or ``Unparsed`` with the raw text
    """
    raw = text or ""
    try:
        return Parsed(value=decode_model_json(raw), raw=raw)
    except ParseError as e:
        return Unparsed(raw=raw, reason=str(e))
