"""Shared LLM response utilities for the analysis pipeline.

Every provider returns free text; this module turns it into the list of raw
finding dicts the scheduler merges. Models frequently wrap JSON in Markdown
code fences, and long answers get cut off at the output-token limit, so a
response is checked for structural completeness before parsing.
"""

import json
import re
from typing import Any

from app.services.errors import ResponseFormatError

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*(.*?)\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) wrapper."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def check_balanced(text: str) -> None:
    """Raise ``ResponseFormatError`` when braces or brackets do not balance.

    Characters inside JSON string literals are ignored. An unbalanced
    response is almost always one truncated at the output-token limit.
    """
    depth = {"{": 0, "[": 0}
    closing = {"}": "{", "]": "["}
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in depth:
            depth[ch] += 1
        elif ch in closing:
            depth[closing[ch]] -= 1

    if depth["{"] != 0 or depth["["] != 0:
        raise ResponseFormatError(
            f"Truncated AI response: unbalanced JSON "
            f"(braces {depth['{']:+d}, brackets {depth['[']:+d})"
        )


def parse_findings(text: Any) -> list[dict]:
    """Parse provider output into raw finding dicts.

    Accepts ``{"findings": [...]}`` or a bare ``[...]``.

    Raises:
        ResponseFormatError: empty content, unbalanced or invalid JSON, or
            JSON of the wrong shape.
    """
    if not isinstance(text, str) or not text.strip():
        raise ResponseFormatError("Empty AI response")

    content = strip_code_fences(text)
    if not content:
        raise ResponseFormatError("Empty AI response")

    check_balanced(content)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ResponseFormatError(f"Invalid JSON in AI response: {e}") from e

    if isinstance(data, dict):
        findings = data.get("findings", [])
    elif isinstance(data, list):
        findings = data
    else:
        raise ResponseFormatError(f"Unexpected AI response type: {type(data).__name__}")

    if not isinstance(findings, list):
        raise ResponseFormatError("AI response 'findings' is not a list")

    return [f for f in findings if isinstance(f, dict)]
