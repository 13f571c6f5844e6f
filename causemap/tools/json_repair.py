"""
JSON extraction for language-model output.

Handles the usual ways a model wraps or damages a JSON answer:
- Markdown code fences (```json ... ```)
- Prose before/after the object
- Truncation (unclosed strings or braces when max_tokens is hit)
- Raw control characters inside string values

Anything that still cannot be parsed into an object raises
MalformedResponseError so the caller can fall back.
"""

import json
import logging
import re
from typing import Any, Dict, List

from ..errors import MalformedResponseError

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _scan(text: str, start: int):
    """Yield (index, char) for characters outside JSON string literals."""
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if in_string:
            if ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            continue
        yield i, ch


def extract_object(text: str) -> str:
    """Return the outermost {...} in text, closing it if the text was truncated."""
    start = text.find("{")
    if start == -1:
        raise MalformedResponseError("no JSON object in response")

    stack: List[str] = []
    for i, ch in _scan(text, start):
        if ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            if not stack:
                return text[start:i + 1]
    return close_truncated(text[start:])


def close_truncated(fragment: str) -> str:
    """Close an unterminated string, drop a dangling comma, and close open brackets."""
    quotes = 0
    escaped = False
    for ch in fragment:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            quotes += 1
    if quotes % 2 == 1:
        fragment += '"'

    stack: List[str] = []
    for _, ch in _scan(fragment, 0):
        if ch in "{[":
            stack.append(ch)
        elif ch == "}" and stack and stack[-1] == "{":
            stack.pop()
        elif ch == "]" and stack and stack[-1] == "[":
            stack.pop()

    fragment = fragment.rstrip().rstrip(",")
    closers = {"{": "}", "[": "]"}
    return fragment + "".join(closers[b] for b in reversed(stack))


def parse_json_object(response: str) -> Dict[str, Any]:
    """Parse the JSON object embedded in a model response.

    Raises MalformedResponseError when no object can be recovered.
    """
    if not response or not response.strip():
        raise MalformedResponseError("empty response")

    candidate = extract_object(strip_code_fences(response))
    for attempt in (
        lambda s: json.loads(s),
        lambda s: json.loads(s, strict=False),
        lambda s: json.loads(re.sub(r"[\x00-\x1f\x7f]", " ", s)),
    ):
        try:
            parsed = attempt(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            raise MalformedResponseError(f"expected a JSON object, got {type(parsed).__name__}")
        return parsed

    logger.debug(f"Unparseable model output: {candidate[:300]}")
    raise MalformedResponseError("response is not valid JSON")
