"""Decode model output as JSON, repairing truncated responses.

Token-limited responses are usually cut mid-structure. Repair only closes
what is structurally open (an unterminated string, then the stack of
``{``/``[``); it never invents keys or values. A prefix containing a
mismatched closer is not repairable.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")
_OBJECT = re.compile(r"\{[\s\S]*\}")

MAX_TRIM_CHARS = 120
MAX_TRIM_RATIO = 0.2


class DecodeError(ValueError):
    """Model output could not be parsed as JSON, even after repair."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


def extract_json_candidate(text: str) -> str:
    """Pick the JSON payload out of a fenced block or surrounding prose."""
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1).strip()
    obj = _OBJECT.search(text)
    if obj:
        return obj.group(0).strip()
    return text.strip()


def _close_open_structures(text: str) -> str | None:
    closers: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            closers.append("}")
        elif char == "[":
            closers.append("]")
        elif char in "}]":
            if not closers or closers.pop() != char:
                return None

    if in_string:
        if escaped:
            # a dangling backslash would escape the closing quote
            text = text[:-1]
        text += '"'
    return text + "".join(reversed(closers))


def _strip_trailing_separators(text: str) -> str:
    text = text.rstrip()
    while text and text[-1] in ",:":
        text = text[:-1].rstrip()
    return text


def repair_truncated_json(text: str) -> Any | None:
    """Try progressively shorter prefixes of *text* until one closes into valid JSON."""
    normalized = text.strip()
    if not normalized:
        return None

    max_trim = max(0, min(MAX_TRIM_CHARS, int(len(normalized) * MAX_TRIM_RATIO)))
    for trim in range(max_trim + 1):
        candidate = _strip_trailing_separators(normalized[: len(normalized) - trim])
        if not candidate:
            continue
        repaired = _close_open_structures(candidate)
        if repaired is None:
            continue
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            continue
    return None


def decode_json(raw: str) -> Any:
    """Parse *raw* model output as JSON, repairing truncation when needed.

    Raises ``DecodeError`` when the output is empty or nothing parses.
    """
    candidate = extract_json_candidate(raw or "")
    if not candidate:
        raise DecodeError("Failed to parse JSON: empty LLM response", raw or "")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        first_error = exc

    recovered = repair_truncated_json(candidate)
    if recovered is not None:
        logger.debug("Recovered truncated JSON (len=%d)", len(candidate))
        return recovered

    raise DecodeError(f"Failed to parse JSON: {first_error.msg}", raw)
