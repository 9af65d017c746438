"""Helpers shared by the backend adapters and the generation services."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCED_BLOCK = re.compile(r"```[a-zA-Z]*\n([\s\S]*?)```")
_LOOSE_FENCED_BLOCK = re.compile(r"```[a-zA-Z0-9_-]*\r?\n([\s\S]*?)```")
_TEST_SHAPED = re.compile(r"describe\(|it\(|test\(")


def cut_at_stop(text: str, stop: list[str] | None) -> str:
    """Truncate ``text`` after the earliest stop sequence, keeping the sequence.

    Keeping it lets callers tell a stop on the sentinel from an ordinary end
    of output.
    """
    if not stop:
        return text
    hits = [(text.find(s), s) for s in stop if s and s in text]
    if not hits:
        return text
    index, sequence = min(hits)
    return text[: index + len(sequence)]


def extract_code_block(text: str, sentinel: str | None = None, loose: bool = False) -> str | None:
    """Pull the test source out of a backend response.

    The first fenced block wins. Without one, the raw text is accepted only
    if it looks like tests and does not carry the skip sentinel.

    Args:
        text: Raw completion.
        sentinel: Marker meaning "nothing to test".
        loose: Also accept language tags with digits, ``_`` or ``-`` and CRLF
            line endings after the opening fence.
    """
    pattern = _LOOSE_FENCED_BLOCK if loose else _FENCED_BLOCK
    match = pattern.search(text)
    if match:
        return match.group(1).strip()
    if sentinel and sentinel in text:
        return None
    if _TEST_SHAPED.search(text):
        return text.strip()
    return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse the first JSON object in ``text``.

    Accepts bare JSON, JSON inside a fenced block, or JSON surrounded by
    prose. Returns ``None`` when nothing parses to an object.
    """
    stripped = text.strip()
    fenced = re.search(r"```(?:json)?\s*\n?([\s\S]*?)```", stripped)
    candidates = [fenced.group(1).strip()] if fenced else []
    candidates.append(stripped)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        for start in (i for i, ch in enumerate(candidate) if ch == "{"):
            try:
                value, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                return value
    return None


def parse_tool_arguments(arguments: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode tool-call arguments; malformed or non-object input becomes ``{}``."""
    if arguments is None:
        return {}
    if isinstance(arguments, dict):
        return arguments
    try:
        value = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}
