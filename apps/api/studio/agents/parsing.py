"""Helpers for turning loosely formatted backend text into JSON values."""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    if cleaned.startswith("```"):
        # Unterminated fence: drop the opening line
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
    return cleaned.strip()


def _extract_balanced(text: str, opener: str, closer: str) -> Optional[str]:
    """Return the first balanced opener...closer span, respecting JSON strings."""
    start = text.find(opener)
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_response(text: Optional[str], expect: type = dict) -> Optional[Any]:
    """
    Parse a backend response that should contain JSON.

    Tries the whole (fence-stripped) text first, then the first balanced
    object or array embedded in surrounding prose.

    Args:
        text: Raw backend text
        expect: ``dict`` or ``list``; values of another type count as unparsable

    Returns:
        The decoded value, or None when nothing usable could be decoded
    """
    if not text:
        return None

    cleaned = strip_code_fences(text)
    candidates = [cleaned]
    opener, closer = ("[", "]") if expect is list else ("{", "}")
    embedded = _extract_balanced(cleaned, opener, closer)
    if embedded and embedded != cleaned:
        candidates.append(embedded)

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expect):
            return value

    logger.debug(f"Could not decode {expect.__name__} from backend text: {cleaned[:200]!r}")
    return None
