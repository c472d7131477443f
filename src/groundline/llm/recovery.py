"""Recovery of JSON documents from free-form model completions.

Models wrap JSON in prose or markdown fences, use smart quotes and leave
trailing commas. ``recover`` layers cheap strategies before expensive ones and
returns the first candidate that parses.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any

from ..errors import MalformedResponse

logger = logging.getLogger(__name__)

_FENCE_WITH_TAG_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_LEADING_TICKS_TAG_RE = re.compile(r"^\s*`+json\b", re.IGNORECASE)
_BARE_FENCE_RE = re.compile(r"`{3,}")
_FENCED_JSON_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = {"}", "]"}


class _ScanState(Enum):
    NORMAL = "normal"
    IN_STRING = "in_string"
    IN_STRING_ESCAPED = "in_string_escaped"


def strip_fence_markers(text: str) -> str:
    """Remove markdown code-fence markers anywhere in the text."""
    text = _FENCE_WITH_TAG_RE.sub("", text)
    text = _LEADING_TICKS_TAG_RE.sub("", text)
    text = _BARE_FENCE_RE.sub("", text)
    return text.strip()


def extract_balanced_json(text: str) -> str | None:
    """Slice the first bracket-balanced JSON document out of ``text``.

    Scanning starts at the first ``{`` or ``[``. Brackets inside string
    literals do not count. Returns None if there is no opening bracket, a
    closing bracket does not match the innermost opener, or the text ends
    before the stack empties.
    """
    start = -1
    for i, ch in enumerate(text):
        if ch in _OPENERS:
            start = i
            break
    if start == -1:
        return None

    stack: list[str] = []
    state = _ScanState.NORMAL

    for i in range(start, len(text)):
        ch = text[i]

        if state is _ScanState.IN_STRING_ESCAPED:
            state = _ScanState.IN_STRING
            continue

        if state is _ScanState.IN_STRING:
            if ch == "\\":
                state = _ScanState.IN_STRING_ESCAPED
            elif ch == '"':
                state = _ScanState.NORMAL
            continue

        if ch == '"':
            state = _ScanState.IN_STRING
            continue

        if ch in _OPENERS:
            stack.append(_OPENERS[ch])
            continue

        if ch in _CLOSERS:
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return text[start : i + 1].strip()

    return None


def extract_json_block(text: str) -> str:
    """Best single JSON-looking block: a ```json fence body first, then balanced extraction."""
    fenced = _FENCED_JSON_BLOCK_RE.search(text)
    if fenced and fenced.group(1):
        body = fenced.group(1).strip()
        return extract_balanced_json(body) or body

    balanced = extract_balanced_json(text)
    if balanced:
        return balanced
    return text.strip()


def normalize_json_candidate(text: str) -> str:
    """Repair the common cosmetic damage: BOM, curly quotes, trailing commas."""
    normalized = text.lstrip("\ufeff")
    normalized = normalized.replace("\u201c", "\"").replace("\u201d", "\"")
    normalized = normalized.replace("\u2018", "'").replace("\u2019", "'")
    normalized = _TRAILING_COMMA_RE.sub(r"\1", normalized)
    return normalized.strip()


def recovery_candidates(raw: str) -> list[str]:
    """All candidate strings in the order they are tried (duplicates removed)."""
    stripped = strip_fence_markers(raw)
    extracted = extract_json_block(raw)
    stripped_extracted = strip_fence_markers(extracted)
    base = [raw, stripped, extracted, stripped_extracted]

    candidates: list[str] = []
    for candidate in base + [normalize_json_candidate(c) for c in base]:
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def recover(raw: str) -> Any:
    """Parse a model completion into a JSON value.

    Args:
        raw: Completion text exactly as returned by the model

    Returns:
        The first candidate that parses as JSON

    Raises:
        MalformedResponse: If no candidate parses; carries the last parser error
    """
    raw = raw or ""
    last_error: str | None = None

    for index, candidate in enumerate(recovery_candidates(raw)):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = str(exc)
            continue
        if index > 0:
            logger.debug(f"Recovered JSON with candidate #{index} ({len(candidate)} chars)")
        return value

    message = last_error or "Unknown JSON parse error."
    raise MalformedResponse(f"Failed to parse model JSON response: {message}", parse_error=message)
