from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from groundline.models import NotFound, TextAnchor, TextSegment

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")
_EDGE_ELLIPSIS_RE = re.compile(r"^(?:\u2026|\.{3})+|(?:\u2026|\.{3})+$")


@dataclass(frozen=True)
class TextMatchConfig:
    overlap_threshold: float = 0.6
    min_word_chars: int = 3
    min_quote_chars: int = 1


def normalize_with_map(text: str) -> tuple[str, list[int]]:
    """Lowercase and collapse whitespace, remembering where each char came from.

    ``map[i]`` is the index in ``text`` of normalized character ``i``.
    """
    out: list[str] = []
    index_map: list[int] = []
    previous_was_space = True

    for i, ch in enumerate(text):
        if ch.isspace():
            if not previous_was_space:
                out.append(" ")
                index_map.append(i)
                previous_was_space = True
            continue
        for lowered in ch.lower():
            out.append(lowered)
            index_map.append(i)
        previous_was_space = False

    if out and out[-1] == " ":
        out.pop()
        index_map.pop()

    return "".join(out), index_map


def normalize_text(text: str) -> str:
    return normalize_with_map(text)[0]


def clean_quote(quote: str) -> str:
    """Normalize a model quote, dropping ellipses the model used to mark truncation."""
    normalized = normalize_text(quote or "")
    return normalize_text(_EDGE_ELLIPSIS_RE.sub("", normalized))


def word_set(text: str, min_chars: int) -> set[str]:
    return {w for w in _WORD_RE.findall(text) if len(w) >= min_chars}


def find_exact(wanted: str, segments: Sequence[TextSegment]) -> TextAnchor | None:
    """First segment whose normalized text contains ``wanted``.

    ``wanted`` is a quote already passed through ``clean_quote``.
    """
    if not wanted:
        return None

    for segment in segments:
        haystack, index_map = normalize_with_map(segment.text)
        pos = haystack.find(wanted)
        if pos == -1:
            continue
        start = index_map[pos]
        end = index_map[pos + len(wanted) - 1] + 1
        return TextAnchor(segment_id=segment.id, char_offset=start, char_end=end, method="exact", score=1.0)

    return None


def best_overlap(
    cleaned: str,
    segments: Sequence[TextSegment],
    cfg: TextMatchConfig,
) -> tuple[int, float] | None:
    """Index and score of the segment sharing the most quote words.

    ``cleaned`` is a quote already passed through ``clean_quote``. Ties keep
    the earliest segment. Returns None when the quote has no words long
    enough to score.
    """
    wanted = word_set(cleaned, cfg.min_word_chars)
    if not wanted:
        return None

    best_index = -1
    best_score = -1.0
    for i, segment in enumerate(segments):
        present = wanted & word_set(normalize_text(segment.text), cfg.min_word_chars)
        score = len(present) / len(wanted)
        if score > best_score:
            best_index = i
            best_score = score

    if best_index == -1:
        return None
    return best_index, best_score


def resolve_text(
    quote: str,
    segments: Sequence[TextSegment],
    cfg: TextMatchConfig | None = None,
) -> TextAnchor | NotFound:
    """Locate a quoted fragment in page segments.

    Exact (whitespace- and case-insensitive) containment wins; otherwise the
    best token-overlap segment is accepted if its score exceeds the threshold.
    """
    cfg = cfg or TextMatchConfig()
    cleaned = clean_quote(quote)
    if len(cleaned) < max(1, cfg.min_quote_chars):
        return NotFound(reason="quote_too_short")
    if not segments:
        return NotFound(reason="no_segments")

    exact = find_exact(cleaned, segments)
    if exact is not None:
        return exact

    overlap = best_overlap(cleaned, segments, cfg)
    if overlap is None:
        logger.debug(f"No scorable words in quote {cleaned[:40]!r}")
        return NotFound(reason="no_match")

    index, score = overlap
    if score > cfg.overlap_threshold:
        return TextAnchor(
            segment_id=segments[index].id,
            char_offset=None,
            char_end=None,
            method="overlap",
            score=round(score, 4),
        )

    logger.debug(f"Best overlap {score:.2f} for {cleaned[:40]!r} is below {cfg.overlap_threshold}")
    return NotFound(reason="below_threshold")
