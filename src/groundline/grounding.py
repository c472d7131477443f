"""Grounded question answering over a captured page or video transcript.

The captured content is cut into short snippets, the snippets most relevant to
the question are sent to the model, and the model's citations are filtered
back down to snippets that actually exist.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from .llm.client import DEFAULT_TIMEOUT_MS, CompletionOrchestrator
from .models import TranscriptSegment, clamp_score
from .resolve.markers import CitationLookup
from .resolve.transcript import format_time_label, normalize_caption_rows

logger = logging.getLogger(__name__)

MAX_WEB_SNIPPETS = 240
MAX_SNIPPET_LENGTH = 280
MAX_CONTEXT_CHARS = 90_000
MIN_WEB_LINE_CHARS = 30
MIN_TRANSCRIPT_SNIPPET_CHARS = 8
TIMESTAMP_GROUP_GAP_SEC = 5.0
MAX_SOURCES = 5

NO_CONTEXT_ANSWER = "I could not find enough readable text on this page/video to answer that question."
NO_ANSWER_FALLBACK = "I could not produce a reliable grounded answer from the current page/video context."

STOP_WORDS = frozenset(
    """
    a an the and or but if then than that this these those to of in on at for
    from by with without about is are was were be been being as it its they
    them their he she his her you your we our i me my do does did can could
    should would will just not no yes into out over under up down what which
    who whom when where why how also there here
    """.split()
)

_WHITESPACE_RE = re.compile(r"\s+")
_NON_TOKEN_RE = re.compile(r"[^a-z0-9\s]")
_LINE_SPLIT_RE = re.compile(r"\n+")


class ContextSnippet(BaseModel):
    """A short piece of captured content the model may cite by id."""

    id: str = Field(description="Snippet id, w-N for page text and t-N for transcript lines")
    text: str = Field(description="Snippet text, at most 280 characters")
    timestamp_sec: Optional[float] = Field(default=None, description="Start time for transcript snippets")
    timestamp_label: Optional[str] = Field(default=None, description="Display label for transcript snippets")


class SourceSnippet(ContextSnippet):
    """A ranked or cited snippet."""

    score: float = Field(default=0.0, ge=0.0, le=1.0, description="Relevance (0.0-1.0)")


class PageContext(BaseModel):
    """Content captured from the active page or video."""

    url: str = Field(default="")
    title: str = Field(default="")
    text: str = Field(default="", description="Visible page text")
    transcript: list[TranscriptSegment] = Field(default_factory=list)
    snippets: list[ContextSnippet] = Field(
        default_factory=list,
        description="Pre-built snippets; built from text/transcript when empty",
    )

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "PageContext":
        """Build a context from a captured JSON document.

        Transcript entries are raw caption rows (``start_sec``, ``text``,
        optional ``start_label``) and go through caption normalization.
        """
        rows = data.get("transcript") or []
        if not isinstance(rows, list):
            raise ValueError("Context 'transcript' must be a list of caption rows")
        return cls(
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            text=str(data.get("text") or ""),
            transcript=normalize_caption_rows(row for row in rows if isinstance(row, dict)),
            snippets=[ContextSnippet(**s) for s in data.get("snippets") or [] if isinstance(s, dict)],
        )


class GroundedAnswer(BaseModel):
    """Answer text plus the snippets that support it."""

    answer: str
    sources: list[SourceSnippet] = Field(default_factory=list)

    def citation_lookups(self) -> list[CitationLookup]:
        return [
            CitationLookup(citation_id=s.id, quote=s.text, label=s.timestamp_label)
            for s in self.sources
        ]


def normalize_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def truncate_for_snippet(value: str) -> str:
    if len(value) <= MAX_SNIPPET_LENGTH:
        return value
    return value[: MAX_SNIPPET_LENGTH - 1].rstrip() + "\u2026"


def tokenize(value: str) -> list[str]:
    cleaned = _NON_TOKEN_RE.sub(" ", value.lower())
    return [t for t in cleaned.split() if len(t) >= 3 and t not in STOP_WORDS]


def _build_web_snippets(text: str) -> list[ContextSnippet]:
    lines = [normalize_whitespace(line) for line in _LINE_SPLIT_RE.split(text)]
    lines = [line for line in lines if len(line) >= MIN_WEB_LINE_CHARS]

    snippets: list[ContextSnippet] = []
    pending = ""

    def flush() -> None:
        cleaned = normalize_whitespace(pending)
        if cleaned:
            snippets.append(ContextSnippet(id=f"w-{len(snippets) + 1}", text=truncate_for_snippet(cleaned)))

    for line in lines:
        if not pending:
            pending = line
            continue
        candidate = f"{pending} {line}"
        # Short lines are merged, with some slack over the snippet length
        if len(candidate) > MAX_SNIPPET_LENGTH + 50:
            flush()
            pending = line
            continue
        pending = candidate

    flush()

    if not snippets:
        fallback = normalize_whitespace(text)[:1400]
        if fallback:
            snippets.append(ContextSnippet(id="w-1", text=truncate_for_snippet(fallback)))

    return snippets[:MAX_WEB_SNIPPETS]


def _build_transcript_snippets(segments: Sequence[TranscriptSegment]) -> list[ContextSnippet]:
    snippets = []
    usable = [s for s in segments if s.text.strip()]
    for i, segment in enumerate(usable):
        text = truncate_for_snippet(normalize_whitespace(segment.text))
        if len(text) < MIN_TRANSCRIPT_SNIPPET_CHARS:
            continue
        snippets.append(
            ContextSnippet(
                id=f"t-{i + 1}",
                text=text,
                timestamp_sec=segment.start_sec,
                timestamp_label=segment.start_label,
            )
        )
    return snippets


def build_context_snippets(
    text: str,
    transcript_segments: Sequence[TranscriptSegment] | None = None,
) -> list[ContextSnippet]:
    """Snippets for the model: transcript lines when there are any, else page text."""
    if transcript_segments:
        return _build_transcript_snippets(transcript_segments)
    return _build_web_snippets(text)


def score_snippet(question_tokens: Sequence[str], snippet: ContextSnippet) -> float:
    if not question_tokens:
        return 0.0

    snippet_tokens = set(tokenize(snippet.text))
    if not snippet_tokens:
        return 0.0

    overlap = sum(1 for token in question_tokens if token in snippet_tokens)
    overlap_score = overlap / len(question_tokens)

    phrase = " ".join(question_tokens[:4])
    phrase_bonus = 0.1 if phrase in normalize_whitespace(snippet.text).lower() else 0.0

    return min(1.0, overlap_score + phrase_bonus)


def rank_snippets(question: str, snippets: Sequence[ContextSnippet]) -> list[SourceSnippet]:
    """Rank snippets by question relevance.

    Returns up to 10 snippets with a positive score. When nothing overlaps,
    the first 5 snippets are returned with small decaying scores so the model
    still sees some context.
    """
    question_tokens = tokenize(question)
    scored = [
        SourceSnippet(**snippet.model_dump(exclude={"score"}), score=score_snippet(question_tokens, snippet))
        for snippet in snippets
    ]
    scored.sort(key=lambda s: s.score, reverse=True)

    positive = [s for s in scored if s.score > 0]
    if positive:
        return positive[:10]

    return [
        s.model_copy(update={"score": max(0.05, 0.1 - i * 0.01)})
        for i, s in enumerate(scored[:5])
    ]


def build_grounded_prompt(url: str, title: str, question: str, snippets: Sequence[SourceSnippet]) -> str:
    has_timestamps = any(s.timestamp_label for s in snippets)
    snippets_json = json.dumps([s.model_dump(exclude_none=True) for s in snippets], ensure_ascii=False)

    lines = [
        "You are Groundline, a grounded assistant for webpage and video content.",
        "Answer only from the provided snippets.",
        "If the snippets do not support a reliable answer, say that the page/video does not contain enough evidence.",
        "Do not invent facts, sources, or citations.",
        "Return strict JSON with this shape only:",
        '{"answer":"string","sources":[{"id":"snippet id","quote":"short supporting quote","score":0.0}]}',
        "Rules:",
        "- Keep answer concise and directly responsive to the question.",
        "- Use 1 to 5 sources when evidence exists.",
        "- source.id must match a snippet id from the provided list.",
        "- source.quote should be a short extract from that snippet.",
    ]
    if has_timestamps:
        lines.append("- Prefer citing snippets that include timestamp_label when available.")
    lines += [
        f"URL: {url}",
        f"TITLE: {title}",
        f"QUESTION: {question}",
        f"SNIPPETS_JSON: {snippets_json}",
    ]
    return "\n".join(lines)


def collapse_nearby_timestamp_sources(
    sources: Sequence[SourceSnippet],
    gap_sec: float = TIMESTAMP_GROUP_GAP_SEC,
) -> list[SourceSnippet]:
    """Merge timestamped sources that sit within ``gap_sec`` of each other.

    A merged source keeps the strongest member's fields, the first member's id
    and start, a ``start-end`` label and up to three distinct texts. Sources
    without a timestamp are dropped whenever any source has one.
    """
    if len(sources) <= 1:
        return list(sources[:MAX_SOURCES])

    timestamped = sorted(
        (s for s in sources if s.timestamp_sec is not None and s.timestamp_sec >= 0),
        key=lambda s: s.timestamp_sec,
    )
    if not timestamped:
        return list(sources[:MAX_SOURCES])

    groups: list[list[SourceSnippet]] = []
    current: list[SourceSnippet] = []
    for source in timestamped:
        if current and source.timestamp_sec - current[-1].timestamp_sec > gap_sec:
            groups.append(current)
            current = []
        current.append(source)
    groups.append(current)

    collapsed = []
    for group in groups:
        if len(group) == 1:
            collapsed.append(group[0])
            continue

        first, last = group[0], group[-1]
        strongest = max(group, key=lambda s: s.score)
        start_label = first.timestamp_label or format_time_label(first.timestamp_sec)
        end_label = last.timestamp_label or format_time_label(last.timestamp_sec)

        texts: list[str] = []
        for source in group:
            text = normalize_whitespace(source.text)
            if text and text not in texts:
                texts.append(text)

        collapsed.append(
            strongest.model_copy(
                update={
                    "id": first.id,
                    "timestamp_sec": first.timestamp_sec,
                    "timestamp_label": start_label if start_label == end_label else f"{start_label}-{end_label}",
                    "text": " ... ".join(texts[:3]) or strongest.text,
                    "score": strongest.score,
                }
            )
        )

    return collapsed[:MAX_SOURCES]


def _ranked_fallback(ranked: Sequence[SourceSnippet], limit: int) -> list[SourceSnippet]:
    timestamped = [s for s in ranked if s.timestamp_label]
    if timestamped:
        return collapse_nearby_timestamp_sources(timestamped[:MAX_SOURCES])
    return collapse_nearby_timestamp_sources(ranked[:limit])


def coerce_sources(model_sources: Any, ranked: Sequence[SourceSnippet]) -> list[SourceSnippet]:
    """Keep only model citations that name a ranked snippet.

    Cited snippets keep their extracted text so they can be found again in
    the page; only the score comes from the model. When the model cites
    nothing usable, the best ranked snippets stand in.
    """
    if not isinstance(model_sources, list) or not ranked:
        timestamped = [s for s in ranked if s.timestamp_label]
        if timestamped:
            return collapse_nearby_timestamp_sources(timestamped[:MAX_SOURCES])
        return list(ranked[:3])

    by_id = {s.id: s for s in ranked}
    picked: list[SourceSnippet] = []
    for candidate in model_sources:
        if not isinstance(candidate, dict):
            continue
        source_id = candidate.get("id")
        base = by_id.get(source_id) if isinstance(source_id, str) else None
        if base is None or any(p.id == base.id for p in picked):
            continue
        score = clamp_score(candidate.get("score"), default=base.score)
        picked.append(base.model_copy(update={"score": score}))

    if not picked:
        logger.debug("Model cited no known snippets, using ranked fallback")
        return _ranked_fallback(ranked, MAX_SOURCES)

    if any(s.timestamp_label for s in ranked):
        picked_timestamped = [s for s in picked if s.timestamp_label]
        if picked_timestamped:
            return collapse_nearby_timestamp_sources(picked_timestamped[:MAX_SOURCES])
        return _ranked_fallback(ranked, MAX_SOURCES)

    return collapse_nearby_timestamp_sources(picked[:MAX_SOURCES])


def answer_question(
    question: str,
    context: PageContext,
    orchestrator: CompletionOrchestrator,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> GroundedAnswer:
    """Answer a question from captured content, with checked citations.

    Raises:
        ValueError: If the question is empty
        MalformedResponse, UpstreamError, CompletionTimeoutError: From the model call
    """
    question = normalize_whitespace(question or "")
    if not question:
        raise ValueError("Question cannot be empty.")

    snippets = context.snippets or build_context_snippets(
        context.text[:MAX_CONTEXT_CHARS],
        context.transcript,
    )
    if not snippets:
        logger.info("No readable snippets in context, skipping model call")
        return GroundedAnswer(answer=NO_CONTEXT_ANSWER, sources=[])

    ranked = rank_snippets(question, snippets)
    prompt = build_grounded_prompt(context.url, context.title, question, ranked)
    document = orchestrator.ask(prompt, timeout_ms=timeout_ms)

    raw_sources = document.raw.get("sources") if isinstance(document.raw, dict) else None
    sources = coerce_sources(raw_sources, ranked)
    answer = normalize_whitespace(document.answer)

    if not answer:
        logger.warning("Model returned an empty answer")
        return GroundedAnswer(answer=NO_ANSWER_FALLBACK, sources=sources)

    return GroundedAnswer(answer=answer, sources=sources)
