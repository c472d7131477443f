"""Pydantic models for completion requests and recovered answers."""

import math
from typing import Any

from pydantic import BaseModel, Field

from ..errors import MalformedResponse


class CompletionRequest(BaseModel):
    """One completion call, constructed per user question and consumed once."""

    prompt: str = Field(description="Full user prompt sent to the model")
    timeout_ms: int = Field(default=70_000, gt=0, description="Request deadline in milliseconds")

    model_config = {"frozen": True}


class SourceCitation(BaseModel):
    """A model-claimed supporting fragment of the original content.

    Opaque to the resolvers beyond ``quote``.
    """

    id: str = Field(description="Snippet id the model cited")
    quote: str = Field(default="", description="Short supporting quote")
    score: float = Field(ge=0.0, le=1.0, description="Model confidence (0.0-1.0)")

    model_config = {"frozen": True}


class RecoveredDocument(BaseModel):
    """Answer object recovered from a model completion.

    Always built from a successfully parsed JSON value; ``raw`` keeps that
    value untouched for callers that need fields beyond answer/sources.
    """

    answer: str = Field(default="", description="Answer text as returned by the model")
    sources: list[SourceCitation] = Field(
        default_factory=list,
        description="Citations in the order the model listed them",
    )
    raw: Any = Field(default=None, description="The recovered JSON value", repr=False)

    model_config = {"frozen": True}

    @classmethod
    def from_json(cls, value: Any) -> "RecoveredDocument":
        """Coerce a recovered JSON value into an answer document.

        Raises:
            MalformedResponse: If the value is not a JSON object
        """
        if not isinstance(value, dict):
            raise MalformedResponse(
                f"Expected a JSON object with an answer, got {type(value).__name__}",
                parse_error="not_an_object",
            )

        answer = value.get("answer")
        if not isinstance(answer, str):
            answer = ""

        sources: list[SourceCitation] = []
        raw_sources = value.get("sources")
        if isinstance(raw_sources, list):
            for item in raw_sources:
                citation = _coerce_citation(item)
                if citation is not None:
                    sources.append(citation)

        return cls(answer=answer, sources=sources, raw=value)


def _coerce_citation(item: Any) -> SourceCitation | None:
    if not isinstance(item, dict):
        return None
    source_id = item.get("id")
    if isinstance(source_id, (int, float)) and not isinstance(source_id, bool):
        source_id = str(source_id)
    if not isinstance(source_id, str) or not source_id.strip():
        return None

    quote = item.get("quote")
    if not isinstance(quote, str):
        quote = ""

    return SourceCitation(id=source_id.strip(), quote=quote, score=clamp_score(item.get("score")))


def clamp_score(value: Any, default: float = 0.0) -> float:
    """Clamp a model-supplied score into [0, 1], falling back on junk."""
    if isinstance(value, bool):
        return default
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(score):
        return default
    return max(0.0, min(1.0, score))
