"""Data models for Groundline."""

from .answer import CompletionRequest, RecoveredDocument, SourceCitation, clamp_score
from .location import NotFound, ResolvedLocation, TextAnchor, TimeRange
from .segments import TextSegment, TranscriptSegment

__all__ = [
    # Model calls
    "CompletionRequest",
    "RecoveredDocument",
    "SourceCitation",
    "clamp_score",
    # Corpus
    "TextSegment",
    "TranscriptSegment",
    # Resolution results
    "NotFound",
    "ResolvedLocation",
    "TextAnchor",
    "TimeRange",
]
