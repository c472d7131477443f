"""Resolution of cited fragments back to locations in the captured content."""

from .markers import (
    ActiveCitations,
    CitationLookup,
    Marker,
    activate_answer,
    resolve_citation,
)
from .text import TextMatchConfig, resolve_text
from .transcript import (
    TimelineConfig,
    Transcript,
    TranscriptIngestConfig,
    dedupe_segments,
    format_time_label,
    ingest_transcript,
    nearest_segment_index,
    normalize_caption_rows,
    parse_timestamp_label,
    range_for_segment,
    resolve_timestamp,
    validate_segments,
)

__all__ = [
    # Text pages
    "TextMatchConfig",
    "resolve_text",
    # Transcripts
    "TimelineConfig",
    "Transcript",
    "TranscriptIngestConfig",
    "dedupe_segments",
    "format_time_label",
    "ingest_transcript",
    "nearest_segment_index",
    "normalize_caption_rows",
    "parse_timestamp_label",
    "range_for_segment",
    "resolve_timestamp",
    "validate_segments",
    # Active markers
    "ActiveCitations",
    "CitationLookup",
    "Marker",
    "activate_answer",
    "resolve_citation",
]
