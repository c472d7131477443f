from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

from groundline.models import NotFound, ResolvedLocation, TextSegment, TimeRange, TranscriptSegment

from .text import TextMatchConfig, resolve_text
from .transcript import TimelineConfig, Transcript, range_for_segment, resolve_timestamp

Corpus = Union[Transcript, Sequence[TranscriptSegment], Sequence[TextSegment]]


@dataclass(frozen=True)
class CitationLookup:
    citation_id: str
    quote: str | None = None
    label: str | None = None


@dataclass(frozen=True)
class Marker:
    citation_id: str
    location: ResolvedLocation


@dataclass(frozen=True)
class ActiveCitations:
    """The one answer whose citation markers are currently shown.

    Owned by the presentation layer and replaced wholesale on every activation.
    """

    answer_id: str | None
    markers: tuple[Marker, ...]

    @classmethod
    def empty(cls) -> "ActiveCitations":
        return cls(answer_id=None, markers=())

    def is_active(self, answer_id: str) -> bool:
        return self.answer_id == answer_id and bool(self.markers)

    @property
    def time_ranges(self) -> list[TimeRange]:
        return [m.location for m in self.markers if isinstance(m.location, TimeRange)]


def is_transcript(corpus: Corpus) -> bool:
    if isinstance(corpus, Transcript):
        return True
    return bool(corpus) and isinstance(corpus[0], TranscriptSegment)


def resolve_citation(
    lookup: CitationLookup,
    corpus: Corpus,
    *,
    text_cfg: TextMatchConfig | None = None,
    timeline_cfg: TimelineConfig | None = None,
) -> ResolvedLocation | NotFound:
    """Resolve one citation against whichever corpus type is supplied.

    Transcripts resolve by timestamp label. A transcript citation without a
    label falls back to matching its quote against caption text.
    """
    if not corpus:
        return NotFound(reason="no_segments")

    if not is_transcript(corpus):
        return resolve_text(lookup.quote or "", corpus, text_cfg)

    segments = list(corpus)
    if lookup.label and lookup.label.strip():
        return resolve_timestamp(lookup.label, segments, timeline_cfg)

    as_text = [TextSegment(id=str(i), text=s.text) for i, s in enumerate(segments)]
    anchor = resolve_text(lookup.quote or "", as_text, text_cfg)
    if isinstance(anchor, NotFound):
        return anchor
    return range_for_segment(int(anchor.segment_id), segments, timeline_cfg)


def activate_answer(
    answer_id: str,
    lookups: Sequence[CitationLookup],
    corpus: Corpus,
    *,
    text_cfg: TextMatchConfig | None = None,
    timeline_cfg: TimelineConfig | None = None,
) -> ActiveCitations:
    """Resolve an answer's citations into the new active marker set.

    The previous set is not consulted: activation always supersedes it, and an
    answer with no resolvable citations clears every marker.
    """
    markers: list[Marker] = []
    seen: set[ResolvedLocation] = set()
    for lookup in lookups:
        location = resolve_citation(lookup, corpus, text_cfg=text_cfg, timeline_cfg=timeline_cfg)
        if isinstance(location, NotFound) or location in seen:
            continue
        seen.add(location)
        markers.append(Marker(citation_id=lookup.citation_id, location=location))

    if not markers:
        return ActiveCitations.empty()
    return ActiveCitations(answer_id=answer_id, markers=tuple(markers))
