"""Transcript ingestion and timestamp resolution.

Video citations carry a timestamp label (``"1:05"``, ``"0:20-0:34"``) rather
than a quote. Resolution snaps the label to a caption segment and derives a
time range that ends at the next segment boundary.
"""

from __future__ import annotations

import html
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from groundline.errors import InvalidTranscript
from groundline.models import NotFound, TimeRange, TranscriptSegment

logger = logging.getLogger(__name__)

_LABEL_PART_RE = re.compile(r"^\d+(?:\.\d+)?$")
_RANGE_SPLIT_RE = re.compile(r"\s*[-\u2013\u2014]\s*")
_NUMERIC_ENTITY_RE = re.compile(r"&#(\d+);")
_HEX_ENTITY_RE = re.compile(r"&#x([0-9a-fA-F]+);")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TimelineConfig:
    max_distance_sec: float = 4.0
    min_duration_sec: float = 5.0
    boundary_epsilon_sec: float = 1e-3


@dataclass(frozen=True)
class TranscriptIngestConfig:
    min_segments: int = 3
    duplicate_window_sec: float = 0.2


@dataclass(frozen=True)
class Transcript:
    """A deduplicated, validated, ascending sequence of caption segments."""

    segments: tuple[TranscriptSegment, ...]

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __getitem__(self, index: int) -> TranscriptSegment:
        return self.segments[index]

    @property
    def duration_sec(self) -> float:
        if not self.segments:
            return 0.0
        return self.segments[-1].start_sec - self.segments[0].start_sec


def format_time_label(total_seconds: float) -> str:
    """Render seconds as ``m:ss`` or ``h:mm:ss``."""
    if not math.isfinite(total_seconds) or total_seconds < 0:
        total_seconds = 0
    safe = int(math.floor(total_seconds))
    hours, rest = divmod(safe, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def parse_timestamp_label(label: str) -> float | None:
    """Parse ``mm:ss`` or ``h:mm:ss`` into seconds; anything else is None."""
    parts = [part.strip() for part in (label or "").strip().split(":")]
    if len(parts) not in (2, 3):
        return None
    if not all(_LABEL_PART_RE.match(part) for part in parts):
        return None

    numbers = [float(part) for part in parts]
    if len(numbers) == 2:
        return numbers[0] * 60 + numbers[1]
    return numbers[0] * 3600 + numbers[1] * 60 + numbers[2]


def split_range_label(label: str) -> tuple[str, str] | None:
    """Split ``"0:20-0:34"`` into its halves; None for a single-point label."""
    halves = _RANGE_SPLIT_RE.split(label.strip())
    if len(halves) != 2 or not halves[0] or not halves[1]:
        return None
    return halves[0], halves[1]


def _decode_entities(text: str) -> str:
    value = text
    # Double-encoded captions ("&amp;#39;") need more than one round.
    for _ in range(3):
        decoded = html.unescape(value)
        decoded = _NUMERIC_ENTITY_RE.sub(lambda m: chr(int(m.group(1))), decoded)
        decoded = _HEX_ENTITY_RE.sub(lambda m: chr(int(m.group(1), 16)), decoded)
        if decoded == value:
            break
        value = decoded
    return value


def clean_caption_text(text: str) -> str:
    cleaned = _decode_entities(text or "")
    cleaned = cleaned.replace("\u200b", "")
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def normalize_caption_rows(rows: Iterable[dict[str, Any]]) -> list[TranscriptSegment]:
    """Build transcript segments from raw caption rows.

    Rows need ``start_sec`` and ``text``; ``start_label`` is optional. Rows with
    a bad start or empty text are dropped. Row order is kept so that ingestion
    can reject out-of-order transcripts.
    """
    segments: list[TranscriptSegment] = []
    for row in rows:
        try:
            start_sec = float(row.get("start_sec"))
        except (TypeError, ValueError):
            continue
        if not math.isfinite(start_sec) or start_sec < 0:
            continue
        text = clean_caption_text(str(row.get("text") or ""))
        if not text:
            continue
        label = str(row.get("start_label") or "").strip() or format_time_label(start_sec)
        segments.append(
            TranscriptSegment(
                id=f"{round(start_sec * 1000)}-{text[:24]}",
                start_sec=start_sec,
                start_label=label,
                text=text,
            )
        )
    return segments


def dedupe_segments(
    segments: Sequence[TranscriptSegment],
    window_sec: float = 0.2,
) -> list[TranscriptSegment]:
    """Drop repeated captions: same text starting within the window of the previous kept one."""
    deduped: list[TranscriptSegment] = []
    for segment in segments:
        if deduped:
            previous = deduped[-1]
            if abs(previous.start_sec - segment.start_sec) < window_sec and previous.text == segment.text:
                continue
        deduped.append(segment)
    return deduped


def validate_segments(segments: Sequence[TranscriptSegment], minimum: int = 3) -> None:
    """Raise InvalidTranscript on too few segments or decreasing start times."""
    if len(segments) < minimum:
        raise InvalidTranscript(
            f"Transcript has {len(segments)} segments, need at least {minimum}",
            reason="too_few_segments",
        )

    last = -1.0
    for i, segment in enumerate(segments):
        if segment.start_sec < last:
            raise InvalidTranscript(
                f"Segment {i} starts at {segment.start_sec}s, before previous {last}s",
                reason="non_monotonic_timestamps",
            )
        last = segment.start_sec


def ingest_transcript(
    segments: Sequence[TranscriptSegment],
    cfg: TranscriptIngestConfig | None = None,
) -> Transcript:
    """Deduplicate then validate a segment sequence for resolution.

    Raises:
        InvalidTranscript: If the deduplicated sequence is too short or out of order
    """
    cfg = cfg or TranscriptIngestConfig()
    deduped = dedupe_segments(segments, window_sec=cfg.duplicate_window_sec)
    dropped = len(segments) - len(deduped)
    if dropped:
        logger.debug(f"Dropped {dropped} duplicate caption segment(s)")
    validate_segments(deduped, minimum=cfg.min_segments)
    return Transcript(segments=tuple(deduped))


def nearest_segment_index(
    label: str | None,
    segments: Sequence[TranscriptSegment],
    max_distance_sec: float = 4.0,
) -> int | None:
    """Index of the segment a single timestamp label points at.

    An exact stored-label match wins. Otherwise the label is parsed and the
    segment with the closest start is taken, if it is within the distance bound.
    """
    if not label or not segments:
        return None

    wanted = label.strip()
    for i, segment in enumerate(segments):
        if segment.start_label == wanted:
            return i

    parsed = parse_timestamp_label(wanted)
    if parsed is None:
        return None

    best_index = -1
    best_distance = math.inf
    for i, segment in enumerate(segments):
        distance = abs(segment.start_sec - parsed)
        if distance < best_distance:
            best_distance = distance
            best_index = i

    if best_index == -1 or best_distance > max_distance_sec:
        return None
    return best_index


def range_for_segment(
    index: int,
    segments: Sequence[TranscriptSegment],
    cfg: TimelineConfig | None = None,
) -> TimeRange:
    """Range from a segment's start to the next distinct segment boundary."""
    cfg = cfg or TimelineConfig()
    start = segments[index].start_sec
    for segment in segments[index + 1 :]:
        if segment.start_sec > start + cfg.boundary_epsilon_sec:
            return TimeRange(start_sec=start, end_sec=segment.start_sec)
    return TimeRange(start_sec=start, end_sec=start + cfg.min_duration_sec)


def _resolve_point(
    label: str,
    segments: Sequence[TranscriptSegment],
    cfg: TimelineConfig,
) -> TimeRange | NotFound:
    index = nearest_segment_index(label, segments, cfg.max_distance_sec)
    if index is None:
        reason = "unparseable_label" if parse_timestamp_label(label) is None else "too_far"
        return NotFound(reason=reason)
    return range_for_segment(index, segments, cfg)


def resolve_timestamp(
    label: str | None,
    segments: Sequence[TranscriptSegment],
    cfg: TimelineConfig | None = None,
) -> TimeRange | NotFound:
    """Resolve a citation's timestamp label to a range on the video timeline.

    ``"0:45"`` spans from the matched segment to the next boundary.
    ``"0:20-0:34"`` spans from the first half's segment to the second half's
    segment; if either half fails, the whole label is NotFound.
    """
    cfg = cfg or TimelineConfig()
    if not label or not label.strip():
        return NotFound(reason="no_label")
    if not segments:
        return NotFound(reason="no_segments")

    label = label.strip()
    # A stored label wins even if it happens to contain a dash.
    for i, segment in enumerate(segments):
        if segment.start_label == label:
            return range_for_segment(i, segments, cfg)

    halves = split_range_label(label)
    if halves is None:
        return _resolve_point(label, segments, cfg)

    first = _resolve_point(halves[0], segments, cfg)
    second = _resolve_point(halves[1], segments, cfg)
    if isinstance(first, NotFound) or isinstance(second, NotFound):
        logger.debug(f"Partial range {label!r} dropped")
        return NotFound(reason="partial_range")

    start = min(first.start_sec, second.start_sec)
    end = max(first.start_sec, second.start_sec)
    if end <= start:
        end = max(first.end_sec, second.end_sec)
    return TimeRange(start_sec=start, end_sec=end)
