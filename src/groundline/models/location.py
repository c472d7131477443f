from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union


@dataclass(frozen=True)
class TextAnchor:
    segment_id: str
    char_offset: int | None
    char_end: int | None
    method: Literal["exact", "overlap"]
    score: float

    def to_compact_str(self) -> str:
        if self.char_offset is None:
            return f"{self.segment_id}~{self.score:.2f}"
        return f"{self.segment_id}:{self.char_offset}-{self.char_end}"


@dataclass(frozen=True)
class TimeRange:
    start_sec: float
    end_sec: float

    def __post_init__(self):
        if self.start_sec < 0:
            raise ValueError(f"start_sec must be >= 0, got {self.start_sec}")
        if not self.end_sec > self.start_sec:
            raise ValueError(f"end_sec must exceed start_sec, got {self.start_sec}-{self.end_sec}")

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec

    def to_compact_str(self) -> str:
        return f"{self.start_sec:g}-{self.end_sec:g}"


@dataclass(frozen=True)
class NotFound:
    """A citation that could not be located. Returned, never raised."""

    reason: str

    def __bool__(self) -> bool:
        return False


ResolvedLocation = Union[TextAnchor, TimeRange]
