"""Pydantic models for addressable segments of captured content."""

from pydantic import BaseModel, Field


class TextSegment(BaseModel):
    """One addressable block of page text (paragraph, heading, list item)."""

    id: str = Field(..., description="Stable block identifier")
    text: str = Field(..., description="Block text as extracted from the page")
    anchor_hint: str | None = Field(None, description="Optional DOM anchor for scroll targets")

    model_config = {"frozen": True}


class TranscriptSegment(BaseModel):
    """One caption line of a video transcript."""

    id: str = Field(..., description="Unique segment identifier")
    start_sec: float = Field(..., ge=0.0, description="Start time in seconds")
    start_label: str = Field(..., description="Display label for start time (m:ss or h:mm:ss)")
    text: str = Field(..., description="Caption text")

    model_config = {"frozen": True}
