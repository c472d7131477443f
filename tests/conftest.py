"""Pytest fixtures for Groundline tests."""

import json

import pytest

from groundline.llm.client import CompletionOrchestrator, FakeCompletionTransport
from groundline.models import TextSegment, TranscriptSegment
from groundline.resolve.transcript import format_time_label

TRANSCRIPT_STARTS = [0, 20, 34, 45, 80, 90]
TRANSCRIPT_LINES = [
    "Welcome back to the channel everyone",
    "Today we are looking at battery storage",
    "Lithium cells lose capacity when they run hot",
    "The cooling loop keeps the pack under forty degrees",
    "Here is the thermal camera footage from the test",
    "Thanks for watching and see you next time",
]


def make_segment(start_sec, text, label=None):
    return TranscriptSegment(
        id=f"{round(start_sec * 1000)}-{text[:24]}",
        start_sec=start_sec,
        start_label=label or format_time_label(start_sec),
        text=text,
    )


@pytest.fixture
def transcript_segments():
    """Six caption segments starting at 0, 20, 34, 45, 80 and 90 seconds."""
    return [make_segment(start, text) for start, text in zip(TRANSCRIPT_STARTS, TRANSCRIPT_LINES)]


@pytest.fixture
def caption_rows():
    """Raw caption rows as a capture layer would hand them over."""
    return [
        {"start_sec": start, "text": text}
        for start, text in zip(TRANSCRIPT_STARTS, TRANSCRIPT_LINES)
    ]


@pytest.fixture
def text_segments():
    """Paragraph blocks of an article page."""
    return [
        TextSegment(id="p1", text="Grid operators are adding batteries at record pace."),
        TextSegment(id="p2", text="The Quick  brown fox jumps over the lazy dog."),
        TextSegment(id="p3", text="Grid reliability improves when batteries provide energy storage."),
        TextSegment(id="p4", text="Critics point to fire risk and recycling costs."),
    ]


@pytest.fixture
def fake_transport():
    """Fake transport that answers with a single cited source."""
    return FakeCompletionTransport(
        [json.dumps({"answer": "They cool the pack.", "sources": [{"id": "t-4", "quote": "cooling loop", "score": 0.9}]})]
    )


@pytest.fixture
def orchestrator(fake_transport):
    return CompletionOrchestrator(fake_transport)
