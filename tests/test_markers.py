"""Tests for citation resolution across corpus types and the active marker set."""

from groundline.models import NotFound, TextAnchor, TimeRange
from groundline.resolve.markers import (
    ActiveCitations,
    CitationLookup,
    activate_answer,
    resolve_citation,
)
from groundline.resolve.transcript import ingest_transcript


def test_text_corpus_uses_quote(text_segments):
    """Test that page segments resolve by quote."""
    result = resolve_citation(CitationLookup("c1", quote="lazy dog"), text_segments)
    assert isinstance(result, TextAnchor)
    assert result.segment_id == "p2"


def test_transcript_corpus_uses_label(transcript_segments):
    """Test that transcript segments resolve by timestamp label."""
    result = resolve_citation(CitationLookup("c1", quote="ignored", label="0:45"), transcript_segments)
    assert result == TimeRange(45, 80)


def test_transcript_without_label_matches_caption_text(transcript_segments):
    """Test that an unlabelled transcript citation falls back to caption text."""
    lookup = CitationLookup("c1", quote="the cooling loop keeps the pack")
    assert resolve_citation(lookup, transcript_segments) == TimeRange(45, 80)


def test_ingested_transcript_is_accepted(transcript_segments):
    """Test that a Transcript value works as a corpus."""
    transcript = ingest_transcript(transcript_segments)
    assert resolve_citation(CitationLookup("c1", label="0:20-0:34"), transcript) == TimeRange(20, 34)


def test_empty_corpus():
    """Test that an empty corpus is a NotFound, not an error."""
    assert resolve_citation(CitationLookup("c1", quote="x"), []) == NotFound(reason="no_segments")


class TestActivateAnswer:
    """Tests for swapping the active citation set."""

    def test_markers_in_citation_order(self, transcript_segments):
        lookups = [
            CitationLookup("a", label="0:45"),
            CitationLookup("b", label="0:20-0:34"),
        ]
        active = activate_answer("answer-1", lookups, transcript_segments)

        assert active.answer_id == "answer-1"
        assert [m.citation_id for m in active.markers] == ["a", "b"]
        assert active.time_ranges == [TimeRange(45, 80), TimeRange(20, 34)]
        assert active.is_active("answer-1")

    def test_unresolvable_citations_are_skipped(self, transcript_segments):
        lookups = [
            CitationLookup("a", label="10:00"),
            CitationLookup("b", label="1:30"),
        ]
        active = activate_answer("answer-1", lookups, transcript_segments)
        assert [m.citation_id for m in active.markers] == ["b"]

    def test_identical_locations_are_deduplicated(self, transcript_segments):
        lookups = [
            CitationLookup("a", label="0:45"),
            CitationLookup("b", label="0:46"),
        ]
        active = activate_answer("answer-1", lookups, transcript_segments)
        assert len(active.markers) == 1
        assert active.markers[0].citation_id == "a"

    def test_new_answer_supersedes_previous(self, transcript_segments):
        first = activate_answer("answer-1", [CitationLookup("a", label="0:45")], transcript_segments)
        second = activate_answer("answer-2", [CitationLookup("b", label="0:00")], transcript_segments)

        assert second.answer_id == "answer-2"
        assert second.time_ranges == [TimeRange(0, 20)]
        assert not second.is_active("answer-1")
        assert first.time_ranges == [TimeRange(45, 80)]

    def test_zero_resolvable_citations_clear_markers(self, transcript_segments):
        active = activate_answer("answer-3", [CitationLookup("a", label="10:00")], transcript_segments)

        assert active == ActiveCitations.empty()
        assert active.markers == ()
        assert not active.is_active("answer-3")

    def test_text_markers(self, text_segments):
        lookups = [
            CitationLookup("a", quote="fire risk"),
            CitationLookup("b", quote="not on this page at all"),
        ]
        active = activate_answer("answer-1", lookups, text_segments)

        assert len(active.markers) == 1
        assert active.markers[0].location.segment_id == "p4"
        assert active.time_ranges == []
