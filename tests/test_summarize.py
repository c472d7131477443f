"""Tests for plain-language rewrites."""

import pytest

from groundline.errors import MalformedResponse
from groundline.llm.client import CompletionOrchestrator, FakeCompletionTransport
from groundline.summarize import (
    SUMMARIZE_TIMEOUT_MS,
    build_simplify_prompt,
    build_summary_prompt,
    simplify_text,
    summarize_text,
)

PASSAGE = "Lithium-ion cells degrade faster   at high temperature, so packs are actively cooled."


def test_summarize_returns_normalized_summary():
    """Test that the summary comes back whitespace-normalized."""
    transport = FakeCompletionTransport(['{"summary": "Hot batteries  wear out\\n faster."}'])
    summary = summarize_text(PASSAGE, CompletionOrchestrator(transport))

    assert summary == "Hot batteries wear out faster."
    assert transport.calls[0].timeout_ms == SUMMARIZE_TIMEOUT_MS
    assert "SELECTED_TEXT: Lithium-ion cells degrade faster at high" in transport.calls[0].prompt


def test_summarize_retries_strict_on_prose():
    """Test that summaries share the relaxed/strict retry."""
    transport = FakeCompletionTransport(["Here is a summary: cells wear out.", '{"summary": "Cells wear out."}'])
    assert summarize_text(PASSAGE, CompletionOrchestrator(transport)) == "Cells wear out."
    assert len(transport.calls) == 2


def test_short_text_rejected():
    """Test that very short selections are refused without a model call."""
    transport = FakeCompletionTransport()
    with pytest.raises(ValueError, match="longer sentence"):
        summarize_text("  tiny ", CompletionOrchestrator(transport))
    assert transport.calls == []


def test_unknown_level_rejected():
    with pytest.raises(ValueError, match="Unsupported summary level"):
        summarize_text(PASSAGE, CompletionOrchestrator(FakeCompletionTransport()), level=4)


def test_empty_summary_is_malformed():
    transport = FakeCompletionTransport(['{"summary": "   "}'])
    with pytest.raises(MalformedResponse, match="empty response"):
        summarize_text(PASSAGE, CompletionOrchestrator(transport))


@pytest.mark.parametrize(
    "level,expected",
    [
        (1, "10-year-old"),
        (2, "middle-school"),
        (3, "close to the original"),
    ],
)
def test_level_guidance_in_prompt(level, expected):
    assert expected in build_summary_prompt("text", level)


def test_prompt_truncates_input():
    prompt = build_summary_prompt("x" * 5000, 2)
    assert prompt.endswith("SELECTED_TEXT: " + "x" * 3200)


class TestSimplify:
    """Tests for plain-word rewrites."""

    def test_simplify_returns_normalized_text(self):
        transport = FakeCompletionTransport(['{"simplified": "Batteries wear out\\n  faster when hot."}'])
        simplified = simplify_text(PASSAGE, CompletionOrchestrator(transport), level=1)

        assert simplified == "Batteries wear out faster when hot."
        assert transport.calls[0].timeout_ms == SUMMARIZE_TIMEOUT_MS
        assert '{"simplified":"string"}' in transport.calls[0].prompt
        assert "Explain uncommon words." in transport.calls[0].prompt

    def test_summary_key_is_not_accepted(self):
        transport = FakeCompletionTransport(['{"summary": "Hot cells wear out."}'])
        with pytest.raises(MalformedResponse, match="Simplification returned an empty response"):
            simplify_text(PASSAGE, CompletionOrchestrator(transport))

    def test_retries_strict_on_prose(self):
        transport = FakeCompletionTransport(["Sure! Plainer: cells wear out.", '{"simplified": "Cells wear out."}'])
        assert simplify_text(PASSAGE, CompletionOrchestrator(transport)) == "Cells wear out."
        assert transport.calls[1].json_mode is True

    def test_short_text_rejected(self):
        transport = FakeCompletionTransport()
        with pytest.raises(ValueError, match="longer sentence to simplify"):
            simplify_text("short", CompletionOrchestrator(transport))
        assert transport.calls == []

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="Unsupported simplify level"):
            simplify_text(PASSAGE, CompletionOrchestrator(FakeCompletionTransport()), level=0)

    def test_prompt_truncates_input(self):
        prompt = build_simplify_prompt("y" * 5000, 3)
        assert prompt.endswith("SELECTED_TEXT: " + "y" * 2400)
        assert "a bit easier to read" in prompt
