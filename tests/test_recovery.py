"""Tests for JSON recovery from model completions."""

import pytest

from groundline.errors import MalformedResponse
from groundline.llm.recovery import (
    extract_balanced_json,
    extract_json_block,
    normalize_json_candidate,
    recover,
    recovery_candidates,
    strip_fence_markers,
)


class TestRecover:
    """Tests for the layered recovery strategies."""

    def test_plain_json_parses_verbatim(self):
        assert recover('{"answer": "x", "sources": []}') == {"answer": "x", "sources": []}

    def test_fenced_json(self):
        raw = '```json\n{"answer":"x","sources":[]}\n```'
        assert recover(raw) == {"answer": "x", "sources": []}

    def test_fence_without_language_tag(self):
        raw = '```\n[1, 2, 3]\n```'
        assert recover(raw) == [1, 2, 3]

    def test_prose_and_trailing_comma(self):
        raw = 'I think the answer is {"a":1,} \u2014 hope that helps'
        assert recover(raw) == {"a": 1}

    def test_smart_quotes_are_straightened(self):
        raw = "{\u201canswer\u201d: \u201cyes\u201d}"
        assert recover(raw) == {"answer": "yes"}

    def test_byte_order_mark(self):
        assert recover('\ufeff{"a": [1, 2,]}') == {"a": [1, 2]}

    def test_leading_prose_then_fence(self):
        raw = 'Sure! Here you go:\n```json\n{"answer": "ok", "sources": [{"id": "w-1"}]}\n```\nAnything else?'
        assert recover(raw) == {"answer": "ok", "sources": [{"id": "w-1"}]}

    def test_brackets_inside_strings_do_not_count(self):
        raw = 'Result: {"answer": "use {braces} and ]brackets[", "n": 2} trailing } noise'
        assert recover(raw) == {"answer": "use {braces} and ]brackets[", "n": 2}

    def test_no_json_raises_malformed(self):
        with pytest.raises(MalformedResponse) as exc_info:
            recover("I'm sorry, I can't help with that.")

        assert exc_info.value.parse_error
        assert "Failed to parse model JSON response" in str(exc_info.value)

    def test_empty_string_raises_malformed(self):
        with pytest.raises(MalformedResponse):
            recover("")

    def test_unbalanced_json_raises_malformed(self):
        with pytest.raises(MalformedResponse):
            recover('{"answer": "cut off mid')


class TestExtractBalancedJson:
    """Tests for the bracket-stack balancer."""

    def test_nested_structures(self):
        text = 'x {"a": {"b": [1, {"c": 2}]}} y'
        assert extract_balanced_json(text) == '{"a": {"b": [1, {"c": 2}]}}'

    def test_escaped_quote_inside_string(self):
        text = 'pre {"q": "she said \\"}\\" loudly"} post'
        assert extract_balanced_json(text) == '{"q": "she said \\"}\\" loudly"}'

    def test_escaped_backslash_before_quote_closes_string(self):
        text = '{"path": "C:\\\\"} tail'
        assert extract_balanced_json(text) == '{"path": "C:\\\\"}'

    def test_array_first(self):
        assert extract_balanced_json('list: [1, [2, 3]] done') == "[1, [2, 3]]"

    def test_mismatched_closer_yields_none(self):
        assert extract_balanced_json('{"a": [1, 2}') is None

    def test_no_opener_yields_none(self):
        assert extract_balanced_json("nothing here") is None

    def test_unterminated_yields_none(self):
        assert extract_balanced_json('{"a": {"b": 1}') is None

    def test_first_document_wins(self):
        assert extract_balanced_json('{"a": 1} {"b": 2}') == '{"a": 1}'


class TestHelpers:
    """Tests for fence stripping, block extraction and normalization."""

    def test_strip_fence_markers_anywhere(self):
        assert strip_fence_markers('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fence_markers('prefix ```JSON {"a": 1}``` suffix') == 'prefix  {"a": 1} suffix'

    def test_extract_json_block_prefers_fenced_body(self):
        text = 'ignore {"x": 0}\n```json\n{"a": 1}\n```'
        assert extract_json_block(text) == '{"a": 1}'

    def test_extract_json_block_falls_back_to_text(self):
        assert extract_json_block("  no json  ") == "no json"

    def test_normalize_removes_trailing_commas(self):
        assert normalize_json_candidate('{"a": [1, 2, ], }') == '{"a": [1, 2]}'

    def test_normalize_curly_single_quotes(self):
        assert normalize_json_candidate('{"a": "it\u2019s"}') == '{"a": "it\'s"}'

    def test_candidates_are_deduplicated(self):
        candidates = recovery_candidates('{"a": 1}')
        assert candidates == ['{"a": 1}']

    def test_candidates_order_raw_first(self):
        raw = 'see ```json\n{"a": 1,}\n```'
        candidates = recovery_candidates(raw)
        assert candidates[0] == raw
        assert '{"a": 1}' in candidates
        assert candidates.index('{"a": 1,}') < candidates.index('{"a": 1}')
