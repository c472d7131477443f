"""Plain-language rewrites of highlighted text: summaries and simplifications."""

import logging
import re

from .errors import MalformedResponse
from .llm.client import CompletionOrchestrator
from .models import CompletionRequest

logger = logging.getLogger(__name__)

SUMMARIZE_TIMEOUT_MS = 45_000
MAX_SUMMARIZE_INPUT_CHARS = 3_200
MIN_SUMMARIZE_INPUT_CHARS = 8
MAX_SIMPLIFY_INPUT_CHARS = 2_400

LEVEL_GUIDANCE = {
    1: [
        "Level 1: Summarize in very basic language a 10-year-old can understand.",
        "Use 3 to 5 short sentences.",
    ],
    2: [
        "Level 2: Summarize in middle-school friendly language.",
        "Use 2 to 4 sentences.",
    ],
    3: [
        "Level 3: Summarize with wording close to the original, but slightly easier.",
        "Use 2 to 3 sentences.",
    ],
}

SIMPLIFY_LEVEL_GUIDANCE = {
    1: "Level 1: Use very basic language for a 10-year-old. Very short sentences. Explain uncommon words.",
    2: "Level 2: Use middle-school language. Clear and simple, with minimal jargon.",
    3: "Level 3: Keep close to original meaning and tone, but make it a bit easier to read.",
}

_WHITESPACE_RE = re.compile(r"\s+")


def build_summary_prompt(text: str, level: int) -> str:
    lines = [
        "Summarize the selected text clearly and directly.",
        *LEVEL_GUIDANCE[level],
        "Rules:",
        "- Keep the main points; do not drop important context.",
        "- Do not add new facts.",
        "- Use plain language.",
        "- Do not make it a one-line summary unless the input is extremely short.",
        "Return strict JSON only:",
        '{"summary":"string"}',
        f"SELECTED_TEXT: {text[:MAX_SUMMARIZE_INPUT_CHARS]}",
    ]
    return "\n".join(lines)


def summarize_text(
    text: str,
    orchestrator: CompletionOrchestrator,
    level: int = 2,
    timeout_ms: int = SUMMARIZE_TIMEOUT_MS,
) -> str:
    """Rewrite a highlighted passage at reading level 1 (simplest) to 3.

    Raises:
        ValueError: If the text is too short or the level is unknown
        MalformedResponse: If the model returns no usable summary
    """
    normalized = _WHITESPACE_RE.sub(" ", text or "").strip()
    if len(normalized) < MIN_SUMMARIZE_INPUT_CHARS:
        raise ValueError("Please highlight a longer sentence to summarize.")
    if level not in LEVEL_GUIDANCE:
        raise ValueError(f"Unsupported summary level: {level} (expected 1, 2 or 3)")

    request = CompletionRequest(prompt=build_summary_prompt(normalized, level), timeout_ms=timeout_ms)
    value = orchestrator.ask_json(request, require_object=True)

    raw_summary = value.get("summary")
    summary = _WHITESPACE_RE.sub(" ", "" if raw_summary is None else str(raw_summary)).strip()
    if not summary:
        raise MalformedResponse("Summarization returned an empty response.", parse_error="empty_summary")

    logger.debug(f"Summarized {len(normalized)} chars at level {level} into {len(summary)} chars")
    return summary


def build_simplify_prompt(text: str, level: int) -> str:
    lines = [
        "Rewrite the selected text in very plain, everyday English.",
        "Audience: low reading level, non-expert adults.",
        SIMPLIFY_LEVEL_GUIDANCE[level],
        "Rules:",
        "- Keep the original meaning.",
        "- Use short sentences and common words.",
        "- Avoid jargon, idioms, and technical terms when possible.",
        "- Do not add new facts.",
        "- Keep it concise.",
        "Return strict JSON only:",
        '{"simplified":"string"}',
        f"SELECTED_TEXT: {text[:MAX_SIMPLIFY_INPUT_CHARS]}",
    ]
    return "\n".join(lines)


def simplify_text(
    text: str,
    orchestrator: CompletionOrchestrator,
    level: int = 2,
    timeout_ms: int = SUMMARIZE_TIMEOUT_MS,
) -> str:
    """Rewrite a highlighted passage in plain words, keeping its length and meaning.

    Raises:
        ValueError: If the text is too short or the level is unknown
        MalformedResponse: If the model returns no usable rewrite
    """
    normalized = _WHITESPACE_RE.sub(" ", text or "").strip()
    if len(normalized) < MIN_SUMMARIZE_INPUT_CHARS:
        raise ValueError("Please highlight a longer sentence to simplify.")
    if level not in SIMPLIFY_LEVEL_GUIDANCE:
        raise ValueError(f"Unsupported simplify level: {level} (expected 1, 2 or 3)")

    request = CompletionRequest(prompt=build_simplify_prompt(normalized, level), timeout_ms=timeout_ms)
    value = orchestrator.ask_json(request, require_object=True)

    raw = value.get("simplified")
    simplified = _WHITESPACE_RE.sub(" ", "" if raw is None else str(raw)).strip()
    if not simplified:
        raise MalformedResponse("Simplification returned an empty response.", parse_error="empty_simplified")

    logger.debug(f"Simplified {len(normalized)} chars at level {level}")
    return simplified
