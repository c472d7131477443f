"""Model calls and completion recovery for Groundline."""

from .client import (
    Attempt,
    CompletionCall,
    CompletionOrchestrator,
    CompletionTrace,
    CompletionTransport,
    FakeCompletionTransport,
    ModelCallConfig,
    OpenRouterTransport,
    ask,
    extract_response_text,
    get_transport,
)
from .recovery import (
    extract_balanced_json,
    extract_json_block,
    normalize_json_candidate,
    recover,
    strip_fence_markers,
)

__all__ = [
    # Orchestration
    "Attempt",
    "CompletionCall",
    "CompletionOrchestrator",
    "CompletionTrace",
    "ModelCallConfig",
    "ask",
    "extract_response_text",
    # Transports
    "CompletionTransport",
    "FakeCompletionTransport",
    "OpenRouterTransport",
    "get_transport",
    # Recovery
    "extract_balanced_json",
    "extract_json_block",
    "normalize_json_candidate",
    "recover",
    "strip_fence_markers",
]
