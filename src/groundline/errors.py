"""Error taxonomy for Groundline.

Every error carries two messages: the detailed ``str(exc)`` that goes to logs,
and a short ``user_message`` that is safe to show in a UI (no JSON bodies, no
stack detail). ``NotFound`` is not an exception: failing to locate a
citation is a return value, see ``groundline.models.NotFound``.
"""

from __future__ import annotations


class GroundlineError(Exception):
    """Base class for all errors raised by Groundline."""

    user_message = "Something went wrong while answering."

    def __init__(self, message: str, *, user_message: str | None = None):
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class MalformedResponse(GroundlineError):
    """Every JSON recovery strategy failed on a model completion."""

    user_message = "The model returned an unreadable answer. Try rephrasing the question."

    def __init__(self, message: str, *, parse_error: str | None = None):
        super().__init__(message)
        self.parse_error = parse_error


class UpstreamError(GroundlineError):
    """Non-success HTTP status or an explicit error payload from the model API."""

    user_message = "The model service returned an error. Please try again later."

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionTimeoutError(GroundlineError, TimeoutError):
    """The completion request exceeded its deadline and was aborted."""

    user_message = "The model took too long to respond. Please try again."

    def __init__(self, message: str, *, timeout_ms: int | None = None):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class EmptyUpstreamContent(GroundlineError):
    """The model response had no extractable text."""

    user_message = "The model returned an empty answer. Please try again."


class InvalidTranscript(GroundlineError):
    """An ingested transcript failed ordering or minimum-length validation."""

    user_message = "This video's transcript could not be used for source lookup."

    def __init__(self, message: str, *, reason: str):
        super().__init__(message)
        self.reason = reason
