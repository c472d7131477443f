"""Model call orchestration for grounded answers.

Sends a chat-completion request, recovers JSON from the completion text and,
when recovery fails, retries exactly once in strict mode. Timeouts and
upstream errors surface immediately.
"""

from __future__ import annotations

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import requests
from urllib3.exceptions import ReadTimeoutError

from ..errors import (
    CompletionTimeoutError,
    EmptyUpstreamContent,
    MalformedResponse,
    UpstreamError,
)
from ..models.answer import CompletionRequest, RecoveredDocument
from .recovery import recover

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "arcee-ai/trinity-large-preview:free"
DEFAULT_TIMEOUT_MS = 70_000
STREAM_CHUNK_BYTES = 512
STRICT_JSON_SYSTEM_PROMPT = (
    "You are a JSON API. Return only strict RFC8259 JSON. "
    "No markdown, no explanations, no code fences."
)
STRICT_PROMPT_SUFFIX = "\n\nIMPORTANT: Return valid JSON only. Do not use markdown or comments."


class Attempt(str, Enum):
    """The two attempts a completion gets. There is no third."""

    RELAXED = "relaxed"
    STRICT = "strict"

    @property
    def next(self) -> "Attempt | None":
        return Attempt.STRICT if self is Attempt.RELAXED else None


@dataclass(frozen=True)
class ModelCallConfig:
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    max_tokens: int = 1800
    relaxed_temperature: float = 0.1
    strict_temperature: float = 0.0
    app_title: str = "Groundline"


@dataclass(frozen=True)
class CompletionCall:
    """Everything a transport needs to send one request."""

    prompt: str
    system_prompt: str
    temperature: float
    json_mode: bool
    timeout_ms: int


@dataclass
class AttemptTrace:
    attempt: str
    temperature: float
    raw_response: str
    parse_error: str | None = None


@dataclass
class CompletionTrace:
    """Trace data for one orchestrated completion (for debugging)."""
    ts: str
    model: str
    prompt: str
    attempts: list[AttemptTrace] = field(default_factory=list)
    outcome: str = "pending"


class CompletionTransport(ABC):
    """Sends one completion request and returns the completion text.

    Implementations raise UpstreamError, CompletionTimeoutError or
    EmptyUpstreamContent; they never retry.
    """

    @abstractmethod
    def complete(self, call: CompletionCall) -> str:
        pass

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Return engine identifier (e.g., 'fake', 'openrouter')."""
        pass

    @property
    def provider_model(self) -> str | None:
        """Return provider/model string for real transports, None for fake."""
        return None


class OpenRouterTransport(CompletionTransport):
    """OpenRouter-compatible chat-completions transport using requests."""

    def __init__(self, api_key: str, config: ModelCallConfig | None = None):
        if not api_key or not api_key.strip():
            raise ValueError("Missing API key: set GROUNDLINE_API_KEY or OPENROUTER_API_KEY")
        self.api_key = api_key.strip()
        self.config = config or ModelCallConfig()

    @property
    def engine_name(self) -> str:
        return "openrouter"

    @property
    def provider_model(self) -> str:
        return f"openrouter/{self.config.model}"

    def build_payload(self, call: CompletionCall) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "temperature": call.temperature,
            "max_tokens": self.config.max_tokens,
            "messages": [
                {"role": "system", "content": call.system_prompt},
                {"role": "user", "content": call.prompt},
            ],
        }
        if call.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def complete(self, call: CompletionCall) -> str:
        """Send one request and return the completion text.

        ``call.timeout_ms`` is a wall-clock deadline for the whole exchange,
        including a body that arrives slowly.
        """
        budget = call.timeout_ms / 1000
        deadline = time.monotonic() + budget
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="groundline-http")
        future = pool.submit(self._exchange, call, deadline)
        try:
            status_code, body = future.result(timeout=budget)
        except CompletionTimeoutError:
            # Also a FutureTimeoutError, which is the builtin TimeoutError.
            raise
        except FutureTimeoutError as exc:
            future.cancel()
            raise _timeout_error(call) from exc
        finally:
            pool.shutdown(wait=False)

        if not 200 <= status_code < 300:
            text = body.decode("utf-8", errors="replace")[:300]
            raise UpstreamError(
                f"Completion API failed ({status_code}): {text}",
                status_code=status_code,
            )

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise UpstreamError(
                f"Completion API returned a non-JSON body: {exc}",
                status_code=status_code,
            ) from exc

        return extract_response_text(data)

    def _exchange(self, call: CompletionCall, deadline: float) -> tuple[int, bytes]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.config.app_title,
        }
        try:
            response = requests.post(
                self.config.endpoint,
                headers=headers,
                json=self.build_payload(call),
                timeout=call.timeout_ms / 1000,
                stream=True,
            )
        except requests.Timeout as exc:
            raise _timeout_error(call) from exc
        except requests.RequestException as exc:
            if _is_read_timeout(exc):
                raise _timeout_error(call) from exc
            raise UpstreamError(f"Network error: {exc}") from exc

        try:
            return response.status_code, _read_body(response, call, deadline)
        finally:
            response.close()


def _timeout_error(call: CompletionCall) -> CompletionTimeoutError:
    return CompletionTimeoutError(
        f"Completion request timed out after {call.timeout_ms} ms",
        timeout_ms=call.timeout_ms,
    )


def _is_read_timeout(exc: BaseException) -> bool:
    """True when a requests error wraps a urllib3 read timeout."""
    candidates = [exc.__cause__, exc.__context__, *exc.args]
    for candidate in candidates:
        if isinstance(candidate, ReadTimeoutError):
            return True
        if isinstance(getattr(candidate, "reason", None), ReadTimeoutError):
            return True
    return False


def _read_body(response: requests.Response, call: CompletionCall, deadline: float) -> bytes:
    """Read the streamed body, giving up once the deadline passes."""
    chunks: list[bytes] = []
    try:
        for chunk in response.iter_content(chunk_size=STREAM_CHUNK_BYTES):
            if time.monotonic() > deadline:
                raise _timeout_error(call)
            chunks.append(chunk)
    except requests.RequestException as exc:
        if _is_read_timeout(exc):
            raise _timeout_error(call) from exc
        raise UpstreamError(f"Network error while reading response: {exc}") from exc
    if time.monotonic() > deadline:
        raise _timeout_error(call)
    return b"".join(chunks)


class FakeCompletionTransport(CompletionTransport):
    """Deterministic transport for tests and offline runs.

    Replays ``responses`` in order (the last one repeats). Entries may be
    completion strings or exceptions to raise.
    """

    def __init__(self, responses: list[str | Exception] | None = None):
        self.responses = list(responses or ['{"answer": "", "sources": []}'])
        self.calls: list[CompletionCall] = []

    @property
    def engine_name(self) -> str:
        return "fake"

    def complete(self, call: CompletionCall) -> str:
        self.calls.append(call)
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


def extract_response_text(payload: Any) -> str:
    """Pull the completion text out of a chat-completions response body.

    Accepts ``message.content`` as a string or as a list of typed parts whose
    ``text`` values are joined with newlines.

    Raises:
        UpstreamError: If the body carries an explicit error object
        EmptyUpstreamContent: If no text is present in either shape
    """
    if not isinstance(payload, dict):
        raise EmptyUpstreamContent("Completion response was not a JSON object.")

    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        code = error.get("code")
        raise UpstreamError(
            f"Completion API error: {error['message']}",
            status_code=code if isinstance(code, int) else None,
        )

    choices = payload.get("choices")
    content: Any = None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            content = message.get("content")

    if isinstance(content, str) and content.strip():
        return content

    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        combined = "\n".join(parts).strip()
        if combined:
            return combined

    raise EmptyUpstreamContent("Completion response did not contain text content.")


class CompletionOrchestrator:
    """Runs the relaxed -> strict attempt sequence over a transport."""

    def __init__(self, transport: CompletionTransport, config: ModelCallConfig | None = None):
        self.transport = transport
        self.config = config or ModelCallConfig()
        self._last_trace: CompletionTrace | None = None

    def get_last_trace(self) -> CompletionTrace | None:
        return self._last_trace

    def _call_for(self, attempt: Attempt, request: CompletionRequest) -> CompletionCall:
        if attempt is Attempt.STRICT:
            return CompletionCall(
                prompt=request.prompt + STRICT_PROMPT_SUFFIX,
                system_prompt=STRICT_JSON_SYSTEM_PROMPT,
                temperature=self.config.strict_temperature,
                json_mode=True,
                timeout_ms=request.timeout_ms,
            )
        return CompletionCall(
            prompt=request.prompt,
            system_prompt=STRICT_JSON_SYSTEM_PROMPT,
            temperature=self.config.relaxed_temperature,
            json_mode=False,
            timeout_ms=request.timeout_ms,
        )

    def ask_json(self, request: CompletionRequest, *, require_object: bool = False) -> Any:
        """Return the recovered JSON value for a prompt.

        Args:
            request: Prompt and deadline
            require_object: Treat a non-object JSON value as malformed

        Raises:
            MalformedResponse: If both attempts fail recovery
            UpstreamError, CompletionTimeoutError, EmptyUpstreamContent: Immediately, no retry
        """
        trace = CompletionTrace(
            ts=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            model=self.transport.provider_model or f"{self.transport.engine_name}/deterministic",
            prompt=request.prompt,
        )
        self._last_trace = trace

        attempt: Attempt | None = Attempt.RELAXED
        last_error: MalformedResponse | None = None

        while attempt is not None:
            call = self._call_for(attempt, request)
            logger.debug(f"Completion attempt '{attempt.value}' (temperature={call.temperature})")
            try:
                text = self.transport.complete(call)
            except CompletionTimeoutError:
                trace.outcome = "timeout"
                logger.error(f"Completion timed out after {request.timeout_ms} ms on '{attempt.value}' attempt")
                raise
            except (UpstreamError, EmptyUpstreamContent) as exc:
                trace.outcome = "upstream_error"
                logger.error(f"Completion failed on '{attempt.value}' attempt: {exc}")
                raise

            attempt_trace = AttemptTrace(attempt=attempt.value, temperature=call.temperature, raw_response=text)
            trace.attempts.append(attempt_trace)
            try:
                value = recover(text)
                if require_object and not isinstance(value, dict):
                    raise MalformedResponse(
                        f"Expected a JSON object, got {type(value).__name__}",
                        parse_error="not_an_object",
                    )
            except MalformedResponse as exc:
                attempt_trace.parse_error = exc.parse_error or str(exc)
                last_error = exc
                attempt = attempt.next
                if attempt is not None:
                    logger.warning(f"Unparseable completion, retrying in strict mode: {exc}")
                continue

            trace.outcome = "ok"
            return value

        trace.outcome = "malformed"
        detail = last_error.parse_error if last_error and last_error.parse_error else str(last_error)
        raise MalformedResponse(
            f"Model response was not valid JSON after strict retry: {detail}",
            parse_error=detail,
        )

    def ask(self, prompt: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> RecoveredDocument:
        """Ask for an answer document (``{"answer", "sources"}``)."""
        request = CompletionRequest(prompt=prompt, timeout_ms=timeout_ms)
        value = self.ask_json(request, require_object=True)
        return RecoveredDocument.from_json(value)


def get_transport(engine: str = "auto", api_key: str | None = None, config: ModelCallConfig | None = None) -> CompletionTransport:
    """Get a completion transport based on engine setting and available API keys.

    Args:
        engine: 'fake', 'openrouter', or 'auto'
                'auto' uses the real transport if an API key is available, else fake
        api_key: Explicit key; falls back to GROUNDLINE_API_KEY / OPENROUTER_API_KEY
        config: Model call settings for the real transport
    """
    key = api_key or os.environ.get("GROUNDLINE_API_KEY") or os.environ.get("OPENROUTER_API_KEY")

    if engine == "fake":
        return FakeCompletionTransport()

    if engine == "openrouter":
        if not key:
            raise ValueError("GROUNDLINE_API_KEY / OPENROUTER_API_KEY not set")
        return OpenRouterTransport(key, config)

    if engine == "auto":
        if key:
            return OpenRouterTransport(key, config)
        return FakeCompletionTransport()

    raise ValueError(f"Unsupported engine: {engine}")


def ask(
    api_key: str,
    prompt: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    *,
    config: ModelCallConfig | None = None,
) -> RecoveredDocument:
    """One-shot grounded completion against the real transport."""
    cfg = config or ModelCallConfig()
    orchestrator = CompletionOrchestrator(OpenRouterTransport(api_key, cfg), cfg)
    return orchestrator.ask(prompt, timeout_ms=timeout_ms)


def dump_trace(trace: CompletionTrace) -> str:
    return json.dumps(
        {
            "ts": trace.ts,
            "model": trace.model,
            "outcome": trace.outcome,
            "attempts": [
                {
                    "attempt": a.attempt,
                    "temperature": a.temperature,
                    "parse_error": a.parse_error,
                    "raw_chars": len(a.raw_response),
                }
                for a in trace.attempts
            ],
        },
        indent=2,
    )
