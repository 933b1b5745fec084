"""Completion service client shared by every model-assisted parser.

Talks to an Ollama server over its ``/api/chat`` endpoint.
Features:
- Text and vision (base64 images) completions
- Exponential backoff with jitter for transient failures (urllib3 ``Retry``)
- Circuit breaker so sustained outages fail fast
- Concurrency limiting via semaphore
- Per-call timeout independent of the retry policy

Privacy constraints:
- Never log prompts or raw statement content above DEBUG
"""

from __future__ import annotations

import base64
import logging
import random
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ledger_intake.errors import (
    CompletionError,
    CompletionRateLimitError,
    CompletionRequestError,
    CompletionUnavailableError,
)
from ledger_intake.llm.circuit_breaker import CircuitBreaker

if TYPE_CHECKING:
    from ledger_intake.config import LLMConfig

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
MAX_JITTER_SECONDS = 0.5
CONNECT_TIMEOUT_SECONDS = 10.0


class CompletionRetry(Retry):
    """``Retry`` whose delay before retry n is ``min(cap, base * 2**(n-1)) + jitter``.

    Stock urllib3 skips the delay before the first retry; model servers
    answering 503 while loading a model need it.
    """

    def get_backoff_time(self) -> float:
        retries = len(self.history)
        if retries == 0:
            return 0.0
        delay = min(self.backoff_max, self.backoff_factor * (2 ** (retries - 1)))
        if self.backoff_jitter:
            delay += random.random() * self.backoff_jitter
        return float(delay)

    @classmethod
    def from_config(cls, config: LLMConfig) -> CompletionRetry:
        # max_retries counts attempts, urllib3 counts retries after the first
        return cls(
            total=max(1, config.max_retries) - 1,
            backoff_factor=config.backoff_base_seconds,
            backoff_max=config.backoff_cap_seconds,
            backoff_jitter=MAX_JITTER_SECONDS,
            status_forcelist=sorted(RETRYABLE_STATUS_CODES),
            allowed_methods=["POST"],
            raise_on_status=False,
        )


@dataclass
class CompletionUsage:
    """Token accounting reported by the server."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionResponse:
    """Result of one completion call."""

    content: str
    usage: CompletionUsage
    stop_reason: str | None
    model: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "content": self.content,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "stop_reason": self.stop_reason,
            "model": self.model,
        }


@dataclass
class VisionImage:
    """One image attached to a vision completion."""

    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class LLMConcurrencyLimiter:
    """Semaphore-based concurrency limiter for model requests.

    Prevents overwhelming the Ollama server when several import jobs
    parse at once. Thread-safe for synchronous usage.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active_count = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot. Returns False on timeout."""
        acquired = self._semaphore.acquire(blocking=True, timeout=timeout)
        if acquired:
            with self._lock:
                self._active_count += 1
        return acquired

    def release(self) -> None:
        with self._lock:
            self._active_count -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        with self._lock:
            return self._active_count


class CompletionClient:
    """Retrying, circuit-protected Ollama chat client.

    One instance is shared by the PDF, screenshot and email parsers so the
    circuit breaker sees every call.
    """

    def __init__(
        self,
        config: LLMConfig,
        session: requests.Session | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: LLM configuration section.
            session: Preconfigured session; the retry adapter is mounted on it.
            breaker: Circuit breaker; built from config when omitted.
        """
        self.config = config
        self.base_url = config.ollama_url.rstrip("/")
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.circuit_failure_threshold,
            reset_timeout=config.circuit_reset_seconds,
        )
        self._limiter = LLMConcurrencyLimiter(max_concurrent=config.max_concurrent)

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in config.auth_header:
                key, value = config.auth_header.split(":", 1)
                self.session.headers[key.strip()] = value.strip()
            else:
                self.session.headers["Authorization"] = config.auth_header

        self.retry = CompletionRetry.from_config(config)
        adapter = HTTPAdapter(max_retries=self.retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    @property
    def active_requests(self) -> int:
        return self._limiter.active_requests

    def generate(
        self,
        messages: Sequence[dict[str, Any]],
        max_tokens: int,
        system_prompt: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CompletionResponse:
        """Run a text completion.

        Args:
            messages: Chat messages ``{"role": ..., "content": ...}``.
            max_tokens: Upper bound on generated tokens.
            system_prompt: Optional system message prepended to ``messages``.
            timeout_seconds: Per-call timeout; defaults to config.

        Raises:
            CompletionError: After retries are exhausted, on a non-retryable
                error, or when the circuit is open.
        """
        return self._complete(
            model=self.config.text_model,
            messages=list(messages),
            max_tokens=max_tokens,
            system_prompt=system_prompt,
            timeout_seconds=timeout_seconds,
        )

    def generate_with_vision(
        self,
        prompt: str,
        images: Sequence[VisionImage],
        max_tokens: int,
        system_prompt: str | None = None,
        timeout_seconds: float | None = None,
    ) -> CompletionResponse:
        """Run a multimodal completion over one or more images."""
        message = {
            "role": "user",
            "content": prompt,
            "images": [image.to_base64() for image in images],
        }
        return self._complete(
            model=self.config.vision_model,
            messages=[message],
            max_tokens=max_tokens,
            system_prompt=system_prompt,
            timeout_seconds=timeout_seconds,
        )

    def _complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        system_prompt: str | None,
        timeout_seconds: float | None,
    ) -> CompletionResponse:
        if not self.config.enabled:
            raise CompletionUnavailableError("Completion service is disabled in configuration")

        timeout = timeout_seconds or self.config.timeout_seconds
        if not self._limiter.acquire(timeout=timeout):
            logger.warning(
                "Completion request timed out waiting for concurrency slot (max=%d, active=%d)",
                self.config.max_concurrent,
                self._limiter.active_requests,
            )
            raise CompletionUnavailableError("No free completion slot")

        try:
            self.breaker.before_call()

            if system_prompt:
                messages = [{"role": "system", "content": system_prompt}, *messages]
            payload = {
                "model": model,
                "messages": messages,
                "stream": False,
                "format": "json",
                "options": {"num_predict": max_tokens},
            }

            # Any exception ends the call, including a half-open probe
            try:
                response = self._to_response(self._post(payload, timeout), model)
            except BaseException:
                self.breaker.record_failure()
                raise
            self.breaker.record_success()
            return response
        finally:
            self._limiter.release()

    def _post(self, payload: dict[str, Any], timeout: float) -> requests.Response:
        """POST to ``/api/chat``; transient failures are retried by the session adapter."""
        logger.debug("Calling model %s", payload["model"])
        try:
            response = self.session.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=(CONNECT_TIMEOUT_SECONDS, float(timeout)),
            )
        except requests.exceptions.Timeout as e:
            logger.error("Completion request timed out after %ss", timeout)
            raise CompletionUnavailableError(f"Completion request timed out after {timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            logger.error("Completion service unreachable at %s: %s", self.base_url, e)
            raise CompletionUnavailableError(f"Completion request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        if response.ok:
            return response

        body = response.text[:500]
        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.error(
                "Completion API error %d for model '%s' after %d attempts",
                response.status_code,
                payload["model"],
                max(1, self.config.max_retries),
            )
        else:
            logger.error(
                "Completion API error %d (non-retryable) for model '%s'",
                response.status_code,
                payload["model"],
            )
        if response.status_code == 429:
            raise CompletionRateLimitError(response_body=body)
        raise CompletionRequestError(response.status_code, response.reason or "error", body)

    @staticmethod
    def _to_response(response: requests.Response, model: str) -> CompletionResponse:
        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError(f"Completion service returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CompletionError(
                f"Completion service returned {type(data).__name__}, expected a JSON object"
            )

        message = data.get("message")
        content = (message.get("content") if isinstance(message, dict) else None) or ""
        logger.debug("Model %s returned %d chars", model, len(content))
        return CompletionResponse(
            content=content,
            usage=CompletionUsage(
                prompt_tokens=data.get("prompt_eval_count", 0) or 0,
                completion_tokens=data.get("eval_count", 0) or 0,
            ),
            stop_reason=data.get("done_reason"),
            model=data.get("model", model),
        )

    def close(self) -> None:
        """Close HTTP session."""
        self.session.close()

    def __enter__(self) -> CompletionClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()
