"""
Tests for the completion client and circuit breaker.

These tests use the responses library to mock the Ollama chat endpoint.
responses replays the session's urllib3 ``Retry`` without sleeping.
"""

import base64
import json
from unittest.mock import patch

import pytest
import requests
import responses
from urllib3.util.retry import RequestHistory

from ledger_intake.config import LLMConfig
from ledger_intake.errors import (
    CircuitOpenError,
    CompletionError,
    CompletionRateLimitError,
    CompletionRequestError,
    CompletionUnavailableError,
)
from ledger_intake.llm.circuit_breaker import CircuitBreaker, CircuitState
from ledger_intake.llm.client import CompletionClient, CompletionRetry, VisionImage

CHAT_URL = "http://ollama.test/api/chat"
MESSAGES = [{"role": "user", "content": "x"}]


def _chat_body(content: str = '{"transactions": []}') -> dict:
    return {
        "model": "qwen2.5:7b",
        "message": {"role": "assistant", "content": content},
        "done_reason": "stop",
        "prompt_eval_count": 321,
        "eval_count": 45,
    }


def _after_retries(retry: CompletionRetry, count: int) -> CompletionRetry:
    history = tuple(RequestHistory("POST", CHAT_URL, None, 503, None) for _ in range(count))
    return retry.new(history=history, backoff_jitter=0.0)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(
        enabled=True,
        ollama_url="http://ollama.test",
        text_model="qwen2.5:7b",
        vision_model="llava:13b",
        max_retries=3,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=10.0,
        circuit_failure_threshold=5,
    )


class TestCompletionClient:
    """Tests for request shape, retries and error mapping."""

    @responses.activate
    def test_generate_payload_and_response(self, llm_config):
        responses.add(responses.POST, CHAT_URL, json=_chat_body(), status=200)

        client = CompletionClient(llm_config)
        response = client.generate(
            [{"role": "user", "content": "statement text"}],
            max_tokens=2048,
            system_prompt="You are a parser.",
        )

        assert response.content == '{"transactions": []}'
        assert response.usage.prompt_tokens == 321
        assert response.usage.total_tokens == 366
        assert response.stop_reason == "stop"

        payload = json.loads(responses.calls[0].request.body)
        assert payload["model"] == "qwen2.5:7b"
        assert payload["stream"] is False
        assert payload["format"] == "json"
        assert payload["options"] == {"num_predict": 2048}
        assert payload["messages"][0] == {"role": "system", "content": "You are a parser."}
        assert payload["messages"][1]["content"] == "statement text"

    @responses.activate
    def test_vision_images_base64(self, llm_config):
        responses.add(responses.POST, CHAT_URL, json=_chat_body(), status=200)

        client = CompletionClient(llm_config)
        client.generate_with_vision(
            "Read this", [VisionImage(data=b"png-bytes", mime_type="image/png")], max_tokens=512
        )

        payload = json.loads(responses.calls[0].request.body)
        assert payload["model"] == "llava:13b"
        message = payload["messages"][0]
        assert message["images"] == [base64.b64encode(b"png-bytes").decode()]

    def test_auth_header(self, llm_config):
        llm_config.auth_header = "X-Api-Key: secret"
        client = CompletionClient(llm_config)
        assert client.session.headers["X-Api-Key"] == "secret"
        client.close()

    def test_retry_policy_from_config(self, llm_config):
        client = CompletionClient(llm_config)
        adapter = client.session.get_adapter(CHAT_URL)

        assert adapter.max_retries is client.retry
        assert client.retry.total == 2
        assert set(client.retry.status_forcelist) == {429, 500, 502, 503, 504}
        assert client.retry.allowed_methods == ["POST"]

    @responses.activate
    def test_retries_transient_status(self, llm_config):
        """503, 503, 200 succeeds on the third attempt."""
        responses.add(responses.POST, CHAT_URL, body="busy", status=503)
        responses.add(responses.POST, CHAT_URL, body="busy", status=503)
        responses.add(responses.POST, CHAT_URL, json=_chat_body("ok"), status=200)

        client = CompletionClient(llm_config)
        response = client.generate(MESSAGES, max_tokens=10)

        assert response.content == "ok"
        assert len(responses.calls) == 3
        assert client.breaker.failure_count == 0

    def test_backoff_doubles_and_caps(self, llm_config):
        llm_config.backoff_cap_seconds = 1.5
        retry = CompletionClient(llm_config).retry

        assert _after_retries(retry, 0).get_backoff_time() == 0.0
        assert _after_retries(retry, 1).get_backoff_time() == 1.0
        assert _after_retries(retry, 3).get_backoff_time() == 1.5

    def test_backoff_jitter_bounded(self, llm_config):
        retry = CompletionClient(llm_config).retry
        history = (RequestHistory("POST", CHAT_URL, None, 503, None),) * 2

        for _ in range(20):
            assert 2.0 <= retry.new(history=history).get_backoff_time() < 2.5

    @responses.activate
    def test_client_error_not_retried(self, llm_config):
        responses.add(responses.POST, CHAT_URL, body="bad model", status=400)

        client = CompletionClient(llm_config)
        with pytest.raises(CompletionRequestError) as exc_info:
            client.generate(MESSAGES, max_tokens=10)

        assert exc_info.value.status_code == 400
        assert len(responses.calls) == 1

    @responses.activate
    def test_rate_limit_exhausted(self, llm_config):
        responses.add(responses.POST, CHAT_URL, body="slow down", status=429)

        client = CompletionClient(llm_config)
        with pytest.raises(CompletionRateLimitError):
            client.generate(MESSAGES, max_tokens=10)

        assert len(responses.calls) == 3
        assert client.breaker.failure_count == 1

    @responses.activate
    def test_timeout_mapped(self, llm_config):
        responses.add(
            responses.POST, CHAT_URL, body=requests.exceptions.ReadTimeout("model too slow")
        )

        client = CompletionClient(llm_config)
        with pytest.raises(CompletionUnavailableError, match="timed out"):
            client.generate(MESSAGES, max_tokens=10)

        assert client.breaker.failure_count == 1

    @responses.activate
    def test_unreachable_server(self, llm_config):
        client = CompletionClient(llm_config)
        with pytest.raises(CompletionUnavailableError, match="request failed"):
            client.generate(MESSAGES, max_tokens=10)

    @responses.activate
    def test_non_object_body(self, llm_config):
        responses.add(responses.POST, CHAT_URL, json=["not", "an", "object"], status=200)

        client = CompletionClient(llm_config)
        with pytest.raises(CompletionError, match="expected a JSON object"):
            client.generate(MESSAGES, max_tokens=10)

        assert client.breaker.failure_count == 1

    def test_disabled(self, llm_config):
        llm_config.enabled = False
        client = CompletionClient(llm_config)

        assert not client.is_enabled
        with pytest.raises(CompletionUnavailableError, match="disabled"):
            client.generate(MESSAGES, max_tokens=10)

    @responses.activate
    def test_circuit_opens_and_recovers(self, llm_config):
        """Consecutive failed calls open the circuit; a call after the reset closes it."""
        llm_config.max_retries = 1
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout=30.0, clock=clock)
        responses.add(responses.POST, CHAT_URL, body="boom", status=500)
        responses.add(responses.POST, CHAT_URL, body="boom", status=500)
        responses.add(responses.POST, CHAT_URL, json=_chat_body("ok"), status=200)

        client = CompletionClient(llm_config, breaker=breaker)

        for _ in range(2):
            with pytest.raises(CompletionRequestError):
                client.generate(MESSAGES, max_tokens=10)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            client.generate(MESSAGES, max_tokens=10)
        assert len(responses.calls) == 2

        clock.now += 31
        assert client.generate(MESSAGES, max_tokens=10).content == "ok"
        assert breaker.state == CircuitState.CLOSED

    @responses.activate
    def test_malformed_reply_in_half_open_reopens_circuit(self, llm_config):
        """A half-open call answered with a non-object body re-opens the circuit."""
        llm_config.max_retries = 1
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=30.0, clock=clock)
        responses.add(responses.POST, CHAT_URL, body="boom", status=500)
        responses.add(responses.POST, CHAT_URL, json=[], status=200)
        responses.add(responses.POST, CHAT_URL, json=_chat_body("ok"), status=200)

        client = CompletionClient(llm_config, breaker=breaker)
        with pytest.raises(CompletionRequestError):
            client.generate(MESSAGES, max_tokens=10)

        clock.now += 31
        with pytest.raises(CompletionError):
            client.generate(MESSAGES, max_tokens=10)
        assert breaker.state == CircuitState.OPEN

        clock.now += 31
        assert client.generate(MESSAGES, max_tokens=10).content == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert len(responses.calls) == 3

    @responses.activate
    def test_unexpected_error_counts_as_failure(self, llm_config):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=30.0, clock=clock)
        breaker.record_failure()
        clock.now += 31
        responses.add(responses.POST, CHAT_URL, json=_chat_body("ok"), status=200)

        client = CompletionClient(llm_config, breaker=breaker)
        with patch.object(CompletionClient, "_to_response", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                client.generate(MESSAGES, max_tokens=10)
        assert breaker.state == CircuitState.OPEN

        clock.now += 31
        assert client.generate(MESSAGES, max_tokens=10).content == "ok"
        assert breaker.state == CircuitState.CLOSED


class TestCircuitBreaker:
    """Tests for breaker state transitions."""

    def test_failed_half_open_call_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=10.0, clock=clock)

        breaker.before_call()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        clock.now += 11
        breaker.before_call()
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_single_call_in_half_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=10.0, clock=clock)
        breaker.record_failure()
        clock.now += 11

        breaker.before_call()
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_success_resets_count(self):
        breaker = CircuitBreaker(failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()

        assert breaker.failure_count == 0
        assert breaker.status() == {
            "state": "closed",
            "failure_count": 0,
            "threshold": 3,
            "reset_timeout": 60.0,
        }
