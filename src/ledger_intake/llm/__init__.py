"""
Completion service integration (Ollama).

One shared ``CompletionClient`` with retry/backoff, a circuit breaker and a
concurrency limiter, plus the versioned parsing prompts.
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .client import (
    CompletionClient,
    CompletionResponse,
    CompletionUsage,
    LLMConcurrencyLimiter,
    VisionImage,
)
from .prompts import PROMPT_VERSION, EmailAlertPrompt, ScreenshotPrompt, StatementPrompt

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CompletionClient",
    "CompletionResponse",
    "CompletionUsage",
    "LLMConcurrencyLimiter",
    "VisionImage",
    "PROMPT_VERSION",
    "EmailAlertPrompt",
    "ScreenshotPrompt",
    "StatementPrompt",
]
