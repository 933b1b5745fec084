"""Circuit breaker guarding the completion service.

CLOSED: calls pass; consecutive failed calls are counted.
OPEN: calls fail fast with ``CircuitOpenError`` until the reset timeout elapses.
HALF_OPEN: a single probe call is let through; its outcome closes or re-opens
the circuit.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe consecutive-failure circuit breaker."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def before_call(self) -> None:
        """Admit a call or raise ``CircuitOpenError``."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._opened_at
                if elapsed < self.reset_timeout:
                    raise CircuitOpenError(self.reset_timeout - elapsed)
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
                logger.info("Completion circuit half-open, allowing a probe request")

            # HALF_OPEN: exactly one probe at a time
            if self._probe_in_flight:
                raise CircuitOpenError(0.0)
            self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("Completion circuit closed after successful request")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._probe_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.warning("Completion circuit re-opened after failed probe")
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.warning(
                    "Completion circuit opened after %d consecutive failures",
                    self._failure_count,
                )

    def status(self) -> dict:
        """Snapshot for health output."""
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "threshold": self.failure_threshold,
                "reset_timeout": self.reset_timeout,
            }
