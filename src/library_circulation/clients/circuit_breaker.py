"""
Count-based circuit breaker for calls to a downstream service.

    CLOSED --(failure or slow-call rate >= threshold)--> OPEN
    OPEN --(cool-down elapsed)--> HALF_OPEN
    HALF_OPEN --(all trial calls succeed)--> CLOSED
    HALF_OPEN --(any trial call fails)--> OPEN

Rates are computed over the last ``window_size`` calls and only once
``minimum_calls`` outcomes have been recorded. A call is slow when it takes
longer than ``slow_call_duration`` seconds, whether or not it succeeded.

One breaker instance is shared by every request thread that calls the same
downstream, so its state is guarded by a lock.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

from ..config import ServiceSettings

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class BreakerConfig(BaseModel):
    """Tuning of one circuit breaker."""

    window_size: int = Field(default=10, ge=1)
    minimum_calls: int = Field(default=5, ge=1)
    failure_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    slow_call_duration: float = Field(default=5.0, gt=0)
    slow_call_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    open_seconds: float = Field(default=20.0, ge=0)
    half_open_calls: int = Field(default=3, ge=1)

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "BreakerConfig":
        return cls(
            window_size=settings.breaker_window_size,
            minimum_calls=settings.breaker_minimum_calls,
            failure_rate_threshold=settings.breaker_failure_rate_threshold,
            slow_call_duration=settings.breaker_slow_call_duration,
            slow_call_rate_threshold=settings.breaker_slow_call_rate_threshold,
            open_seconds=settings.breaker_open_seconds,
            half_open_calls=settings.breaker_half_open_calls,
        )


class CircuitBreaker:
    """Thread-safe circuit breaker.

    Callers ask ``allow_request()`` before calling the downstream and then
    report the outcome with ``record_success()`` or ``record_failure()``.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        # (failed, slow) per call, newest last
        self._window: deque[tuple[bool, bool]] = deque(maxlen=self.config.window_size)
        self._opened_at = 0.0
        self._half_open_permits = 0
        self._half_open_successes = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def allow_request(self) -> bool:
        """Return True if a call may go through now; False means short-circuit."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and self._half_open_permits > 0:
                self._half_open_permits -= 1
                return True
            return False

    def record_success(self, duration: float = 0.0) -> None:
        slow = duration > self.config.slow_call_duration
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                if slow:
                    self._transition(CircuitState.OPEN)
                    return
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_calls:
                    self._transition(CircuitState.CLOSED)
                return
            if self._state == CircuitState.CLOSED:
                self._window.append((False, slow))
                self._evaluate()

    def record_failure(self, duration: float = 0.0) -> None:
        slow = duration > self.config.slow_call_duration
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                return
            if self._state == CircuitState.CLOSED:
                self._window.append((True, slow))
                self._evaluate()

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)

    # Callers hold self._lock for everything below.

    def _evaluate(self) -> None:
        calls = len(self._window)
        if calls < self.config.minimum_calls:
            return
        failures = sum(1 for failed, _ in self._window if failed)
        slow_calls = sum(1 for _, slow in self._window if slow)
        failure_rate = failures * 100.0 / calls
        slow_rate = slow_calls * 100.0 / calls
        if (
            failure_rate >= self.config.failure_rate_threshold
            or slow_rate >= self.config.slow_call_rate_threshold
        ):
            logger.warning(
                "Circuit %s: failure rate %.0f%%, slow-call rate %.0f%% over %d calls",
                self.name,
                failure_rate,
                slow_rate,
                calls,
            )
            self._transition(CircuitState.OPEN)

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.config.open_seconds
        ):
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.warning("Circuit %s: %s -> %s", self.name, self._state.value, new_state.value)
        self._state = new_state
        self._window.clear()
        self._half_open_permits = 0
        self._half_open_successes = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_permits = self.config.half_open_calls
