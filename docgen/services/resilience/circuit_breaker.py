"""Per-backend circuit breaker (closed / open / half-open)."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable
from collections.abc import Callable
from enum import Enum
from typing import Any
from typing import TypeVar

from docgen.core.config import CircuitBreakerConfig
from docgen.core.exceptions import AuthError
from docgen.core.exceptions import BackendError
from docgen.core.exceptions import CircuitOpenError
from docgen.services.resilience.retry import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def counts_against_backend(error: Exception) -> bool:
    """Whether a failed call says something about the backend rather than the request."""
    if isinstance(error, BackendError):
        return is_transient(error) or isinstance(error, AuthError)
    return True


class CircuitBreaker:
    """Fails fast while a backend is known to be failing.

    All reads and transitions happen under one lock and never across an await,
    so concurrent callers can not both see a stale CLOSED state. In HALF_OPEN
    exactly one trial call is admitted; everyone else fails fast until it settles.
    """

    def __init__(
        self,
        backend_id: str,
        failure_threshold: int = 5,
        reset_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend_id = backend_id
        self.failure_threshold = failure_threshold
        self.reset_timeout_s = reset_timeout_s
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @classmethod
    def from_config(cls, backend_id: str, config: CircuitBreakerConfig, **kwargs) -> CircuitBreaker:
        return cls(backend_id, config.failure_threshold, config.reset_timeout_s, **kwargs)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            is_trial = self._admit()
        try:
            result = await fn()
        except Exception as e:
            with self._lock:
                self._on_failure(is_trial, e)
            raise
        except BaseException:
            # Cancellation is not a backend failure.
            with self._lock:
                if is_trial:
                    self._trial_in_flight = False
            raise
        with self._lock:
            self._on_success(is_trial)
        return result

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)

    def status(self) -> dict[str, Any]:
        with self._lock:
            retry_after = None
            if self._state is CircuitState.OPEN and self._opened_at is not None:
                retry_after = max(0.0, self.reset_timeout_s - (self._clock() - self._opened_at))
            return {
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self.failure_threshold,
                "retry_after_s": retry_after,
            }

    # --- transitions, lock held -------------------------------------------

    def _admit(self) -> bool:
        if self._state is CircuitState.OPEN:
            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed < self.reset_timeout_s:
                raise CircuitOpenError(self.backend_id, self.reset_timeout_s - elapsed)
            self._transition(CircuitState.HALF_OPEN)

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.backend_id, 0.0)
            self._trial_in_flight = True
            return True
        return False

    def _on_failure(self, is_trial: bool, error: Exception) -> None:
        if not counts_against_backend(error):
            # The backend answered; a rejected request leaves its health unchanged.
            if is_trial:
                self._trial_in_flight = False
            return
        if is_trial:
            self._trial_in_flight = False
            logger.warning("Trial call to %s failed (%s); reopening circuit", self.backend_id, error)
            self._transition(CircuitState.OPEN)
            return
        if self._state is not CircuitState.CLOSED:
            return
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            logger.warning(
                "Opening circuit for %s after %d consecutive failures (last: %s)",
                self.backend_id,
                self._consecutive_failures,
                error,
            )
            self._transition(CircuitState.OPEN)

    def _on_success(self, is_trial: bool) -> None:
        if is_trial:
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)
        elif self._state is CircuitState.CLOSED:
            self._consecutive_failures = 0

    def _transition(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state is CircuitState.CLOSED:
            self._opened_at = None
            self._consecutive_failures = 0
            self._trial_in_flight = False
        if previous is not new_state:
            logger.info("Circuit for %s: %s -> %s", self.backend_id, previous.value, new_state.value)
