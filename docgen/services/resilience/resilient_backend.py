from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

from docgen.core.config import RetryPolicy
from docgen.core.config import Settings
from docgen.core.config import settings
from docgen.models.generation_models import BackendResponse
from docgen.models.generation_models import CapabilityDescriptor
from docgen.models.generation_models import ChatMessage
from docgen.services.llm import ChatBackend
from docgen.services.resilience.circuit_breaker import CircuitBreaker
from docgen.services.resilience.rate_limiter import RateLimiter
from docgen.services.resilience.retry import run_with_retry

logger = logging.getLogger(__name__)


class ResilientBackend:
    """A backend wrapped in its own rate limiter, circuit breaker and retry policy.

    Each attempt is admitted by the rate limiter, then checked by the circuit
    breaker, then sent; the retry policy wraps the whole attempt.
    """

    def __init__(
        self,
        backend: ChatBackend,
        limiter: RateLimiter,
        breaker: CircuitBreaker,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.limiter = limiter
        self.breaker = breaker
        self.policy = policy
        self._sleep = sleep

    @classmethod
    def from_settings(cls, backend: ChatBackend, app_settings: Settings = settings) -> ResilientBackend:
        return cls(
            backend,
            RateLimiter.from_config(backend.backend_id, app_settings.rate_limit_config()),
            CircuitBreaker.from_config(backend.backend_id, app_settings.circuit_breaker_config()),
            app_settings.retry_policy(),
        )

    @property
    def backend_id(self) -> str:
        return self.backend.backend_id

    @property
    def capability(self) -> CapabilityDescriptor:
        return self.backend.capability

    async def complete(
        self,
        messages: list[ChatMessage],
        max_response_tokens: int,
        policy: RetryPolicy | None = None,
    ) -> BackendResponse:
        async def attempt() -> BackendResponse:
            waited = await self.limiter.acquire()
            if waited:
                logger.debug("Admitted to %s after %.2fs", self.backend_id, waited)
            return await self.breaker.call(lambda: self.backend.complete(messages, max_response_tokens))

        return await run_with_retry(attempt, policy or self.policy, self.backend_id, sleep=self._sleep)

    def status(self) -> dict[str, Any]:
        return {
            "backend_id": self.backend_id,
            "available": self.capability.is_available,
            "max_context_tokens": self.capability.max_context_tokens,
            "circuit": self.breaker.status(),
            "rate_limit": self.limiter.snapshot(),
        }
