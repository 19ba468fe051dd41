import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from typing import TypeVar

import httpx
from tenacity import AsyncRetrying
from tenacity import RetryCallState
from tenacity import RetryError
from tenacity import retry_if_exception
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from docgen.core.config import RetryPolicy
from docgen.core.exceptions import BackendError
from docgen.core.exceptions import CircuitOpenError
from docgen.core.exceptions import ProviderCallError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Only network-class and overload failures are worth another attempt."""
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, BackendError):
        return exc.retryable
    return isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError))


def backoff_delays(policy: RetryPolicy) -> list[float]:
    """Seconds slept between attempts when every attempt fails."""
    delays = []
    for attempt in range(1, policy.max_retries):
        delay_ms = policy.base_delay_ms * policy.backoff_multiplier ** (attempt - 1)
        delays.append(min(delay_ms, policy.max_delay_ms) / 1000)
    return delays


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Attempt %d failed (%s); retrying in %.2fs",
        retry_state.attempt_number,
        exc,
        delay,
    )


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    backend_id: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` under ``policy``.

    The delay before attempt ``n + 1`` is ``base_delay_ms * backoff_multiplier ** (n - 1)``.
    Non-transient errors (including an open circuit) propagate immediately; running
    out of attempts raises ``ProviderCallError`` carrying the attempt count and last cause.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries),
        wait=wait_exponential(
            multiplier=policy.base_delay_ms / 1000,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay_ms / 1000,
        ),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_before_sleep,
        sleep=sleep,
    )
    try:
        return await retrying(fn)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(
            "Giving up on %s after %d attempt(s): %s",
            backend_id,
            e.last_attempt.attempt_number,
            last_error,
        )
        raise ProviderCallError(backend_id, e.last_attempt.attempt_number, last_error) from last_error
