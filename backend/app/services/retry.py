"""Retry-with-backoff for provider calls.

Every AI request in the pipeline goes through ``retry_async``; provider SDKs
are constructed with their own retries disabled so this is the only place
that decides whether to try again.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from app.services.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 503})


def is_retryable_error(exc: BaseException) -> bool:
    """429/503 and transport failures (no status) are retried; nothing else."""
    if isinstance(exc, ProviderError):
        return exc.status_code is None or exc.status_code in RETRYABLE_STATUS_CODES
    return False


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"{label or 'AI call'} attempt {state.attempt_number} failed: {exc}. "
            f"Retrying in {delay:.1f}s"
        )

    return before_sleep


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    label: str = "",
) -> T:
    """Await ``func()`` up to ``max_attempts`` times.

    The pause before attempt ``k + 1`` is ``base_delay * k``. Errors that
    ``is_retryable`` rejects propagate immediately; after the final attempt
    the last error propagates.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry(label),
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )

    # AsyncRetrying awaits only coroutine functions, not lambdas
    async def attempt() -> T:
        return await func()

    return await retrying(attempt)
