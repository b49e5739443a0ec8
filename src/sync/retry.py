"""
Bounded retry policy for store reads.

Reads are retried a fixed number of times with a fixed wait; writes are
never retried (a retried insert could land twice).
"""

from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.config import get_settings
from src.services.storage import StorageError


def fetch_retry_policy(
    max_attempts: Optional[int] = None,
    delay_seconds: Optional[float] = None,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> AsyncRetrying:
    """
    Build the retry controller used by every fetch.

    Args:
        max_attempts: Total attempts including the first (default from settings)
        delay_seconds: Fixed wait between attempts (default from settings)
        on_retry: Awaited with (attempt_number, error) before each wait

    The last StorageError is re-raised once attempts are exhausted.
    """
    sync = get_settings().sync
    max_attempts = max_attempts if max_attempts is not None else sync.fetch_max_attempts
    delay_seconds = (
        delay_seconds if delay_seconds is not None else sync.fetch_retry_delay_seconds
    )

    async def before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is not None:
            await on_retry(retry_state.attempt_number, retry_state.outcome.exception())

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception_type(StorageError),
        before_sleep=before_sleep,
        reraise=True,
    )
