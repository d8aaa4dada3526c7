"""
Retrying persistence primitive.

Every persistence call in the attempt engine goes through
``run_with_retry`` so the retry/verify policy is defined once:

- retry only TransientPersistenceError (network, lock, stale CAS)
- exponential backoff, capped by both attempt count and total time
- roll the session back before each retry so the operation restarts
  from the last persisted state, never from a half-applied one
- PersistenceUnavailableError once the budget is spent
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from app.core.config import settings
from app.core.exceptions import PersistenceUnavailableError, TransientPersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    max_seconds: float
    base_delay: float
    max_delay: float = 1.0

    @classmethod
    def standard(cls) -> "RetryPolicy":
        """Autosave and grading writes."""
        return cls(
            max_attempts=settings.PERSIST_MAX_ATTEMPTS,
            max_seconds=settings.PERSIST_RETRY_MAX_SECONDS,
            base_delay=settings.PERSIST_RETRY_BASE_DELAY,
        )

    @classmethod
    def critical(cls) -> "RetryPolicy":
        """Final submit and expiry writes."""
        return cls(
            max_attempts=settings.SUBMIT_MAX_ATTEMPTS,
            max_seconds=settings.SUBMIT_RETRY_MAX_SECONDS,
            base_delay=settings.PERSIST_RETRY_BASE_DELAY,
        )


def _log_retry(label: str):
    def before_sleep(retry_state):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed on attempt %d, retrying: %s",
            label, retry_state.attempt_number, exc,
        )
    return before_sleep


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    label: str,
    db: Optional[AsyncSession] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Non-transient exceptions propagate immediately.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts) | stop_after_delay(policy.max_seconds),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception_type(TransientPersistenceError),
        before_sleep=_log_retry(label),
    )
    try:
        async for attempt in retrying:
            with attempt:
                try:
                    return await operation()
                except TransientPersistenceError:
                    if db is not None:
                        await db.rollback()
                    raise
    except RetryError as e:
        last = e.last_attempt.exception()
        raise PersistenceUnavailableError(label, last) from last
