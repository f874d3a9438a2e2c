"""Caller-supplied retry policy wrapping a whole orchestration run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Bounded attempts with fixed or exponential backoff.

    The exponential delay before retry *n* is ``base_delay * 2 ** (n - 1)``
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff: str = "exponential"
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    on_retry: Optional[Callable[[BaseException, int], Any]] = None

    def wait_strategy(self):
        if self.backoff == "fixed":
            return wait_fixed(self.base_delay)
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay)


async def with_retry(fn: Callable[[], Awaitable[T]], policy: Optional[RetryPolicy] = None) -> T:
    """Run *fn* under *policy*; the last exception is re-raised once attempts run out."""
    policy = policy or RetryPolicy()

    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome is not None else None
        logger.warning("Attempt %d failed: %s; retrying", state.attempt_number, error)
        if policy.on_retry is not None and error is not None:
            policy.on_retry(error, state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(policy.max_attempts, 1)),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=before_sleep,
        reraise=True,
    )
    return await retrying(fn)
