"""
Retry with bounded exponential backoff for model requests.

Only transient RequestErrors are retried. Everything else (authentication,
malformed requests, parse and config errors) propagates on the first failure.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from ..errors import RequestError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for model requests."""

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, RequestError) and error.transient


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or retries are exhausted."""
    policy = policy or RetryPolicy()
    attempt = 0

    while True:
        try:
            return await operation()
        except RequestError as e:
            if not is_retryable(e) or attempt >= policy.max_retries:
                raise
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.warning(
                "Transient request failure, retrying",
                attempt=attempt,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
