"""
Bounded retry with exponential backoff for provider calls.

A RetryPolicy is a plain value; retry_async applies it to any coroutine
factory. Sleeps go through asyncio.sleep so an outer deadline
(asyncio.wait_for) cancels a pending backoff immediately.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from services.shared.config import Settings
from services.shared.exceptions import (
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
)
from services.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for idempotent provider calls."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (
        RateLimitedError,
        ProviderUnavailableError,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build a policy from application settings."""
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def should_retry(self, error: BaseException) -> bool:
        """Check whether an error is transient under this policy."""
        return isinstance(error, self.retry_on)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str = "provider_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Execute an async callable, retrying transient failures.

    Args:
        func: Zero-argument coroutine factory, invoked once per attempt
        policy: Retry policy to apply
        operation: Operation name used in logs and the final error
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        Result of the first successful attempt

    Raises:
        The original error if it is not retryable, or ProviderError once
        the attempt ceiling is reached.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func()
        except Exception as e:
            if not policy.should_retry(e):
                raise

            if attempt == policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise ProviderError(
                    f"{operation} failed after {policy.max_attempts} attempts: {e}",
                    status_code=getattr(e, "status_code", None),
                    details={"last_error_type": type(e).__name__},
                ) from e

            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                error=str(e),
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise ProviderError(f"{operation} failed without attempts")
