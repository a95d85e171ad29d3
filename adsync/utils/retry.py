"""
Retry utilities with exponential backoff for transport-level failures.

Only connection problems are retried here. HTTP statuses returned by the
reports API have their own handling in the connector (queued vs rejected).
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, Type

import aiohttp

from adsync.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


# Network errors worth another attempt
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
    ConnectionError,
)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS
) -> bool:
    """
    Check if a transport error is retryable.

    Args:
        error: The exception to check
        retryable_exceptions: Tuple of exception types to retry

    Returns:
        True if error should be retried
    """
    if isinstance(error, retryable_exceptions):
        return True

    error_str = str(error).lower()
    if "timeout" in error_str or "timed out" in error_str:
        return True
    if "connection" in error_str and ("refused" in error_str or "reset" in error_str):
        return True

    return False


class RetryContext:
    """
    Context manager for retry operations with stats tracking.

    Usage:
        async with RetryContext(max_attempts=3) as ctx:
            result = await ctx.execute(send_request, body)
            log.debug(ctx.stats.to_dict())
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retryable_exceptions = retryable_exceptions
        self.sleep = sleep
        self.stats = RetryStats()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    async def execute(self, func: Callable[..., Awaitable], *args, **kwargs):
        """Execute a coroutine function with retry logic."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
                self.stats.record_attempt()
                self.stats.success = True
                return result

            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable_error(e, self.retryable_exceptions):
                    self.stats.record_attempt(error=e)
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                    exponential_base=self.exponential_base
                )

                self.stats.record_attempt(error=e, delay=delay)

                log.warning(
                    f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s..."
                )

                await self.sleep(delay)
