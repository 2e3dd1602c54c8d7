"""
Bounded retry with exponential backoff for Grant Store calls.

Only transient failures (NetworkError) are retried. AuthExpired and
every other AuthorizationError propagate on the first attempt.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from django.conf import settings

from apps.core.exceptions import NetworkError

logger = logging.getLogger(__name__)


class RetryStrategy:
    """
    Retry logic with exponential backoff and jitter.
    """

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.25,
                 max_delay: float = 2.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        """
        Initialize retry strategy.

        Args:
            max_attempts: Total number of attempts, including the first call
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Base for exponential backoff
            jitter: Whether to add random jitter to delays
            sleep: Awaitable sleep function (tests inject a no-op)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, **overrides) -> 'RetryStrategy':
        """Build a strategy from the AUTHZ_RETRY_* settings."""
        options = {
            'max_attempts': getattr(settings, 'AUTHZ_RETRY_MAX_ATTEMPTS', 3),
            'base_delay': getattr(settings, 'AUTHZ_RETRY_BASE_DELAY', 0.25),
            'max_delay': getattr(settings, 'AUTHZ_RETRY_MAX_DELAY', 2.0),
        }
        options.update(overrides)
        return cls(**options)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the retry that follows ``attempt`` (0-based)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # ±25% jitter
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """Determine if the call should be attempted again after ``attempt`` failed."""
        if attempt + 1 >= self.max_attempts:
            return False
        return isinstance(error, NetworkError)

    async def run(self, operation: Callable[[], Awaitable[Any]], description: str = 'operation') -> Any:
        """
        Await ``operation`` until it succeeds or retries are exhausted.

        Args:
            operation: Zero-argument callable returning an awaitable
            description: Name used in log messages

        Returns:
            Result of the first successful attempt

        Raises:
            NetworkError: When every attempt failed transiently
            AuthorizationError: Non-retryable errors, on first occurrence
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except NetworkError as e:
                if not self.should_retry(attempt, e):
                    logger.warning(
                        f"{description} failed after {attempt + 1} attempt(s): {e.message}"
                    )
                    raise
                delay = self.calculate_delay(attempt)
                logger.info(
                    f"Retrying {description} in {delay:.2f}s",
                    extra={'attempt': attempt + 1, 'error': e.message}
                )
                await self._sleep(delay)
                attempt += 1
