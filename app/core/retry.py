"""
Retry logic with exponential backoff for MediaRelay.

This module provides retry mechanisms for failed operations with
configurable backoff strategies and error handling.
"""

import asyncio
import logging
import random
from typing import Callable, Any, Optional, Type, List

from app.core.config import settings
from app.core.exceptions import MediaRelayException


logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts, the first one included
            base_delay: Base delay in seconds before first retry
            max_delay: Maximum delay between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delays
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_settings(cls, max_attempts: Optional[int] = None) -> "RetryConfig":
        """Build a retry configuration from application settings."""
        return cls(
            max_attempts=max_attempts or settings.max_chunk_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter
        )

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given attempt number.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        # Exponential backoff: base_delay * (exponential_base ^ attempt)
        delay = self.base_delay * (self.exponential_base ** attempt)

        # Cap at max_delay
        delay = min(delay, self.max_delay)

        # Add jitter to avoid thundering herd
        if self.jitter:
            jitter_range = delay * 0.1  # 10% jitter
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


class RetryManager:
    """
    Manages retry logic with exponential backoff.

    Used for idempotent calls around the transfer (source probing,
    token refresh, thumbnail upload). Session initiation is never
    passed through here.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        """
        Initialize retry manager.

        Args:
            config: Retry configuration, uses defaults if None
        """
        self.config = config or RetryConfig()

    async def retry_async(
        self,
        func: Callable,
        *args,
        retryable_exceptions: Optional[List[Type[Exception]]] = None,
        config: Optional[RetryConfig] = None,
        **kwargs
    ) -> Any:
        """
        Retry an async function with exponential backoff.

        Args:
            func: Async function to retry
            *args: Positional arguments for the function
            retryable_exceptions: Non-MediaRelay exception types that should trigger retry
            config: Override retry configuration
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            Last exception if all retries fail
        """
        retry_config = config or self.config
        retryable_exceptions = retryable_exceptions or [ConnectionError, TimeoutError]

        for attempt in range(retry_config.max_attempts):
            try:
                result = await func(*args, **kwargs)

                if attempt > 0:
                    logger.info(
                        f"Function {func.__name__} succeeded on attempt {attempt + 1}"
                    )

                return result

            except Exception as e:
                # MediaRelay exceptions carry their own retryable flag
                if isinstance(e, MediaRelayException):
                    should_retry = e.retryable
                else:
                    should_retry = any(
                        isinstance(e, exc_type) for exc_type in retryable_exceptions
                    )

                if attempt == retry_config.max_attempts - 1 or not should_retry:
                    logger.error(
                        f"Function {func.__name__} failed after {attempt + 1} attempts: {e}"
                    )
                    raise

                delay = retry_config.calculate_delay(attempt)

                logger.warning(
                    f"Function {func.__name__} failed on attempt {attempt + 1}, "
                    f"retrying in {delay:.2f}s: {e}"
                )

                await asyncio.sleep(delay)


# Global retry manager instance
retry_manager = RetryManager()
