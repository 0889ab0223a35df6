"""Exponential backoff for retryable embedding provider failures.

Retry is owned by the caller: the job engine and the backfill pipeline each
wrap provider calls with their own ``RetryConfig``. Only
``RetryableProviderError`` is retried; every other exception propagates on
the first occurrence.

Example usage:
    >>> from assetrecon.config import RetryConfig
    >>> backoff = ExponentialBackoff(RetryConfig(max_retries=3))
    >>> vector = await backoff.retry_call(lambda: client.embed("pump"), "embed")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from assetrecon.config import RetryConfig
from assetrecon.errors import FatalProviderError, RetryableProviderError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """Capped exponential backoff without jitter.

    Args:
        config: Retry configuration
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def max_retries(self) -> int:
        """Retries allowed after the first attempt."""
        return self._config.max_retries

    def next_delay(self, attempt: int) -> float:
        """Calculate the delay before a retry.

        Formula: min(base_delay * 2^(attempt - 1), max_delay)

        Args:
            attempt: Retry number (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = self._config.base_delay_seconds * (2 ** max(attempt - 1, 0))
        return min(delay, self._config.max_delay_seconds)

    async def wait(self, attempt: int) -> float:
        """Sleep for the delay of the given retry.

        Args:
            attempt: Retry number (1-indexed)

        Returns:
            Delay waited in seconds
        """
        delay = self.next_delay(attempt)
        logger.info("backoff_waiting", attempt=attempt, delay=delay)
        await asyncio.sleep(delay)
        return delay

    async def retry_call(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "provider_call",
    ) -> T:
        """Run an async operation, retrying retryable provider failures.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
            operation_name: Name used in log events

        Returns:
            The operation's result

        Raises:
            FatalProviderError: If the operation failed fatally, or kept
                failing with retryable errors after max_retries retries.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except RetryableProviderError as e:
                if attempt >= self._config.max_retries:
                    logger.error(
                        "provider_retries_exhausted",
                        operation=operation_name,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    raise FatalProviderError(
                        f"{operation_name} failed after {attempt + 1} attempts: {e}",
                        status_code=e.status_code,
                    ) from e

                attempt += 1
                logger.warning(
                    "provider_call_retrying",
                    operation=operation_name,
                    attempt=attempt,
                    max_retries=self._config.max_retries,
                    status_code=e.status_code,
                    error=str(e),
                )
                await self.wait(attempt)
