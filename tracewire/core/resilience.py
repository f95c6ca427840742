"""Retry with exponential backoff for export delivery."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behaviour."""

    # Total attempts, including the first one
    max_attempts: int = 3
    initial_delay_seconds: float = 0.1
    max_delay_seconds: float = 5.0
    exponential_base: float = 2.0
    # Spread delays by +/-25% so retrying exporters do not synchronise
    jitter: bool = True


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: The attempt that just failed (1-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay_seconds * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay_seconds)
    if config.jitter:
        delay *= random.uniform(0.75, 1.25)
    return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    is_retryable: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """
    Run an async operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to run
        config: Retry configuration (uses defaults if not provided)
        operation_name: Name used in log messages
        retryable_exceptions: Exception types that trigger a retry
        is_retryable: Optional predicate to refuse retrying a specific error
        on_retry: Called with (attempt, error) before each retry

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted, or any non-retryable error
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retryable_exceptions as e:
            if is_retryable is not None and not is_retryable(e):
                logger.debug(f"{operation_name} failed with a non-retryable error: {e}")
                raise
            if attempt >= config.max_attempts:
                logger.debug(f"{operation_name} failed after {attempt} attempts: {e}")
                raise

            delay = calculate_backoff_delay(attempt, config)
            logger.debug(
                f"{operation_name} attempt {attempt}/{config.max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await asyncio.sleep(delay)
