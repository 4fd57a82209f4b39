"""Retry with exponential backoff for flaky remote reads."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("utils.retry")


class RetryError(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, message: str, attempts: int, last_exception: BaseException) -> None:
        """Initialize the RetryError.

        Args:
            message: Error message.
            attempts: Number of attempts made.
            last_exception: The exception raised by the final attempt.
        """
        super().__init__(message)
        self.attempts = attempts
        self.__cause__ = last_exception


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    """Retries after the initial attempt."""

    base_delay: float = 0.5
    """Delay in seconds before the first retry."""

    max_delay: float = 30.0
    """Upper bound for a single delay."""

    exponential_base: float = 2.0

    jitter: bool = True
    """Spread delays by up to 25% either way."""

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay before a retry.

        Args:
            attempt: The retry attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)

        if self.jitter:
            spread = delay * 0.25
            delay = max(0.0, delay + random.uniform(-spread, spread))

        return delay


def retry_with_backoff[T](
    func: Callable[[], T],
    config: RetryConfig | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call `func` until it succeeds or the retry budget runs out.

    Args:
        func: The function to execute.
        config: Retry configuration. Uses defaults if not provided.
        retry_on: Exception types that trigger a retry; anything else propagates.
        sleep: Sleep function, injectable for tests.

    Returns:
        The return value of the function.

    Raises:
        RetryError: If every attempt failed with a retryable exception.
    """
    config = config or RetryConfig()
    last_exception: BaseException | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return func()
        except retry_on as e:
            last_exception = e
            if attempt == config.max_retries:
                break
            delay = config.calculate_delay(attempt)
            logger.debug(
                "Attempt failed, retrying",
                extra={"attempt": attempt + 1, "delay": round(delay, 3), "error": str(e)},
            )
            sleep(delay)

    assert last_exception is not None
    attempts = config.max_retries + 1
    raise RetryError(
        f"All {attempts} attempts failed",
        attempts=attempts,
        last_exception=last_exception,
    )
