"""
Retry policy helpers for query fetches.
"""

import random
from typing import Any, Callable, Union


RetrySetting = Union[bool, int, Callable[[int, BaseException], bool]]
RetryDelaySetting = Union[float, Callable[[int], float]]


class RetryConfig:
    """Configuration for retry backoff."""

    def __init__(self,
                 base_delay: float = 1.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay before the given retry attempt (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    # Add jitter if enabled
    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        jitter = random.uniform(-jitter_amount, jitter_amount)
        delay += jitter

    return max(0.0, delay)


def make_retry_delay(config: RetryConfig) -> Callable[[int], float]:
    """Build a ``retry_delay`` callable from a backoff configuration.

    The callable receives the current failure count, so the first retry waits
    ``base_delay * exponential_base`` with the exponential strategy.
    """

    def retry_delay(failure_count: int) -> float:
        return calculate_delay(failure_count + 1, config)

    return retry_delay


default_retry_delay = make_retry_delay(RetryConfig())


def should_retry(retry: RetrySetting, failure_count: int, error: BaseException) -> bool:
    """Decide whether a failed fetch attempt should be retried.

    ``True`` retries forever, a callable is asked with the failure count and
    error, and an integer allows that many retries after the first attempt.
    """
    if retry is True:
        return True
    if callable(retry):
        return bool(retry(failure_count, error))
    if retry is False or retry is None:
        return False
    return failure_count <= retry


def resolve_retry_delay(retry_delay: Any, failure_count: int) -> float:
    """Resolve a constant or functional retry delay to seconds."""
    if callable(retry_delay):
        delay = retry_delay(failure_count)
    else:
        delay = retry_delay
    return max(0.0, float(delay or 0))
