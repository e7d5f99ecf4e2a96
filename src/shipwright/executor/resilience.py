"""Retry policy for provider calls.

Exponential backoff with jitter for :class:`TransientProviderError` (and
connection-level failures). Everything else propagates on the first attempt.

Retry timeline (default RetryConfig, jitter off):
    - Attempt 1: immediate
    - Attempt 2: 0.5s delay
    - Attempt 3: 1s delay
    - Attempt 4: 2s delay
    - Attempt 5: 4s delay

Example:
    >>> from shipwright.schemas.config import RetryConfig
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3, jitter=False))
    >>> policy.calculate_delay(1)
    1.0
"""

from __future__ import annotations

import functools
import random
import time
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import structlog

from shipwright.errors import TransientProviderError
from shipwright.schemas.config import RetryConfig

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Args:
        config: Retry configuration. Uses defaults if None.
        retryable_exceptions: Exception types to retry on. Defaults to
            (TransientProviderError, ConnectionError, TimeoutError).
        sleep: Sleep function (tests pass a no-op or a fake clock).
        on_retry: Called with the operation name before each retry.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable_exceptions: tuple[type[Exception], ...] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._retryable_exceptions = retryable_exceptions or (
            TransientProviderError,
            ConnectionError,
            TimeoutError,
        )
        self._sleep = sleep
        self._on_retry = on_retry

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds before the retry following ``attempt`` (0-indexed).

        delay = initial * multiplier ** attempt, capped at max_delay, with
        +/-25% jitter when enabled.
        """
        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )
        if self._config.jitter:
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)
        return max(base_delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        return isinstance(exception, self._retryable_exceptions)

    def call(self, func: Callable[[], T], operation: str = "call") -> T:
        """Invoke ``func`` with retries.

        Args:
            func: Zero-argument callable.
            operation: Name used in logs and metrics.

        Returns:
            The first successful result.

        Raises:
            Exception: The last exception once attempts are exhausted, or
                the first non-retryable exception.
        """
        max_attempts = self._config.max_attempts
        for attempt in range(max_attempts):
            try:
                return func()
            except Exception as e:
                if not self.should_retry(e) or attempt == max_attempts - 1:
                    if self.should_retry(e):
                        logger.warning(
                            "retry_exhausted",
                            operation=operation,
                            attempts=max_attempts,
                            error=str(e),
                        )
                    raise
                delay = self.calculate_delay(attempt)
                logger.debug(
                    "retry_attempt",
                    operation=operation,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                if self._on_retry is not None:
                    self._on_retry(operation)
                self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator form of :meth:`call`."""

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return self.call(lambda: func(*args, **kwargs), operation=func.__name__)

        return wrapper


__all__ = ["RetryPolicy"]
