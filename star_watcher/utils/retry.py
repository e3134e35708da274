"""Retry utilities with exponential backoff and rate-limit awareness."""

import random
import threading
from datetime import datetime
from typing import Any, Callable, TypeVar

import structlog

from star_watcher.errors import (
    ErrorKind,
    MonitorError,
    OperationCancelledError,
    RateLimitError,
    RetryExhaustedError,
)
from star_watcher.models.config import RetryConfig
from star_watcher.utils.clock import utc_now

log = structlog.stdlib.get_logger()

T = TypeVar("T")


class RetryExecutor:
    """Runs an operation, retrying rate-limit and transient network failures.

    Only ``MonitorError`` subclasses are classified; any other exception
    propagates on the first attempt. Waits are performed on a
    ``threading.Event`` so a caller can cancel a sleeping retry.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Any = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._log = logger or log.bind(component="retry_executor")

    def is_retryable(self, error: MonitorError) -> bool:
        if error.kind == ErrorKind.RATE_LIMIT:
            return self.config.retry_on_rate_limit
        return error.kind == ErrorKind.NETWORK

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for a zero-based attempt, capped and jittered."""
        base = self.config.initial_delay * (self.config.backoff_multiplier**attempt)
        delay = min(base, self.config.max_delay)
        ratio = self.config.jitter_ratio
        if ratio:
            delay *= self._rng.uniform(1.0 - ratio, 1.0 + ratio)
        return max(0.0, delay)

    def compute_delay(self, attempt: int, error: MonitorError) -> float:
        """Seconds to wait before the next attempt.

        A rate-limit error with a server reset time waits until the reset plus
        the configured buffer; everything else uses exponential backoff.
        """
        if isinstance(error, RateLimitError):
            wait = error.retry_after(now=self._clock())
            if wait is not None:
                return wait + self.config.rate_limit_buffer
        return self.backoff_delay(attempt)

    def execute(
        self,
        operation: Callable[[], T],
        cancel_event: threading.Event | None = None,
        description: str = "operation",
    ) -> T:
        """Call ``operation`` until it succeeds or retries are exhausted.

        Raises:
            OperationCancelledError: If ``cancel_event`` is set before or during a wait
            RetryExhaustedError: After ``max_retries + 1`` failed attempts
            MonitorError: The first non-retryable error, unchanged
        """
        cancel_event = cancel_event or threading.Event()
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            if cancel_event.is_set():
                raise OperationCancelledError(f"{description} cancelled")
            try:
                return operation()
            except MonitorError as e:
                if not self.is_retryable(e):
                    raise

                if attempt == attempts - 1:
                    self._log.error(
                        "max_retries_reached",
                        operation=description,
                        attempts=attempts,
                        error_kind=e.kind.value,
                        error=str(e),
                    )
                    raise RetryExhaustedError(attempts, e) from e

                delay = self.compute_delay(attempt, e)
                self._log.warning(
                    "retrying_after_error",
                    operation=description,
                    attempt=attempt + 1,
                    max_retries=self.config.max_retries,
                    delay_seconds=round(delay, 3),
                    error_kind=e.kind.value,
                    error=str(e),
                )

                if cancel_event.wait(delay):
                    raise OperationCancelledError(f"{description} cancelled during retry wait") from e

        # range() is never empty since max_retries >= 0
        raise AssertionError("unreachable")
