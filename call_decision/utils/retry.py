"""
Retry logic and exponential backoff for oracle calls.

Oracle requests are idempotent (same transcript, same prompt), so transient
failures are safe to resend. Parsing failures and bad input are not retried.
"""

import logging
import random
import time
from typing import Optional

from ..core.exceptions import OracleResponseError


TRANSIENT_ERROR_MARKERS = (
    "rate limit",
    "quota",
    "429",
    "500",
    "503",
    "overloaded",
    "resource exhausted",
    "timeout",
    "timed out",
    "deadline",
)


def calculate_backoff(
    retry_count: int, base_delay_seconds: float = 5, max_delay_seconds: float = 30, jitter: bool = False
) -> float:
    """
    Calculate wait time using exponential backoff.

    Strategy: delay = base_delay * (2 ^ retry_count)

    Examples with base_delay=5:
        - retry 0: 5 seconds
        - retry 1: 10 seconds
        - retry 2: 20 seconds
        - retry 3: 30 seconds (capped)

    Args:
        retry_count: Number of retries so far (0-indexed)
        base_delay_seconds: Base delay in seconds (default: 5)
        max_delay_seconds: Maximum delay in seconds (default: 30)
        jitter: Add random jitter (+/-25%) to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = min(base_delay_seconds * (2 ** retry_count), max_delay_seconds)

    if jitter:
        jitter_amount = delay * 0.25
        delay = max(base_delay_seconds, delay + random.uniform(-jitter_amount, jitter_amount))

    return delay


def is_transient_error(error: Exception) -> bool:
    """Check whether an error message looks like a transient backend failure."""
    error_str = str(error).lower()
    return any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS)


def should_retry(retry_count: int, max_retries: int = 3, error: Optional[Exception] = None) -> bool:
    """
    Determine if an oracle request should be retried.

    Args:
        retry_count: Current retry count
        max_retries: Maximum number of retries allowed (default: 3)
        error: The exception that occurred (optional)

    Returns:
        True if the request should be retried, False otherwise
    """
    if retry_count >= max_retries:
        return False

    if error is not None:
        non_retryable_errors = (
            ValueError,  # Invalid input data
            KeyError,  # Missing required data
            TypeError,  # Type mismatch
            OracleResponseError,  # Same prompt gives same unparseable reply
        )
        if isinstance(error, non_retryable_errors):
            return False
        return is_transient_error(error)

    return True


class RetryContext:
    """
    Iterator-based retry helper with automatic backoff.

    Example:
        retry_ctx = RetryContext("gemini", max_retries=3)

        for attempt in retry_ctx:
            try:
                result = do_risky_operation()
                retry_ctx.success()
                break
            except Exception as e:
                retry_ctx.failure(e)
                if not retry_ctx.should_continue():
                    raise
                retry_ctx.wait()
    """

    def __init__(
        self,
        operation: str,
        max_retries: int = 3,
        base_delay_seconds: float = 5,
        max_delay_seconds: float = 30,
        logger=None,
        sleep=time.sleep,
    ):
        """
        Initialize retry context.

        Args:
            operation: Name of the operation (for logging)
            max_retries: Retries allowed after the first attempt
            base_delay_seconds: Base backoff delay
            max_delay_seconds: Backoff cap
            logger: Logger instance (creates new if None)
            sleep: Sleep function (injectable for tests)
        """
        self.operation = operation
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

        self.attempt = 0
        self.last_error: Optional[Exception] = None
        self.succeeded = False

    def __iter__(self):
        return self

    def __next__(self):
        # First attempt plus max_retries retries
        if self.succeeded or self.attempt > self.max_retries:
            raise StopIteration

        self.attempt += 1
        self.logger.debug(f"{self.operation}: attempt {self.attempt}/{self.max_retries + 1}")
        return self.attempt

    def success(self):
        """Mark operation as successful."""
        self.succeeded = True
        if self.attempt > 1:
            self.logger.info(f"{self.operation} succeeded on attempt {self.attempt}")

    def failure(self, error: Exception):
        """
        Mark operation as failed.

        Args:
            error: The exception that occurred
        """
        self.last_error = error
        self.logger.warning(f"{self.operation}: attempt {self.attempt} failed: {error}")

    def should_continue(self) -> bool:
        """Check if retry should continue."""
        if self.succeeded:
            return False
        return should_retry(self.attempt - 1, self.max_retries, self.last_error)

    def wait(self):
        """Sleep for the backoff delay of the current attempt."""
        delay = calculate_backoff(self.attempt - 1, self.base_delay_seconds, self.max_delay_seconds)
        self.logger.warning(f"{self.operation}: waiting {delay:.0f}s before retry {self.attempt}/{self.max_retries}")
        self._sleep(delay)
