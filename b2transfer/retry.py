"""
Error classification and retry policy for b2transfer.

Every loop that retries a remote call asks ``classify`` what to do with
the error it got:

- RETRIABLE: back off and repeat the same request
- SESSION_EXPIRED: reauthorize the account, then repeat the request
- FATAL: give up on the operation
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TypeVar

from .exceptions import ApiError, NetworkError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# B2 error codes that mean the account token is no longer usable
SESSION_EXPIRED_CODES = frozenset({"expired_auth_token", "bad_auth_token"})

RETRIABLE_CODES = frozenset({"service_unavailable", "too_many_requests", "request_timeout"})

RETRIABLE_STATUSES = frozenset({408, 429})


class ErrorClass(Enum):
    """How a failed remote call should be handled."""
    RETRIABLE = "retriable"
    SESSION_EXPIRED = "session_expired"
    FATAL = "fatal"


def classify(error: BaseException) -> ErrorClass:
    """
    Classify an error raised by the remote API client.

    Args:
        error: Exception raised by an API call

    Returns:
        The ErrorClass that decides the retry behavior
    """
    if isinstance(error, NetworkError):
        return ErrorClass.RETRIABLE

    if not isinstance(error, ApiError):
        # local I/O errors and programming errors are never retried
        return ErrorClass.FATAL

    if error.status == 401 and error.code in SESSION_EXPIRED_CODES:
        return ErrorClass.SESSION_EXPIRED

    if error.code in RETRIABLE_CODES:
        return ErrorClass.RETRIABLE

    if error.status is not None and (error.status in RETRIABLE_STATUSES or 500 <= error.status <= 599):
        return ErrorClass.RETRIABLE

    return ErrorClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff with full jitter.

    Attributes:
        max_attempts: Total attempts allowed for one operation (first try included)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for a single delay, in seconds
        jitter: Randomize each delay between 0 and its computed value
        max_reauthorizations: Reauthorizations allowed while retrying one operation
        sleep: Function used to wait; tests replace it with a no-op
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: bool = True
    max_reauthorizations: int = 3
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay = random.uniform(0, delay)
        return delay

    def backoff(self, attempt: int) -> None:
        """Sleep before the next attempt."""
        self.sleep(self.delay(attempt))


def retry_call(func: Callable[[], T], policy: RetryPolicy, describe: str = "request") -> T:
    """
    Call ``func`` until it succeeds, fails fatally or runs out of attempts.

    Only RETRIABLE errors are retried; anything else propagates unchanged,
    including SESSION_EXPIRED errors, which the caller must handle.

    Raises:
        RetryExhaustedError: If every attempt failed with a retriable error
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except Exception as e:
            if classify(e) is not ErrorClass.RETRIABLE:
                raise
            if attempt == policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", describe, attempt, e)
                raise RetryExhaustedError(
                    f"{describe} failed after {attempt} attempts: {e}",
                    attempts=attempt,
                    last_error=e,
                ) from e
            logger.warning("%s failed (attempt %d/%d): %s; retrying", describe, attempt, policy.max_attempts, e)
            policy.backoff(attempt)

    raise RetryExhaustedError(f"{describe} was never attempted", attempts=0)
