"""
Retry utilities with exponential backoff for provider API calls.
"""
import asyncio
import random
from typing import Optional, Tuple, Type


# Default retryable exceptions (network/API errors)
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,  # Includes network errors
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    # Exponential backoff: base_delay * (exponential_base ^ (attempt - 1))
    delay = base_delay * (exponential_base ** (attempt - 1))

    # Cap at max_delay
    delay = min(delay, max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        jitter_amount = delay * random.uniform(0, 0.25)
        delay += jitter_amount

    return delay


def is_retryable_error(
    error: Exception,
    status_code: Optional[int] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> bool:
    """
    Check if an error is retryable.

    Args:
        error: The exception to check
        status_code: HTTP status extracted by the caller, when known
        retryable_exceptions: Tuple of exception types to retry
        retryable_status_codes: HTTP status codes to retry

    Returns:
        True if error should be retried
    """
    if status_code is not None:
        return status_code in retryable_status_codes

    # Check exception type
    if isinstance(error, retryable_exceptions):
        return True

    error_str = str(error).lower()

    # Check for rate limiting
    if "rate limit" in error_str or "too many requests" in error_str or "quota" in error_str:
        return True

    # Check for timeout-related errors
    if "timeout" in error_str or "timed out" in error_str:
        return True

    # Check for connection-related errors
    if "connection" in error_str and ("refused" in error_str or "reset" in error_str or "failed" in error_str):
        return True

    return False
