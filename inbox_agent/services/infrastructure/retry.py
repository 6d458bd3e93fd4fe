"""
Retry with capped exponential backoff for external capability calls.

Errors are sorted into four kinds:
    validation - bad input or configuration, never retried
    transient  - timeouts, connection drops, 5xx, malformed model output; retried
    quota      - 429 / provider rate limits; retried, logged separately
    permanent  - auth failures and other 4xx; never retried
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

import httpx
import openai

from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 0.1
DEFAULT_MAX_DELAY_SECONDS = 2.0

_sleep = asyncio.sleep


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    QUOTA = "quota"
    PERMANENT = "permanent"


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.QUOTA})


class CapabilityError(Exception):
    """Raised when an external capability call fails."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        operation: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.operation = operation
        self.status_code = status_code
        self.recoverable = kind in RETRYABLE_KINDS


def classify_http_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.QUOTA
    if status_code >= 500:
        return ErrorKind.TRANSIENT
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    return ErrorKind.PERMANENT


def capability_error_from_openai(error: openai.OpenAIError, operation: str) -> CapabilityError:
    """Map an OpenAI SDK exception onto the error taxonomy."""
    if isinstance(error, openai.RateLimitError):
        kind = ErrorKind.QUOTA
    elif isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        kind = ErrorKind.TRANSIENT
    elif isinstance(error, openai.APIStatusError):
        kind = classify_http_status(error.status_code)
    else:
        kind = ErrorKind.TRANSIENT

    return CapabilityError(
        f"OpenAI call failed: {error}",
        kind=kind,
        operation=operation,
        status_code=getattr(error, "status_code", None),
    )


def capability_error_from_httpx(error: httpx.HTTPError, operation: str) -> CapabilityError:
    """Map an httpx exception onto the error taxonomy."""
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        return CapabilityError(
            f"HTTP {status_code} from {operation}",
            kind=classify_http_status(status_code),
            operation=operation,
            status_code=status_code,
        )
    return CapabilityError(
        f"{operation} request failed: {error}", kind=ErrorKind.TRANSIENT, operation=operation
    )


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> float:
    return min(base_delay * (2**attempt), max_delay)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> T:
    """
    Await func until it succeeds or fails with a non-retryable error.

    func is attempted at most max_retries + 1 times. Only CapabilityError
    instances of a retryable kind trigger another attempt; anything else
    propagates immediately.

    Raises:
        CapabilityError: the last error once retries are exhausted
    """
    last_error: CapabilityError | None = None

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except CapabilityError as e:
            last_error = e
            if not e.recoverable:
                logger.error(
                    "Capability call failed (not retrying)",
                    operation=operation,
                    kind=e.kind.value,
                    status_code=e.status_code,
                    error=str(e),
                )
                raise

            if attempt >= max_retries:
                break

            delay = backoff_delay(attempt, base_delay, max_delay)
            if e.kind is ErrorKind.QUOTA:
                logger.warning(
                    "Capability rate limited, backing off",
                    operation=operation,
                    attempt=attempt + 1,
                    delay=delay,
                )
            else:
                logger.warning(
                    "Capability call failed, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(e),
                )
            await _sleep(delay)

    logger.error(
        "Capability call failed after all retries",
        operation=operation,
        attempts=max_retries + 1,
        error=str(last_error),
    )
    raise last_error
