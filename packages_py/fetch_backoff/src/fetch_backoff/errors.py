"""
Error types for fetch_backoff
"""
import asyncio
from typing import Optional, Tuple, Type, Union

import httpx


class RequestCancelledError(Exception):
    """Raised when a cancellation scope is cancelled explicitly."""

    def __init__(self, message: str = "request cancelled") -> None:
        super().__init__(message)


class DeadlineExceededError(TimeoutError):
    """Raised when a cancellation scope passes its deadline."""

    def __init__(self, message: str = "deadline exceeded") -> None:
        super().__init__(message)


class MissingRequestError(ValueError):
    """Raised synchronously when no request is handed to the executor."""

    def __init__(self) -> None:
        super().__init__("retry: nil request")


class BodyNotReplayableError(RuntimeError):
    """
    Raised when a retry would need to re-send a request body that was
    already consumed.

    Attach a body factory (``request.extensions["body_factory"]``) to
    retry requests that stream their body.
    """


class MiddlewareError(Exception):
    """Raised when a request-level middleware refuses a request."""


class RetryError(Exception):
    """
    Final failure record.

    Raised when retries are exhausted or the caller's scope is cancelled.
    The last underlying error is attached as ``__cause__`` so that
    ``find_cause`` can look for cancellation or deadline errors beneath it.

    Attributes:
        attempts: Number of HTTP exchanges performed
        last_error: Last underlying error, or None when the last attempt
            produced a response
        last_status: Last HTTP status code (0 if no response was received)
        elapsed: Wall time since the first attempt began (seconds)
        response: Last response when its body is still readable, else None.
            The caller is responsible for closing it.
    """

    def __init__(
        self,
        attempts: int,
        last_error: Optional[BaseException],
        last_status: int,
        elapsed: float,
        response: Optional[httpx.Response] = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.last_status = last_status
        self.elapsed = elapsed
        self.response = response
        super().__init__(self._format())

    def _format(self) -> str:
        if self.last_error is not None:
            inner = str(self.last_error) or type(self.last_error).__name__
        else:
            inner = f"HTTP {self.last_status}"
        return (
            f"request failed after {self.attempts} attempts "
            f"(elapsed: {self.elapsed:.3f}s): {inner}"
        )


def find_cause(
    error: Optional[BaseException],
    exc_type: Union[Type[BaseException], Tuple[Type[BaseException], ...]],
) -> Optional[BaseException]:
    """
    Walk an exception chain looking for an instance of ``exc_type``.

    Follows ``__cause__`` first and then ``__context__``, mirroring how
    Python prints chained tracebacks.

    Args:
        error: The outermost exception
        exc_type: Exception type (or tuple of types) to look for

    Returns:
        The first matching exception in the chain, or None
    """
    seen: set[int] = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, exc_type):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def retry_reason(
    error: Optional[BaseException],
    response: Optional[httpx.Response],
) -> str:
    """
    Categorize why an attempt is being retried (for metrics and logging).

    Returns one of: timeout, canceled, network_error, rate_limited,
    5xx, 4xx, other, unknown.
    """
    if error is not None:
        if find_cause(error, (TimeoutError, httpx.TimeoutException)) is not None:
            return "timeout"
        if find_cause(error, (RequestCancelledError, asyncio.CancelledError)) is not None:
            return "canceled"
        return "network_error"

    if response is None:
        return "unknown"

    status = response.status_code
    if status == 429:
        return "rate_limited"
    if status >= 500:
        return "5xx"
    if status >= 400:
        return "4xx"
    return "other"
