"""
Per-attempt execution for fetch_backoff

One attempt = one HTTP exchange under an optional per-attempt deadline.
The deadline has to outlive the exchange while the caller reads the
response body, so it is released when the body is closed rather than
when the exchange returns.
"""
import time
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional, Union

import httpx

from .errors import BodyNotReplayableError
from .scope import CancelScope
from .types import BODY_FACTORY_EXTENSION, CANCEL_SCOPE_EXTENSION, BodyFactory, HttpExecutor


class _IterableStream(httpx.AsyncByteStream):
    """Request body produced by a body factory."""

    def __init__(self, iterable: AsyncIterable[bytes]) -> None:
        self._iterable = iterable

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._iterable:
            yield chunk


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class ScopeBoundStream(httpx.AsyncByteStream):
    """
    Response body bound to a cancellation scope.

    Reads are bounded by the scope. Closing the body closes the wrapped
    stream first and then releases the scope (when this stream owns it).
    """

    def __init__(
        self,
        stream: httpx.AsyncByteStream,
        scope: CancelScope,
        owns_scope: bool = True,
    ) -> None:
        self._stream = stream
        self._scope = scope
        self._owns_scope = owns_scope
        self._closed = False

    @property
    def scope(self) -> CancelScope:
        return self._scope

    async def __aiter__(self) -> AsyncIterator[bytes]:
        iterator = self._stream.__aiter__()
        while True:
            chunk = await self._scope.run(_next_chunk(iterator))
            if chunk is None:
                break
            yield chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._stream.aclose()
        finally:
            if self._owns_scope:
                self._scope.release()


def bind_scope(response: httpx.Response, scope: CancelScope, owns_scope: bool) -> None:
    """
    Tie ``scope`` to the lifetime of the response body.

    A response whose body was already fully read and closed releases an
    owned scope immediately.
    """
    if response.is_closed or not isinstance(response.stream, httpx.AsyncByteStream):
        if owns_scope:
            scope.release()
        return
    response.stream = ScopeBoundStream(response.stream, scope, owns_scope)


def is_replayable(request: httpx.Request) -> bool:
    """Whether the request body can be sent again without a body factory."""
    return (
        request.extensions.get(BODY_FACTORY_EXTENSION) is not None
        or isinstance(request.stream, httpx.ByteStream)
    )


def _fresh_body(factory: BodyFactory) -> Union[httpx.ByteStream, httpx.AsyncByteStream]:
    body = factory()
    if isinstance(body, (bytes, bytearray)):
        return httpx.ByteStream(bytes(body))
    if hasattr(body, "__aiter__"):
        return _IterableStream(body)
    if not hasattr(body, "__iter__") or isinstance(body, str):
        raise TypeError(
            f"body factory must return bytes or an iterable of bytes, got {type(body).__name__}"
        )
    # Sync iterables are joined in memory
    return httpx.ByteStream(b"".join(body))


def prepare_request(request: httpx.Request, scope: CancelScope, attempt: int) -> httpx.Request:
    """
    Clone a request for one attempt, bound to the attempt's scope.

    The body comes from the body factory when there is one; otherwise the
    original stream is reused, which is only allowed on the first attempt
    unless the body is held in memory.

    Raises:
        BodyNotReplayableError: A retry would re-send a consumed body
        TypeError: The body factory returned something other than bytes
    """
    factory = request.extensions.get(BODY_FACTORY_EXTENSION)
    if factory is not None:
        stream = _fresh_body(factory)
    elif attempt == 0 or isinstance(request.stream, httpx.ByteStream):
        stream = request.stream
    else:
        raise BodyNotReplayableError(
            "request body cannot be replayed; attach a body factory to retry streamed bodies"
        )

    extensions = dict(request.extensions)
    extensions[CANCEL_SCOPE_EXTENSION] = scope
    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers.copy(),
        stream=stream,
        extensions=extensions,
    )


@dataclass
class AttemptResult:
    """Outcome of one attempt"""

    response: Optional[httpx.Response]
    """Response, with its body bound to the attempt scope"""

    error: Optional[Exception]
    """Error raised by the exchange"""

    duration: float
    """Time spent in the exchange (seconds)"""

    @property
    def status_code(self) -> int:
        return self.response.status_code if self.response is not None else 0


async def run_attempt(
    exchange: HttpExecutor,
    request: httpx.Request,
    scope: CancelScope,
    attempt: int,
    per_attempt_timeout: float,
) -> AttemptResult:
    """
    Run a single HTTP exchange.

    Derives a child scope when ``per_attempt_timeout`` is positive. The
    exchange is raced against the scope, so a deadline or cancellation
    surfaces as DeadlineExceededError / RequestCancelledError in
    ``AttemptResult.error``.

    Raises:
        BodyNotReplayableError: The request body cannot be sent again
    """
    owns_scope = per_attempt_timeout > 0
    attempt_scope = scope.child(per_attempt_timeout) if owns_scope else scope

    try:
        attempt_request = prepare_request(request, attempt_scope, attempt)
    except BaseException:
        if owns_scope:
            attempt_scope.release()
        raise

    start = time.monotonic()
    response: Optional[httpx.Response] = None
    error: Optional[Exception] = None
    try:
        response = await attempt_scope.run(exchange(attempt_request))
    except Exception as exc:
        error = exc
    except BaseException:
        if owns_scope:
            attempt_scope.release()
        raise
    duration = time.monotonic() - start

    if response is not None:
        bind_scope(response, attempt_scope, owns_scope)
    elif owns_scope:
        attempt_scope.release()

    return AttemptResult(response=response, error=error, duration=duration)
