"""
Middleware composition for fetch_backoff

Two chains with different scopes:
- Attempt middleware wraps a single HTTP exchange and runs on every
  attempt, retries included (header injection, per-attempt logging).
- Request middleware wraps the whole retry loop and runs once per call
  (rate limiting, circuit breaking, whole-operation tracing).

A rate limiter belongs in the request chain; at attempt scope it would
take one token per retry.
"""
import time
from typing import Mapping, Optional, Protocol, Sequence

import httpx

from .errors import MiddlewareError
from .observability import NOP_LOGGER, Logger, Tracer
from .scope import CancelScope
from .types import AttemptMiddleware, HttpExecutor, RequestMiddleware, RetryFunc


def compose_attempt_middleware(
    middleware: Sequence[AttemptMiddleware],
    terminal: HttpExecutor,
) -> HttpExecutor:
    """
    Build the per-attempt chain around the HTTP exchange.

    The first middleware is the outermost: it sees the request first and
    the result last.
    """
    handler = terminal
    for wrap in reversed(middleware):
        handler = wrap(handler)
    return handler


def compose_request_middleware(
    middleware: Sequence[RequestMiddleware],
    terminal: RetryFunc,
) -> RetryFunc:
    """
    Build the request-level chain around the retry loop.

    The first middleware is the outermost.
    """
    handler = terminal
    for wrap in reversed(middleware):
        handler = wrap(handler)
    return handler


def clone_request(request: httpx.Request) -> httpx.Request:
    """
    Copy a request so middleware can mutate headers without touching the
    caller's request. The body stream and extensions are shared.
    """
    return httpx.Request(
        request.method,
        request.url,
        headers=request.headers.copy(),
        stream=request.stream,
        extensions=dict(request.extensions),
    )


def logging_middleware(logger: Optional[Logger] = None) -> AttemptMiddleware:
    """
    Create attempt middleware that logs every HTTP attempt.

    Example:
        config = RetryConfig(attempt_middleware=(logging_middleware(LoggingSink()),))
    """
    log = logger or NOP_LOGGER

    def middleware(next_handler: HttpExecutor) -> HttpExecutor:
        async def handler(request: httpx.Request) -> httpx.Response:
            start = time.monotonic()
            log.debug("http attempt starting", method=request.method, url=request.url)
            try:
                response = await next_handler(request)
            except Exception as error:
                log.warning(
                    "http attempt failed",
                    method=request.method,
                    url=request.url,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    error=error,
                )
                raise
            log.debug(
                "http attempt completed",
                method=request.method,
                url=request.url,
                status=response.status_code,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            return response

        return handler

    return middleware


def header_middleware(headers: Mapping[str, str]) -> AttemptMiddleware:
    """
    Create attempt middleware that sets headers on every attempt.

    The request is cloned before it is modified.
    """
    fixed = dict(headers)

    def middleware(next_handler: HttpExecutor) -> HttpExecutor:
        async def handler(request: httpx.Request) -> httpx.Response:
            request = clone_request(request)
            for key, value in fixed.items():
                request.headers[key] = value
            return await next_handler(request)

        return handler

    return middleware


class RateLimiter(Protocol):
    async def wait(self, scope: CancelScope) -> None:
        """Block until a request may proceed; raise if it may not."""
        ...


class CircuitBreaker(Protocol):
    def allow(self) -> None:
        """Raise if the circuit is open."""
        ...

    def record_success(self) -> None: ...

    def record_failure(self) -> None: ...


def rate_limit_middleware(limiter: RateLimiter) -> RequestMiddleware:
    """
    Create request middleware that takes one limiter slot per call,
    before the retry loop begins.
    """

    def middleware(next_handler: RetryFunc) -> RetryFunc:
        async def handler(scope: CancelScope, request: httpx.Request) -> httpx.Response:
            try:
                await limiter.wait(scope)
            except Exception as error:
                raise MiddlewareError(f"rate limit: {error}") from error
            return await next_handler(scope, request)

        return handler

    return middleware


def circuit_breaker_middleware(breaker: CircuitBreaker) -> RequestMiddleware:
    """
    Create request middleware implementing the circuit breaker pattern.

    A call counts as a failure when it raises or ends with a 5xx status.
    When the circuit is open the call fails without any HTTP attempt.
    """

    def middleware(next_handler: RetryFunc) -> RetryFunc:
        async def handler(scope: CancelScope, request: httpx.Request) -> httpx.Response:
            try:
                breaker.allow()
            except Exception as error:
                raise MiddlewareError(f"circuit breaker: {error}") from error

            try:
                response = await next_handler(scope, request)
            except Exception:
                breaker.record_failure()
                raise

            if response.status_code >= 500:
                breaker.record_failure()
            else:
                breaker.record_success()
            return response

        return handler

    return middleware


def tracing_request_middleware(tracer: Tracer) -> RequestMiddleware:
    """
    Create request middleware that opens one span for the whole call.

    For per-attempt spans configure ``RetryConfig.tracer`` instead.
    """

    def middleware(next_handler: RetryFunc) -> RetryFunc:
        async def handler(scope: CancelScope, request: httpx.Request) -> httpx.Response:
            span = tracer.start_span(
                "http.request.with_retry",
                {"http.method": request.method, "http.url": str(request.url)},
            )
            try:
                response = await next_handler(scope, request)
            except BaseException as error:
                span.set_status("error", str(error))
                raise
            else:
                span.set_attributes({"http.status_code": response.status_code})
                if response.status_code >= 400:
                    span.set_status("error", f"HTTP {response.status_code}")
                else:
                    span.set_status("ok")
                return response
            finally:
                span.end()

        return handler

    return middleware
