"""
Main retry executor implementation
"""
import asyncio
import logging
import time
from typing import Optional, Union

import httpx

from .attempt import AttemptResult, is_replayable, run_attempt
from .config import BackoffSchedule, merge_config
from .errors import BodyNotReplayableError, MissingRequestError, RetryError, retry_reason
from .middleware import compose_attempt_middleware, compose_request_middleware
from .observability import NOP_SPAN, Span, is_nop
from .scope import CancelScope
from .types import CANCEL_SCOPE_EXTENSION, HttpExecutor, RetryConfig, RetryInfo


logger = logging.getLogger(__name__)


def _as_exchange(http_executor: Union[httpx.AsyncBaseTransport, HttpExecutor]) -> HttpExecutor:
    if isinstance(http_executor, httpx.AsyncBaseTransport):
        return http_executor.handle_async_request
    return http_executor


async def _discard(response: Optional[httpx.Response]) -> None:
    """Close a response body that will not reach the caller."""
    if response is not None:
        await response.aclose()


class RetryExecutor:
    """
    Retry Executor

    Delivers the first acceptable response for an HTTP request:
    - Retries transport errors and retryable statuses (429, 5xx by default)
    - Exponential backoff with cap and optional jitter
    - Optional Retry-After pacing
    - Optional per-attempt deadline bound to the response body
    - Cancellation-aware waits
    - Metrics, tracing and structured logging sinks

    Configuration is immutable and all loop state is local to a call, so
    one executor may serve concurrent calls.

    Example:
        executor = RetryExecutor(
            httpx.AsyncHTTPTransport(),
            RetryConfig(max_retries=3, initial_delay_seconds=0.2),
        )
        response = await executor.execute(httpx.Request("GET", "https://example.com"))
        try:
            body = await response.aread()
        finally:
            await response.aclose()
    """

    def __init__(
        self,
        http_executor: Union[httpx.AsyncBaseTransport, HttpExecutor],
        config: Optional[RetryConfig] = None,
    ) -> None:
        """
        Create a new RetryExecutor.

        Args:
            http_executor: Transport (or async callable) performing one exchange
            config: Retry configuration
        """
        self._config = merge_config(config)
        self._metrics = self._config.metrics
        self._tracer = self._config.tracer
        self._logger = self._config.logger
        self._classifier = self._config.classifier

        self._metrics_enabled = not is_nop(self._metrics)
        self._tracer_enabled = not is_nop(self._tracer)
        self._logger_enabled = not is_nop(self._logger)

        self._exchange = compose_attempt_middleware(
            self._config.attempt_middleware,
            _as_exchange(http_executor),
        )
        self._handler = compose_request_middleware(
            self._config.request_middleware,
            self._retry_loop,
        )

    @property
    def config(self) -> RetryConfig:
        """Get the current configuration."""
        return self._config

    @property
    def metrics_enabled(self) -> bool:
        return self._metrics_enabled

    @property
    def tracer_enabled(self) -> bool:
        return self._tracer_enabled

    @property
    def logger_enabled(self) -> bool:
        return self._logger_enabled

    async def execute(
        self,
        request: Optional[httpx.Request],
        scope: Optional[CancelScope] = None,
    ) -> httpx.Response:
        """
        Execute a request with retry logic.

        Args:
            request: The request to send
            scope: Cancellation scope for the whole call. Defaults to the
                scope in ``request.extensions["cancel_scope"]``, or a scope
                that never fires.

        Returns:
            The first non-retryable response. The caller must close it.

        Raises:
            MissingRequestError: ``request`` is None
            RetryError: Retries were exhausted or the scope fired
            BodyNotReplayableError: A retry would re-send a consumed body
            Exception: A non-retryable error raised by the exchange, or one
                raised by the classifier or the body factory
        """
        if request is None:
            raise MissingRequestError()

        if scope is None:
            scope = request.extensions.get(CANCEL_SCOPE_EXTENSION) or CancelScope()

        return await self._handler(scope, request)

    def _notify_retry(self, info: RetryInfo) -> None:
        hook = self._config.on_retry
        if hook is None:
            return
        try:
            hook(info)
        except Exception:
            logger.exception("on_retry hook raised; continuing with retry")

    def _start_attempt_span(self, parent: Span, request: httpx.Request, attempt: int) -> Span:
        if not self._tracer_enabled:
            return NOP_SPAN
        return self._tracer.start_span(
            "http.retry.attempt",
            {
                "http.method": request.method,
                "http.url": str(request.url),
                "retry.attempt": attempt,
            },
            parent=parent,
        )

    def _finish_attempt(
        self,
        span: Span,
        request: httpx.Request,
        attempt: int,
        result: AttemptResult,
    ) -> None:
        status = result.status_code
        self._metrics.record_attempt(request.method, status, result.duration, result.error)

        if self._tracer_enabled:
            span.set_attributes({"http.status_code": status})
            if result.error is not None:
                span.set_status("error", str(result.error))
            elif status >= 400:
                span.set_status("error", f"HTTP {status}")
            else:
                span.set_status("ok")
        span.end()

        if self._logger_enabled:
            self._logger.debug(
                "http attempt completed",
                method=request.method,
                url=request.url,
                attempt=attempt + 1,
                status=status,
                duration_ms=int(result.duration * 1000),
                error=result.error,
            )

    def _complete(
        self,
        span: Span,
        request: httpx.Request,
        status: int,
        start: float,
        attempts: int,
        success: bool,
        error: Optional[BaseException] = None,
        exhausted: bool = True,
    ) -> None:
        elapsed = time.monotonic() - start
        self._metrics.record_request_complete(request.method, status, elapsed, attempts, success)

        if self._tracer_enabled:
            span.set_attributes({"http.status_code": status, "retry.attempts": attempts})
            if success:
                span.set_status("ok")
            else:
                span.set_status("error", str(error) if error is not None else f"HTTP {status}")

        if not self._logger_enabled:
            return
        if success:
            self._logger.debug(
                "http request completed",
                method=request.method,
                url=request.url,
                status=status,
                attempts=attempts,
                duration_ms=int(elapsed * 1000),
            )
        else:
            self._logger.error(
                "http request failed after all retries" if exhausted else "http request failed",
                method=request.method,
                url=request.url,
                status=status,
                attempts=attempts,
                duration_ms=int(elapsed * 1000),
                error=error,
            )

    async def _retry_loop(self, scope: CancelScope, request: httpx.Request) -> httpx.Response:
        """Sequence attempts until success, a non-retryable outcome, exhaustion or cancellation."""
        config = self._config
        method = request.method
        start = time.monotonic()
        schedule = BackoffSchedule(config)

        span = NOP_SPAN
        if self._tracer_enabled:
            span = self._tracer.start_span(
                "http.retry.request",
                {
                    "http.method": method,
                    "http.url": str(request.url),
                    "retry.max_retries": config.max_retries,
                },
            )
        if self._logger_enabled:
            self._logger.debug(
                "http request starting",
                method=method,
                url=request.url,
                max_retries=config.max_retries,
            )

        response: Optional[httpx.Response] = None
        last_error: Optional[Exception] = None
        last_status = 0
        attempts = 0

        try:
            for attempt in range(config.max_retries + 1):
                if attempt > 0:
                    if scope.cancelled:
                        break
                    if not is_replayable(request):
                        await _discard(response)
                        response = None
                        replay_error = BodyNotReplayableError(
                            "request body cannot be replayed; "
                            "attach a body factory to retry streamed bodies"
                        )
                        self._complete(
                            span, request, last_status, start, attempts, False, replay_error, exhausted=False
                        )
                        raise replay_error from last_error

                    decision = schedule.next_delay(response)
                    reason = retry_reason(last_error, response)
                    info = RetryInfo(
                        attempt=attempt,
                        delay=decision.delay,
                        error=last_error,
                        status_code=last_status,
                        retry_after=decision.retry_after,
                        total_elapsed=time.monotonic() - start,
                    )
                    self._notify_retry(info)
                    self._metrics.record_retry(method, reason, attempt)

                    if self._logger_enabled:
                        fields = dict(
                            method=method,
                            url=request.url,
                            attempt=attempt,
                            reason=reason,
                            delay_ms=int(decision.delay * 1000),
                            status=last_status,
                        )
                        if last_error is not None:
                            self._logger.warning("http attempt failed, will retry", error=last_error, **fields)
                        else:
                            self._logger.info("http retry scheduled", **fields)
                    if self._tracer_enabled:
                        span.add_event(
                            "retry",
                            {
                                "retry.attempt": attempt,
                                "retry.reason": reason,
                                "retry.delay_ms": int(decision.delay * 1000),
                            },
                        )

                    await _discard(response)
                    response = None

                    if not await scope.sleep(decision.delay):
                        break

                if scope.cancelled:
                    break

                attempt_span = self._start_attempt_span(span, request, attempt)
                try:
                    result = await run_attempt(
                        self._exchange,
                        request,
                        scope,
                        attempt,
                        config.per_attempt_timeout_seconds,
                    )
                except BaseException as error:
                    attempt_span.set_status("error", str(error))
                    attempt_span.end()
                    if isinstance(error, Exception):
                        self._complete(
                            span, request, last_status, start, attempts, False, error, exhausted=False
                        )
                    raise
                attempts += 1
                self._finish_attempt(attempt_span, request, attempt, result)

                response = result.response
                last_error = result.error
                last_status = result.status_code

                try:
                    retryable = self._classifier(last_error, response)
                except Exception as error:
                    self._complete(
                        span, request, last_status, start, attempts, False, error, exhausted=False
                    )
                    raise

                if not retryable:
                    # Non-retryable outcome, success included
                    self._complete(
                        span,
                        request,
                        last_status,
                        start,
                        attempts,
                        success=last_error is None,
                        error=last_error,
                        exhausted=False,
                    )
                    if last_error is not None:
                        raise last_error
                    returned, response = response, None
                    return returned
            else:
                # Retries exhausted
                failure = RetryError(
                    attempts=attempts,
                    last_error=last_error,
                    last_status=last_status,
                    elapsed=time.monotonic() - start,
                    response=response,
                )
                response = None
                self._complete(span, request, last_status, start, attempts, False, failure)
                raise failure from last_error

            # Caller scope fired before an attempt could start
            await _discard(response)
            response = None
            cancel_error = scope.error
            failure = RetryError(
                attempts=attempts,
                last_error=cancel_error,
                last_status=last_status,
                elapsed=time.monotonic() - start,
            )
            self._complete(span, request, last_status, start, attempts, False, failure)
            raise failure from cancel_error
        except asyncio.CancelledError:
            if self._tracer_enabled:
                span.set_status("error", "cancelled")
            raise
        finally:
            if response is not None:
                await asyncio.shield(_discard(response))
            span.end()
