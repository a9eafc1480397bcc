"""
Type definitions for fetch_backoff
"""
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Union,
)

import httpx

from .observability import Logger, MetricsCollector, Tracer

if TYPE_CHECKING:
    from .scope import CancelScope


# Request extension carrying the caller's CancelScope
CANCEL_SCOPE_EXTENSION = "cancel_scope"

# Request extension carrying a body factory for replaying request bodies
BODY_FACTORY_EXTENSION = "body_factory"


# Single HTTP exchange: request in, response out (errors are raised)
HttpExecutor = Callable[[httpx.Request], Awaitable[httpx.Response]]

# The retry loop itself, as seen by request-level middleware
RetryFunc = Callable[["CancelScope", httpx.Request], Awaitable[httpx.Response]]

# Decorates the per-attempt HTTP exchange
AttemptMiddleware = Callable[[HttpExecutor], HttpExecutor]

# Decorates the whole retry loop (runs once per call)
RequestMiddleware = Callable[[RetryFunc], RetryFunc]

# Decides retry eligibility of an (error, response) pair; must be pure
Classifier = Callable[[Optional[BaseException], Optional[httpx.Response]], bool]

# Yields a fresh request body for every attempt
BodyFactory = Callable[[], Union[bytes, Iterable[bytes], AsyncIterable[bytes]]]


@dataclass(frozen=True)
class RetryInfo:
    """Diagnostic record passed to the on-retry hook"""

    attempt: int
    """Attempt number about to run (1 for the first retry)"""

    delay: float
    """Scheduled wait before this retry (seconds)"""

    error: Optional[BaseException]
    """Error that triggered the retry (None if retrying on a status code)"""

    status_code: int
    """HTTP status of the failed attempt (0 if it produced no response)"""

    retry_after: float
    """Server-directed delay from Retry-After (0 if absent or ignored)"""

    total_elapsed: float
    """Time since the first attempt began (seconds)"""


OnRetryHook = Callable[[RetryInfo], None]


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration. Immutable once built."""

    max_retries: int = 3
    """Retries after the first attempt; total attempts = max_retries + 1. Default: 3"""

    initial_delay_seconds: float = 1.0
    """Base delay before the first retry (seconds). Default: 1.0"""

    max_delay_seconds: float = 10.0
    """Cap for every delay, including jitter and Retry-After (seconds). Default: 10.0"""

    multiplier: float = 2.0
    """Exponential growth factor, must be > 1. Default: 2.0"""

    jitter: bool = True
    """Randomize delays by +/-25%. Default: True"""

    respect_retry_after: bool = False
    """Let a Retry-After header replace the computed delay. Default: False"""

    per_attempt_timeout_seconds: float = 0.0
    """Deadline for a single attempt, 0 to disable (seconds). Default: 0"""

    classifier: Optional[Classifier] = None
    """Retry predicate over (error, response). Default: default_classifier"""

    on_retry: Optional[OnRetryHook] = None
    """Called once per scheduled retry, before the wait"""

    metrics: Optional[MetricsCollector] = None
    """Metrics sink. Default: no-op"""

    tracer: Optional[Tracer] = None
    """Tracing sink. Default: no-op"""

    logger: Optional[Logger] = None
    """Structured logger sink, e.g. LoggingSink. Default: no-op"""

    attempt_middleware: tuple[AttemptMiddleware, ...] = ()
    """Decorators around each HTTP exchange, first is outermost"""

    request_middleware: tuple[RequestMiddleware, ...] = ()
    """Decorators around the whole retry loop, first is outermost"""


@dataclass(frozen=True)
class DelayDecision:
    """Outcome of the delay engine for one retry"""

    delay: float
    """Effective wait (seconds)"""

    retry_after: float
    """Server directive that was applied (0 if none)"""

    base_delay: float
    """Exponential base delay for this retry, before directive and jitter"""

