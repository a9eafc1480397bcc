"""
HTTP retry layer with exponential backoff, jitter and Retry-After pacing.
"""
from .types import (
    RetryConfig,
    RetryInfo,
    DelayDecision,
    HttpExecutor,
    RetryFunc,
    AttemptMiddleware,
    RequestMiddleware,
    Classifier,
    BodyFactory,
    OnRetryHook,
    CANCEL_SCOPE_EXTENSION,
    BODY_FACTORY_EXTENSION,
)
from .errors import (
    RetryError,
    MissingRequestError,
    BodyNotReplayableError,
    MiddlewareError,
    RequestCancelledError,
    DeadlineExceededError,
    find_cause,
    retry_reason,
)
from .config import (
    DEFAULT_RETRY_CONFIG,
    BackoffSchedule,
    apply_jitter,
    default_classifier,
    is_retryable_status,
    merge_config,
    parse_retry_after,
)
from .scope import CancelScope
from .observability import (
    MetricsCollector,
    Tracer,
    Span,
    Logger,
    LoggingSink,
    NOP_METRICS,
    NOP_TRACER,
    NOP_LOGGER,
)
from .middleware import (
    compose_attempt_middleware,
    compose_request_middleware,
    logging_middleware,
    header_middleware,
    rate_limit_middleware,
    circuit_breaker_middleware,
    tracing_request_middleware,
    RateLimiter,
    CircuitBreaker,
)
from .attempt import ScopeBoundStream
from .executor import RetryExecutor


__all__ = [
    # Types
    "RetryConfig",
    "RetryInfo",
    "DelayDecision",
    "HttpExecutor",
    "RetryFunc",
    "AttemptMiddleware",
    "RequestMiddleware",
    "Classifier",
    "BodyFactory",
    "OnRetryHook",
    "CANCEL_SCOPE_EXTENSION",
    "BODY_FACTORY_EXTENSION",
    # Errors
    "RetryError",
    "MissingRequestError",
    "BodyNotReplayableError",
    "MiddlewareError",
    "RequestCancelledError",
    "DeadlineExceededError",
    "find_cause",
    "retry_reason",
    # Config
    "DEFAULT_RETRY_CONFIG",
    "BackoffSchedule",
    "apply_jitter",
    "default_classifier",
    "is_retryable_status",
    "merge_config",
    "parse_retry_after",
    # Scope
    "CancelScope",
    # Observability
    "MetricsCollector",
    "Tracer",
    "Span",
    "Logger",
    "LoggingSink",
    "NOP_METRICS",
    "NOP_TRACER",
    "NOP_LOGGER",
    # Middleware
    "compose_attempt_middleware",
    "compose_request_middleware",
    "logging_middleware",
    "header_middleware",
    "rate_limit_middleware",
    "circuit_breaker_middleware",
    "tracing_request_middleware",
    "RateLimiter",
    "CircuitBreaker",
    # Executor
    "ScopeBoundStream",
    "RetryExecutor",
]


__version__ = "1.0.0"
