"""
Observability boundary for fetch_backoff

The retry loop drives three independent sinks: metrics, tracing and
structured logging. Each has a no-op implementation used when no sink is
configured, so the loop never needs None checks.
"""
import logging
from typing import Any, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class MetricsCollector(Protocol):
    """Metrics sink. Implementations must be thread-safe."""

    def record_attempt(
        self,
        method: str,
        status_code: int,
        duration: float,
        error: Optional[BaseException],
    ) -> None:
        """Record a single HTTP attempt (duration in seconds)."""
        ...

    def record_retry(self, method: str, reason: str, attempt_number: int) -> None:
        """Record a retry decision (attempt_number is 1-based)."""
        ...

    def record_request_complete(
        self,
        method: str,
        status_code: int,
        total_duration: float,
        total_attempts: int,
        success: bool,
    ) -> None:
        """Record completion of a request, including all retries."""
        ...


@runtime_checkable
class Span(Protocol):
    """Tracing span (OpenTelemetry-compatible shape)."""

    def end(self) -> None: ...

    def set_attributes(self, attributes: Mapping[str, Any]) -> None: ...

    def set_status(self, code: str, description: str = "") -> None: ...

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None: ...


@runtime_checkable
class Tracer(Protocol):
    """Distributed tracing sink."""

    def start_span(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        parent: Optional[Span] = None,
    ) -> Span: ...


@runtime_checkable
class Logger(Protocol):
    """Structured key/value logger."""

    def debug(self, msg: str, **fields: Any) -> None: ...

    def info(self, msg: str, **fields: Any) -> None: ...

    def warning(self, msg: str, **fields: Any) -> None: ...

    def error(self, msg: str, **fields: Any) -> None: ...


class NopMetricsCollector:
    def record_attempt(self, method, status_code, duration, error) -> None:
        pass

    def record_retry(self, method, reason, attempt_number) -> None:
        pass

    def record_request_complete(self, method, status_code, total_duration, total_attempts, success) -> None:
        pass


class NopSpan:
    def end(self) -> None:
        pass

    def set_attributes(self, attributes) -> None:
        pass

    def set_status(self, code, description="") -> None:
        pass

    def add_event(self, name, attributes=None) -> None:
        pass


class NopTracer:
    def start_span(self, name, attributes=None, parent=None) -> NopSpan:
        return NOP_SPAN


class NopLogger:
    def debug(self, msg, **fields) -> None:
        pass

    def info(self, msg, **fields) -> None:
        pass

    def warning(self, msg, **fields) -> None:
        pass

    def error(self, msg, **fields) -> None:
        pass


NOP_METRICS = NopMetricsCollector()
NOP_SPAN = NopSpan()
NOP_TRACER = NopTracer()
NOP_LOGGER = NopLogger()


def format_fields(fields: Mapping[str, Any]) -> str:
    """Render structured fields as ``key=value`` pairs."""
    return " ".join(f"{key}={value}" for key, value in fields.items())


class LoggingSink:
    """
    Logger sink backed by the standard ``logging`` module.

    Fields are only rendered when the target level is enabled, so a
    disabled level costs one ``isEnabledFor`` check.

    Example:
        logging.basicConfig(level=logging.DEBUG)
        config = RetryConfig(logger=LoggingSink(logging.getLogger("my_app.http")))
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("fetch_backoff")

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _log(self, level: int, msg: str, fields: Mapping[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if fields:
            self._logger.log(level, "%s %s", msg, format_fields(fields))
        else:
            self._logger.log(level, msg)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, fields)


def is_nop(sink: Any) -> bool:
    """Whether ``sink`` is one of the no-op implementations."""
    return isinstance(sink, (NopMetricsCollector, NopTracer, NopLogger))
