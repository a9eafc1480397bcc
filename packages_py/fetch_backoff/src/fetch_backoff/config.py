"""
Configuration utilities for fetch_backoff
"""
import random
import time
from dataclasses import replace
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

import httpx

from .observability import NOP_LOGGER, NOP_METRICS, NOP_TRACER
from .types import DelayDecision, RetryConfig


# Default retry configuration
DEFAULT_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    initial_delay_seconds=1.0,
    max_delay_seconds=10.0,
    multiplier=2.0,
    jitter=True,
    respect_retry_after=False,
    per_attempt_timeout_seconds=0.0,
)

# Jitter spreads each delay over [JITTER_LOW, JITTER_HIGH] times its value
JITTER_LOW = 0.75
JITTER_HIGH = 1.25


def is_retryable_status(status: int) -> bool:
    """
    Check if an HTTP status code should trigger a retry.

    Args:
        status: The HTTP status code

    Returns:
        True for 429 and every 5xx status
    """
    return status >= 500 or status == 429


def default_classifier(
    error: Optional[BaseException],
    response: Optional[httpx.Response],
) -> bool:
    """
    Default retry classifier.

    Any transport error (connection, DNS, TLS, timeout, cancellation) is
    retryable. Responses are retryable when their status is 429 or 5xx.

    Args:
        error: Error raised by the exchange, if any
        response: Response returned by the exchange, if any

    Returns:
        Whether the attempt should be retried
    """
    if error is not None:
        return True
    if response is None:
        return False
    return is_retryable_status(response.status_code)


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> float:
    """
    Parse Retry-After header value.

    The Retry-After header can contain either:
    - A non-negative integer number of seconds
    - An HTTP-date (IMF-fixdate, RFC 850 or asctime)

    Args:
        value: Retry-After header value
        now: Current wall-clock time (default: time.time())

    Returns:
        Wait time in seconds, or 0 when absent, unparsable, zero or in the past
    """
    if not value:
        return 0.0

    value = value.strip()

    # Try parsing as seconds
    if value.isascii() and value.isdigit():
        return float(int(value))

    # Try parsing as HTTP-date
    try:
        target = parsedate_to_datetime(value)
    except (ValueError, TypeError, IndexError):
        return 0.0
    if target is None:
        return 0.0
    if target.tzinfo is None:
        # asctime and "-0000" dates carry no zone; HTTP dates are always GMT
        target = target.replace(tzinfo=timezone.utc)

    current = time.time() if now is None else now
    return max(0.0, target.timestamp() - current)


def server_delay(response: Optional[httpx.Response]) -> float:
    """Server-directed delay carried by a response (0 if none)."""
    if response is None:
        return 0.0
    return parse_retry_after(response.headers.get("retry-after"))


def apply_jitter(delay: float, rand: Callable[[], float] = random.random) -> float:
    """
    Spread a delay uniformly over [0.75, 1.25] times its value.

    Jitter is a load-spreading device; the module-level ``random`` source
    is seeded from the OS at import, so separate processes do not move in
    lockstep.
    """
    if delay <= 0:
        return delay
    return delay * (JITTER_LOW + rand() * (JITTER_HIGH - JITTER_LOW))


class BackoffSchedule:
    """
    Stateful delay engine for one retry loop invocation.

    The base delay grows as initial, initial*m, initial*m^2, ... capped at
    the max delay. A Retry-After directive replaces the wait for the
    current retry only; it never resets or advances the base sequence.

    Example:
        schedule = BackoffSchedule(config)
        first = schedule.next_delay()            # initial_delay_seconds
        second = schedule.next_delay(response)   # Retry-After, or initial * m
    """

    def __init__(
        self,
        config: RetryConfig,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._config = config
        self._rand = rand
        self._base: Optional[float] = None

    def next_delay(self, response: Optional[httpx.Response] = None) -> DelayDecision:
        """
        Compute the effective delay for the next retry.

        Args:
            response: Response of the failed attempt, consulted for
                Retry-After when ``respect_retry_after`` is set

        Returns:
            The effective delay, the directive applied and the base delay
        """
        config = self._config
        cap = config.max_delay_seconds

        if self._base is None:
            self._base = min(config.initial_delay_seconds, cap)
        else:
            self._base = min(self._base * config.multiplier, cap)

        retry_after = server_delay(response) if config.respect_retry_after else 0.0
        delay = retry_after if retry_after > 0 else self._base

        if config.jitter:
            delay = apply_jitter(delay, self._rand)

        delay = min(max(delay, 0.0), cap)
        return DelayDecision(delay=delay, retry_after=retry_after, base_delay=self._base)


def merge_config(config: Optional[RetryConfig] = None) -> RetryConfig:
    """
    Merge configuration with defaults.

    Invalid values are silently replaced by their defaults and missing
    collaborators fall back to the default implementations.

    Args:
        config: User-provided configuration

    Returns:
        Complete configuration with defaults
    """
    if config is None:
        config = DEFAULT_RETRY_CONFIG

    defaults = DEFAULT_RETRY_CONFIG
    changes = {}

    if config.max_retries is None or config.max_retries < 0:
        changes["max_retries"] = defaults.max_retries
    if not config.initial_delay_seconds or config.initial_delay_seconds <= 0:
        changes["initial_delay_seconds"] = defaults.initial_delay_seconds
    if not config.max_delay_seconds or config.max_delay_seconds <= 0:
        changes["max_delay_seconds"] = defaults.max_delay_seconds
    if not config.multiplier or config.multiplier <= 1.0:
        changes["multiplier"] = defaults.multiplier
    if config.per_attempt_timeout_seconds is None or config.per_attempt_timeout_seconds < 0:
        changes["per_attempt_timeout_seconds"] = defaults.per_attempt_timeout_seconds

    if config.classifier is None:
        changes["classifier"] = default_classifier
    if config.metrics is None:
        changes["metrics"] = NOP_METRICS
    if config.tracer is None:
        changes["tracer"] = NOP_TRACER
    if config.logger is None:
        changes["logger"] = NOP_LOGGER

    changes["attempt_middleware"] = tuple(config.attempt_middleware or ())
    changes["request_middleware"] = tuple(config.request_middleware or ())

    return replace(config, **changes)
