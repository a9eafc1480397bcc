"""
Factory functions for creating retry-enabled transports and clients
"""
import logging
from dataclasses import replace
from typing import Any, Callable, Optional

import httpx

from fetch_backoff import LoggingSink, OnRetryHook, RetryConfig
from .transport import RetryTransport


# Preset retry configurations
RETRY_PRESETS = {
    "default": RetryConfig(),
    # User-facing calls: fail fast
    "realtime": RetryConfig(
        max_retries=2,
        initial_delay_seconds=0.1,
        max_delay_seconds=1.0,
        per_attempt_timeout_seconds=3.0,
    ),
    # Batch jobs, sync, cron: persistent with long waits
    "background": RetryConfig(
        max_retries=10,
        initial_delay_seconds=5.0,
        max_delay_seconds=60.0,
        multiplier=3.0,
        per_attempt_timeout_seconds=30.0,
    ),
    # Third-party APIs answering 429 with Retry-After
    "rate_limited": RetryConfig(
        max_retries=5,
        initial_delay_seconds=2.0,
        max_delay_seconds=30.0,
        respect_retry_after=True,
        jitter=True,
    ),
    # In-cluster service calls
    "microservice": RetryConfig(
        max_retries=3,
        initial_delay_seconds=0.05,
        max_delay_seconds=0.5,
        per_attempt_timeout_seconds=2.0,
        jitter=True,
    ),
    "aggressive": RetryConfig(
        max_retries=10,
        initial_delay_seconds=0.1,
        max_delay_seconds=5.0,
    ),
    "conservative": RetryConfig(
        max_retries=2,
        initial_delay_seconds=5.0,
    ),
    # Outbound webhooks: one quick retry
    "webhook": RetryConfig(
        max_retries=1,
        initial_delay_seconds=0.5,
        max_delay_seconds=1.0,
        per_attempt_timeout_seconds=5.0,
        jitter=True,
    ),
    # Must-succeed operations
    "critical": RetryConfig(
        max_retries=15,
        initial_delay_seconds=1.0,
        max_delay_seconds=120.0,
        multiplier=2.0,
        per_attempt_timeout_seconds=60.0,
        jitter=True,
        respect_retry_after=True,
    ),
    "fast_fail": RetryConfig(
        max_retries=1,
        initial_delay_seconds=0.05,
        max_delay_seconds=0.2,
        per_attempt_timeout_seconds=1.0,
        jitter=True,
    ),
}


def preset_config(name: str, **overrides: Any) -> RetryConfig:
    """
    Look up a preset and apply field overrides.

    Args:
        name: Preset name (see RETRY_PRESETS)
        **overrides: RetryConfig fields to replace

    Returns:
        The resulting configuration

    Raises:
        KeyError: Unknown preset name
    """
    try:
        config = RETRY_PRESETS[name]
    except KeyError:
        known = ", ".join(sorted(RETRY_PRESETS))
        raise KeyError(f"unknown retry preset {name!r} (known: {known})") from None
    return replace(config, **overrides) if overrides else config


def create_retry_client(
    *,
    preset: str = "default",
    max_retries: Optional[int] = None,
    config: Optional[RetryConfig] = None,
    base_url: Optional[str] = None,
    proxy: Optional[str] = None,
    timeout: float = 5.0,
    on_retry: Optional[OnRetryHook] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """
    Create a retry-enabled async HTTP client.

    Args:
        preset: Preset name used when no config is given. Default: "default"
        max_retries: Maximum retries (overrides the preset or config)
        config: Custom retry config
        base_url: Base URL for requests
        proxy: Proxy URL to use
        timeout: Request timeout in seconds. Default: 5.0
        on_retry: Callback before each retry attempt
        transport: Inner transport (default: httpx.AsyncHTTPTransport)
        **client_kwargs: Additional arguments for httpx.AsyncClient

    Returns:
        Retry-enabled async HTTP client

    Example:
        client = create_retry_client(
            preset="rate_limited",
            base_url="https://api.example.com",
        )
        response = await client.get("/data")
    """
    base_transport = transport or httpx.AsyncHTTPTransport(proxy=proxy)

    retry_transport = RetryTransport(
        base_transport,
        max_retries=max_retries,
        config=config or preset_config(preset),
        on_retry=on_retry,
    )

    return httpx.AsyncClient(
        transport=retry_transport,
        base_url=base_url or "",
        timeout=timeout,
        **client_kwargs,
    )


def create_api_retry_transport(
    api_id: str,
    preset: str = "default",
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetryHook] = None,
) -> Callable[[httpx.AsyncBaseTransport], RetryTransport]:
    """
    Create a retry transport wrapper function for a specific API.

    Args:
        api_id: Identifier recorded in the logger name (fetch_backoff.<api_id>)
        preset: Preset name used when no config is given
        config: Custom retry config
        on_retry: Callback before each retry attempt

    Returns:
        Transport wrapper function

    Example:
        github_retry = create_api_retry_transport("github", preset="rate_limited")
        github_transport = github_retry(httpx.AsyncHTTPTransport())
    """
    base = config or preset_config(preset)
    if base.logger is None:
        base = replace(base, logger=LoggingSink(logging.getLogger(f"fetch_backoff.{api_id}")))

    def wrapper(inner: httpx.AsyncBaseTransport) -> RetryTransport:
        return RetryTransport(inner, config=base, on_retry=on_retry)

    return wrapper
