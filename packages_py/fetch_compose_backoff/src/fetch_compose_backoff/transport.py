"""
Retry transport wrapper for httpx
"""
from dataclasses import replace
from typing import Optional

import httpx

from fetch_backoff import (
    CancelScope,
    OnRetryHook,
    RetryConfig,
    RetryExecutor,
)


class RetryTransport(httpx.AsyncBaseTransport):
    """
    Retry transport wrapper for httpx.

    Wraps another transport and applies retry logic to every request.
    Anywhere an ``httpx.AsyncBaseTransport`` is accepted, this transport
    can be used instead.

    Pass a CancelScope per request through the ``cancel_scope`` extension
    and a body factory through ``body_factory``:

        await client.post(
            "/upload",
            content=open_chunks(),
            extensions={"cancel_scope": scope, "body_factory": open_chunks},
        )

    Example:
        base = httpx.AsyncHTTPTransport()
        transport = RetryTransport(base, max_retries=3)
        client = httpx.AsyncClient(transport=transport)
    """

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        *,
        max_retries: Optional[int] = None,
        config: Optional[RetryConfig] = None,
        on_retry: Optional[OnRetryHook] = None,
    ) -> None:
        """
        Create a new RetryTransport.

        Args:
            inner: The wrapped transport performing each exchange
            max_retries: Maximum retries (overrides the config value)
            config: Retry configuration
            on_retry: Callback before each retry (overrides the config value)
        """
        self._inner = inner

        config = config or RetryConfig()
        if max_retries is not None:
            config = replace(config, max_retries=max_retries)
        if on_retry is not None:
            config = replace(config, on_retry=on_retry)

        self._executor = RetryExecutor(inner, config)

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    @property
    def config(self) -> RetryConfig:
        return self._executor.config

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Handle an async HTTP request with retry logic"""
        return await self._executor.execute(request)

    async def send(
        self,
        request: httpx.Request,
        scope: Optional[CancelScope] = None,
    ) -> httpx.Response:
        """Send a request under an explicit cancellation scope."""
        return await self._executor.execute(request, scope)

    async def aclose(self) -> None:
        """Close the transport"""
        await self._inner.aclose()
