"""
Tests for fetch_compose_backoff factory functions.

Test coverage includes:
- Equivalence partitioning: Presets and custom configs
- Boundary testing: Default values and overrides
"""

import logging

import pytest
from unittest.mock import MagicMock
import httpx

from fetch_compose_backoff.factory import (
    RETRY_PRESETS,
    create_api_retry_transport,
    create_retry_client,
    preset_config,
)
from fetch_compose_backoff.transport import RetryTransport
from fetch_backoff import LoggingSink, RetryConfig


class TestRetryPresets:
    """Tests for RETRY_PRESETS."""

    def test_has_all_presets(self):
        """Should define every named preset."""
        assert set(RETRY_PRESETS) == {
            "default",
            "realtime",
            "background",
            "rate_limited",
            "microservice",
            "aggressive",
            "conservative",
            "webhook",
            "critical",
            "fast_fail",
        }

    def test_default_matches_retry_config(self):
        """Should use the RetryConfig defaults."""
        assert RETRY_PRESETS["default"] == RetryConfig()

    def test_rate_limited_respects_retry_after(self):
        """Should honour Retry-After for rate-limited APIs."""
        preset = RETRY_PRESETS["rate_limited"]
        assert preset.respect_retry_after is True
        assert preset.max_retries == 5

    def test_realtime_fails_fast(self):
        """Should use short delays and a per-attempt timeout."""
        preset = RETRY_PRESETS["realtime"]
        assert preset.max_retries == 2
        assert preset.max_delay_seconds == 1.0
        assert preset.per_attempt_timeout_seconds == 3.0

    def test_background_is_persistent(self):
        """Should use many retries with long waits."""
        preset = RETRY_PRESETS["background"]
        assert preset.max_retries == 10
        assert preset.multiplier == 3.0
        assert preset.max_delay_seconds == 60.0


class TestPresetConfig:
    """Tests for preset_config function."""

    def test_returns_preset(self):
        """Should return the named preset."""
        assert preset_config("critical") is RETRY_PRESETS["critical"]

    def test_applies_overrides(self):
        """Should replace the given fields only."""
        config = preset_config("microservice", max_retries=7)

        assert config.max_retries == 7
        assert config.initial_delay_seconds == RETRY_PRESETS["microservice"].initial_delay_seconds
        assert RETRY_PRESETS["microservice"].max_retries == 3

    def test_rejects_unknown_preset(self):
        """Should list known presets for an unknown name."""
        with pytest.raises(KeyError, match="unknown retry preset"):
            preset_config("turbo")


class TestCreateRetryClient:
    """Tests for create_retry_client function."""

    def test_creates_async_client(self):
        """Should create an httpx.AsyncClient with a retry transport."""
        client = create_retry_client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        assert isinstance(client, httpx.AsyncClient)
        assert isinstance(client._transport, RetryTransport)

    def test_uses_preset(self):
        """Should configure the transport from the preset."""
        client = create_retry_client(
            preset="webhook",
            transport=httpx.MockTransport(lambda r: httpx.Response(200)),
        )

        assert client._transport.config.max_retries == 1
        assert client._transport.config.per_attempt_timeout_seconds == 5.0

    def test_config_and_max_retries_override_preset(self):
        """Should prefer an explicit config and max_retries."""
        client = create_retry_client(
            preset="critical",
            config=RetryConfig(initial_delay_seconds=0.5),
            max_retries=4,
            transport=httpx.MockTransport(lambda r: httpx.Response(200)),
        )

        assert client._transport.config.max_retries == 4
        assert client._transport.config.initial_delay_seconds == 0.5

    def test_sets_base_url(self):
        """Should pass the base URL through."""
        client = create_retry_client(
            base_url="https://api.example.com",
            transport=httpx.MockTransport(lambda r: httpx.Response(200)),
        )

        assert client.base_url.host == "api.example.com"

    @pytest.mark.asyncio
    async def test_retries_through_client(self):
        """Should retry through the client API."""
        statuses = iter([503, 200])
        client = create_retry_client(
            config=RetryConfig(initial_delay_seconds=0.001, jitter=False),
            base_url="https://api.example.com",
            transport=httpx.MockTransport(lambda r: httpx.Response(next(statuses))),
        )

        async with client:
            response = await client.get("/health")

        assert response.status_code == 200


class TestCreateApiRetryTransport:
    """Tests for create_api_retry_transport function."""

    def test_returns_wrapper(self):
        """Should return a callable producing RetryTransport."""
        wrapper = create_api_retry_transport("github", preset="rate_limited")
        inner = MagicMock(spec=httpx.AsyncBaseTransport)

        transport = wrapper(inner)

        assert isinstance(transport, RetryTransport)
        assert transport.config.respect_retry_after is True

    def test_names_logger_after_api(self):
        """Should log through fetch_backoff.<api_id>."""
        wrapper = create_api_retry_transport("github")

        transport = wrapper(MagicMock(spec=httpx.AsyncBaseTransport))

        assert isinstance(transport.config.logger, LoggingSink)
        assert transport.config.logger.logger is logging.getLogger("fetch_backoff.github")

    def test_keeps_custom_logger(self):
        """Should keep a logger already present in the config."""
        sink = LoggingSink(logging.getLogger("my_app"))
        wrapper = create_api_retry_transport("github", config=RetryConfig(logger=sink))

        transport = wrapper(MagicMock(spec=httpx.AsyncBaseTransport))

        assert transport.config.logger is sink

    def test_passes_on_retry(self):
        """Should attach the on_retry hook."""
        hook = MagicMock()
        wrapper = create_api_retry_transport("github", on_retry=hook)

        transport = wrapper(MagicMock(spec=httpx.AsyncBaseTransport))

        assert transport.config.on_retry is hook
