"""
Retry transport wrapper for httpx's compose pattern.
"""
from fetch_backoff import (
    CancelScope,
    RetryConfig,
    RetryError,
    RetryInfo,
)
from .transport import RetryTransport
from .factory import (
    RETRY_PRESETS,
    create_api_retry_transport,
    create_retry_client,
    preset_config,
)


__all__ = [
    # Re-exported types from base package
    "CancelScope",
    "RetryConfig",
    "RetryError",
    "RetryInfo",
    # Transport wrapper
    "RetryTransport",
    # Factory functions
    "RETRY_PRESETS",
    "create_api_retry_transport",
    "create_retry_client",
    "preset_config",
]

__version__ = "1.0.0"
