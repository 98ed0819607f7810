"""
Dynamic Configuration for the Ticker Feed

pydantic-settings based configuration. Every tunable of the streaming client
can be overridden through ``FEED_``-prefixed environment variables or a
``.env`` file; defaults come from ``ticker_feed.config.constants``.

Usage:
    from ticker_feed.config.settings import get_settings

    settings = get_settings()
    settings.ws_url          # ws://localhost:8080/ws/market

    # Override via environment:
    # export FEED_HOST=prices.example.com
    # export FEED_SECURE=true
    # export FEED_POLL_INTERVAL=5
"""

from typing import Any, Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from ticker_feed.config.constants import (
    DEFAULT_FEED_HOST,
    WS_MARKET_PATH,
    REST_PRICES_PATH,
    RECONNECT_BASE_DELAY_SEC,
    RECONNECT_MAX_DELAY_SEC,
    RECONNECT_BACKOFF_MULTIPLIER,
    SEND_QUEUE_SIZE,
    POLL_INTERVAL_SEC,
    REQUEST_TIMEOUT_SEC,
    DEFAULT_AFTER_FAILURES,
    DEFAULT_TICKERS,
)
from ticker_feed.utils.exceptions import ConfigurationError


class FeedSettings(BaseSettings):
    """
    Streaming client configuration.

    All parameters can be overridden via environment variables.
    Example: FEED_RECONNECT_MAX_DELAY=60 ticker-feed BTCUSDT
    """

    model_config = SettingsConfigDict(
        env_prefix='FEED_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ============================================================================
    # ENDPOINTS
    # ============================================================================

    host: str = Field(
        default=DEFAULT_FEED_HOST,
        description="Backend host[:port] serving both the socket and the polling endpoint",
        min_length=1
    )

    secure: bool = Field(
        default=False,
        description="Use wss:// and https:// instead of ws:// and http://"
    )

    websocket_url: Optional[str] = Field(
        default=None,
        description="Explicit realtime socket URL (bypasses host resolution)"
    )

    prices_url: Optional[str] = Field(
        default=None,
        description="Explicit polling endpoint URL (bypasses host resolution)"
    )

    # ============================================================================
    # RECONNECT BACKOFF
    # ============================================================================

    reconnect_base_delay: float = Field(
        default=RECONNECT_BASE_DELAY_SEC,
        description="Delay before the first reconnect attempt (seconds)",
        gt=0.0
    )

    reconnect_max_delay: float = Field(
        default=RECONNECT_MAX_DELAY_SEC,
        description="Backoff ceiling (seconds)",
        gt=0.0
    )

    reconnect_multiplier: float = Field(
        default=RECONNECT_BACKOFF_MULTIPLIER,
        description="Growth factor applied to the delay after each failed attempt",
        ge=1.0,
        le=10.0
    )

    # ============================================================================
    # OUTBOUND QUEUE
    # ============================================================================

    send_queue_size: int = Field(
        default=SEND_QUEUE_SIZE,
        description="Maximum sends buffered while the socket is down (oldest dropped first)",
        ge=0,
        le=10000
    )

    # ============================================================================
    # POLLING FALLBACK
    # ============================================================================

    poll_interval: float = Field(
        default=POLL_INTERVAL_SEC,
        description="Fallback polling interval (seconds)",
        gt=0.0
    )

    request_timeout: float = Field(
        default=REQUEST_TIMEOUT_SEC,
        description="Total timeout of one polling request (seconds)",
        gt=0.0
    )

    default_after_failures: int = Field(
        default=DEFAULT_AFTER_FAILURES,
        description="Consecutive failed fetches before the default ticker set is published",
        ge=1
    )

    default_tickers: List[Dict[str, Any]] = Field(
        default_factory=lambda: [dict(t) for t in DEFAULT_TICKERS],
        description="Static ticker set published (flagged stale) when both transports fail"
    )

    def model_post_init(self, __context):
        """Validate cross-field constraints after all fields are set"""
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ConfigurationError(
                f"Backoff ceiling ({self.reconnect_max_delay}s) is below the "
                f"base reconnect delay ({self.reconnect_base_delay}s)",
                error_code='INVALID_BACKOFF',
                details={
                    'reconnect_base_delay': self.reconnect_base_delay,
                    'reconnect_max_delay': self.reconnect_max_delay,
                }
            )

    @property
    def ws_url(self) -> str:
        """Realtime socket URL resolved from the configured host"""
        if self.websocket_url:
            return self.websocket_url
        scheme = 'wss' if self.secure else 'ws'
        return f"{scheme}://{self.host}{WS_MARKET_PATH}"

    @property
    def rest_url(self) -> str:
        """Polling endpoint URL resolved from the configured host"""
        if self.prices_url:
            return self.prices_url
        scheme = 'https' if self.secure else 'http'
        return f"{scheme}://{self.host}{REST_PRICES_PATH}"


# Singleton instance
_settings: Optional[FeedSettings] = None


def get_settings() -> FeedSettings:
    """
    Get singleton settings instance.

    Example:
        >>> settings = get_settings()
        >>> print(settings.poll_interval)
        10.0
    """
    global _settings
    if _settings is None:
        _settings = FeedSettings()
    return _settings


def reload_settings() -> FeedSettings:
    """
    Force reload settings from environment.

    Returns:
        FeedSettings: New settings instance
    """
    global _settings
    _settings = FeedSettings()
    return _settings


__all__ = ['get_settings', 'reload_settings', 'FeedSettings']
