"""
Constants Module for the Ticker Feed

Single source of truth for the fixed parameters of the streaming client.
Values that operators may want to tune at runtime live in
``ticker_feed.config.settings`` and default to the constants below.

Key Principles:
- All constants are Final (immutable)
- Grouped by concern with banner comments
- Durations are in seconds
"""

from typing import Final, Dict, FrozenSet, Tuple, Union


# ============================================================================
# 1. ENDPOINTS
# ============================================================================
# The realtime socket and the polling endpoint are served by the same backend.
# FEED_HOST selects it; without one we target the local development backend.

DEFAULT_FEED_HOST: Final[str] = 'localhost:8080'

WS_MARKET_PATH: Final[str] = '/ws/market'
REST_PRICES_PATH: Final[str] = '/api/v1/prices'


# ============================================================================
# 2. RECONNECT BACKOFF
# ============================================================================
# Delay doubles after each failed attempt: 1s, 2s, 4s ... capped at 30s.
# A successful open resets the delay to the base value.

RECONNECT_BASE_DELAY_SEC: Final[float] = 1.0
RECONNECT_MAX_DELAY_SEC: Final[float] = 30.0
RECONNECT_BACKOFF_MULTIPLIER: Final[float] = 2.0

# Websocket client keepalive (handled by the websockets library)
WS_PING_INTERVAL_SEC: Final[float] = 20.0
WS_CLOSE_TIMEOUT_SEC: Final[float] = 10.0


# ============================================================================
# 3. OUTBOUND QUEUE
# ============================================================================
# Sends attempted while the socket is down are buffered and flushed on open.
# Oldest entries are dropped once the cap is reached.

SEND_QUEUE_SIZE: Final[int] = 32


# ============================================================================
# 4. POLLING FALLBACK
# ============================================================================

POLL_INTERVAL_SEC: Final[float] = 10.0
REQUEST_TIMEOUT_SEC: Final[float] = 10.0

# Consecutive failed fetches (with realtime down) before the default set is
# published. 1 = publish defaults on the first failure.
DEFAULT_AFTER_FAILURES: Final[int] = 1


# ============================================================================
# 5. DEFAULT TICKER SET
# ============================================================================
# Last-resort snapshot published (flagged stale) when neither transport can
# deliver data.

DEFAULT_TICKERS: Final[Tuple[Dict[str, Union[str, float]], ...]] = (
    {'symbol': 'BTCUSDT', 'price': 67500.0, 'change_24h': 2.5,
     'volume_24h': 28000000000.0, 'high_24h': 68000.0, 'low_24h': 66000.0},
    {'symbol': 'ETHUSDT', 'price': 3450.0, 'change_24h': -1.2,
     'volume_24h': 15000000000.0, 'high_24h': 3500.0, 'low_24h': 3400.0},
    {'symbol': 'BNBUSDT', 'price': 580.0, 'change_24h': 0.8,
     'volume_24h': 1200000000.0, 'high_24h': 590.0, 'low_24h': 570.0},
    {'symbol': 'SOLUSDT', 'price': 145.0, 'change_24h': 5.8,
     'volume_24h': 2500000000.0, 'high_24h': 150.0, 'low_24h': 138.0},
    {'symbol': 'XRPUSDT', 'price': 0.52, 'change_24h': -0.5,
     'volume_24h': 1500000000.0, 'high_24h': 0.53, 'low_24h': 0.51},
)


# ============================================================================
# 6. WIRE FORMAT
# ============================================================================

SUBSCRIBE_COMMAND: Final[str] = 'subscribe'
UNSUBSCRIBE_COMMAND: Final[str] = 'unsubscribe'

# Object frames with one of these "type" values are dropped without being
# counted as malformed: acknowledgments, keepalives and the backend's
# single-symbol price broadcast
CONTROL_FRAME_TYPES: Final[FrozenSet[str]] = frozenset({
    'subscribed',
    'unsubscribed',
    'ack',
    'response',
    'pong',
    'heartbeat',
    'price',
})


# ============================================================================
# 7. LOGGING CONFIGURATION
# ============================================================================

# Logging level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'
LOG_LEVEL: Final[str] = 'INFO'

LOG_FILE_PATH: Final[str] = 'logs/ticker_feed.log'

# 10 MB per file, 5 backups
MAX_LOG_FILE_SIZE: Final[int] = 10 * 1024 * 1024
LOG_BACKUP_COUNT: Final[int] = 5

# JSON structured logging for the file handler
STRUCTURED_LOGGING: Final[bool] = True
