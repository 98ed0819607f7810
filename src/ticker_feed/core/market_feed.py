"""
Market Feed - Realtime/Polling Orchestrator

One feed session per application: every consumer subscribes through the
same MarketFeed and receives the same stream of TickerBatch deliveries,
whichever transport is currently authoritative.

Policy:
-------
1. Realtime is authoritative while the connection is OPEN
2. Polling fallback is armed whenever the connection is not OPEN and
   disarmed the instant it opens; poll results that land while OPEN are
   dropped, so the two transports never deliver concurrently
3. On open the full wanted-set is sent as one subscribe command before the
   feed is declared live
4. When fallback fetches keep failing with realtime down, the configured
   default set is published flagged stale (FeedSource.DEFAULT)

Usage:
------
```python
async with MarketFeed() as feed:
    feed.register_tickers_handler('dashboard', render)
    await feed.subscribe(['BTCUSDT', 'ETHUSDT'])
    ...
```

Teardown (close) cancels the reconnect timer, then the polling timer, then
closes the socket and clears the registry. No handler is called after
close() returns.
"""

from typing import Awaitable, Callable, Dict, Iterable, List, Optional
import inspect

from ticker_feed.config.constants import SUBSCRIBE_COMMAND
from ticker_feed.config.settings import FeedSettings, get_settings
from ticker_feed.core.codec import (
    ControlFrame,
    MalformedFrame,
    decode,
    encode_command,
    parse_ticker,
)
from ticker_feed.core.connection_manager import ConnectionEvent, ConnectionManager, Connector
from ticker_feed.core.models import ConnectionState, FeedSource, Ticker, TickerBatch
from ticker_feed.core.polling_fallback import PollingFallback
from ticker_feed.core.rest_client import TickerRestClient
from ticker_feed.core.subscription_registry import SubscriptionRegistry
from ticker_feed.utils.logger import get_logger, log_error_with_context
from ticker_feed.utils.exceptions import ConfigurationError, FrameDecodeError


logger = get_logger(__name__)


TickerFetcher = Callable[[List[str]], Awaitable[List[Ticker]]]


class MarketFeed:
    """
    Composes ConnectionManager, SubscriptionRegistry and PollingFallback into
    a single ticker stream.
    """

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        connector: Optional[Connector] = None,
        fetcher: Optional[TickerFetcher] = None,
    ):
        """
        Args:
            settings: Feed configuration (defaults to get_settings())
            connector: Websocket factory override, mainly for tests
            fetcher: Coroutine function ``fetcher(symbols) -> List[Ticker]``
                     replacing the REST client, mainly for tests
        """
        self.settings = settings or get_settings()

        self._rest_client: Optional[TickerRestClient] = None
        if fetcher is None:
            self._rest_client = TickerRestClient(self.settings.rest_url, timeout=self.settings.request_timeout)
            fetcher = self._rest_client.fetch_tickers
        self._fetch_tickers = fetcher

        self._default_tickers = self._load_default_tickers(self.settings.default_tickers)

        self.connection = ConnectionManager(
            self.settings.ws_url,
            connector=connector,
            base_delay=self.settings.reconnect_base_delay,
            max_delay=self.settings.reconnect_max_delay,
            multiplier=self.settings.reconnect_multiplier,
            send_queue_size=self.settings.send_queue_size,
        )
        self.registry = SubscriptionRegistry(self.connection)
        self.poller = PollingFallback(
            fetch=self._poll_fetch,
            on_tickers=self._on_poll_tickers,
            on_failure=self._on_poll_failure,
            interval=self.settings.poll_interval,
        )

        self.connection.register_handler(ConnectionEvent.OPEN, self._on_open)
        self.connection.register_handler(ConnectionEvent.MESSAGE, self._on_message)
        self.connection.register_handler(ConnectionEvent.CLOSE, self._on_close)
        self.connection.register_handler(ConnectionEvent.ERROR, self._on_error)

        self._tickers_handlers: Dict[str, Callable[[TickerBatch], object]] = {}
        self._latest: Dict[str, Ticker] = {}
        self._live = False
        self._started = False
        self._closed = False
        self._malformed_frames = 0

        logger.info(
            f"MarketFeed initialized - realtime: {self.settings.ws_url}, "
            f"poll every {self.settings.poll_interval}s"
        )

    @staticmethod
    def _load_default_tickers(records: Iterable[dict]) -> List[Ticker]:
        try:
            return [parse_ticker(record) for record in records]
        except FrameDecodeError as e:
            raise ConfigurationError(
                f"Invalid default ticker set: {e.message}",
                error_code='INVALID_DEFAULT_TICKERS',
                original_error=e
            ) from e

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        """True once the realtime transport is open and subscriptions are replayed"""
        return self._live

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def malformed_frames(self) -> int:
        return self._malformed_frames

    def register_tickers_handler(self, name: str, handler: Callable[[TickerBatch], object]) -> None:
        """
        Register a consumer callback for ticker deliveries.

        Args:
            name: Unique handler name (e.g. 'dashboard')
            handler: Function or coroutine taking a TickerBatch
        """
        self._tickers_handlers[name] = handler
        logger.info(f"Registered tickers handler: {name}")

    def unregister_tickers_handler(self, name: str) -> None:
        if self._tickers_handlers.pop(name, None) is not None:
            logger.info(f"Unregistered tickers handler: {name}")

    def get_latest(self, symbol: str) -> Optional[Ticker]:
        """Latest live ticker for a symbol (default data is never cached)"""
        return self._latest.get(symbol.strip().upper())

    def get_all(self) -> Dict[str, Ticker]:
        return dict(self._latest)

    async def start(self) -> None:
        """Bootstrap with a fallback fetch and start connecting the realtime transport"""
        if self._closed:
            raise RuntimeError("MarketFeed is closed")
        if self._started:
            logger.warning("MarketFeed already started")
            return
        self._started = True

        if not self.connection.is_open:
            self.poller.arm()
        await self.connection.connect()
        logger.info("✅ MarketFeed started")

    async def subscribe(self, symbols: Iterable[str]) -> List[str]:
        """Add symbols to the wanted-set; returns the newly wanted ones"""
        return await self.registry.add(symbols)

    async def unsubscribe(self, symbols: Iterable[str]) -> List[str]:
        """Release symbols; returns the ones no consumer wants any more"""
        return await self.registry.remove(symbols)

    async def close(self) -> None:
        """Tear the session down. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._live = False
        logger.info("Shutting down MarketFeed...")

        self.connection.cancel_reconnect()
        await self.poller.shutdown()
        await self.connection.disconnect()
        self.registry.clear()
        self._tickers_handlers.clear()

        if self._rest_client is not None:
            await self._rest_client.close()

        logger.info("MarketFeed stopped")

    async def __aenter__(self) -> "MarketFeed":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    async def _on_open(self) -> None:
        self.poller.disarm()
        if self._closed:
            # handshake finished while close() was tearing down
            return

        wanted = self.registry.snapshot()
        if wanted:
            await self.connection.send(encode_command(SUBSCRIBE_COMMAND, wanted), buffer=False)
            logger.info(f"Replayed subscriptions: {wanted}")

        self._live = True
        logger.info("✅ Feed live (realtime)", extra={'symbols': len(wanted)})

    async def _on_message(self, raw) -> None:
        frame = decode(raw)

        if isinstance(frame, MalformedFrame):
            self._malformed_frames += 1
            logger.warning(f"Dropping malformed frame: {frame.reason}")
            return
        if isinstance(frame, ControlFrame):
            logger.debug(f"Control frame: {frame.type}")
            return

        if not self.connection.is_open:
            return
        await self._publish(frame.tickers, FeedSource.REALTIME)

    def _on_close(self, reason: str) -> None:
        was_live = self._live
        self._live = False
        if self._closed:
            return
        if was_live:
            logger.warning(f"⚠️ Realtime feed lost ({reason}) - falling back to polling")
        self.poller.arm()

    def _on_error(self, error: Exception) -> None:
        logger.warning(f"Realtime transport error: {error}")

    # ------------------------------------------------------------------
    # Polling fallback
    # ------------------------------------------------------------------

    async def _poll_fetch(self) -> List[Ticker]:
        return await self._fetch_tickers(self.registry.snapshot())

    def _polling_authoritative(self) -> bool:
        return not self._closed and not self.connection.is_open

    async def _on_poll_tickers(self, tickers: List[Ticker]) -> None:
        if not self._polling_authoritative():
            logger.debug("Dropping poll result - realtime is authoritative")
            return
        await self._publish(tickers, FeedSource.POLLING)

    async def _on_poll_failure(self, consecutive_failures: int, error: Exception) -> None:
        if not self._polling_authoritative():
            return
        if consecutive_failures >= self.settings.default_after_failures:
            logger.warning(
                f"Both transports unavailable - publishing default ticker set (stale) "
                f"after {consecutive_failures} failed fetches"
            )
            await self._publish(self._default_tickers, FeedSource.DEFAULT)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _publish(self, tickers: Iterable[Ticker], source: FeedSource) -> None:
        batch = TickerBatch(tickers=tuple(tickers), source=source)
        if not batch.tickers or self._closed:
            return

        if not batch.stale:
            for ticker in batch.tickers:
                self._latest[ticker.symbol] = ticker

        for name, handler in list(self._tickers_handlers.items()):
            try:
                result = handler(batch)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_error_with_context(
                    logger, f"Tickers handler '{name}' failed", e,
                    handler=name, source=source.value, tickers=len(batch)
                )
