"""
Ticker Feed command-line runner

Streams tickers for the given symbols and logs every delivery until
interrupted. Configuration comes from FEED_* environment variables (see
ticker_feed.config.settings); a few common ones can be overridden here.

Run with:
    ticker-feed BTCUSDT ETHUSDT --host prices.example.com:8080
"""

from typing import List, Optional
import argparse
import asyncio
import signal
import sys

from pydantic import ValidationError

from ticker_feed.config.settings import FeedSettings, get_settings
from ticker_feed.core.market_feed import MarketFeed
from ticker_feed.core.models import TickerBatch
from ticker_feed.utils.logger import get_logger, setup_logging
from ticker_feed.utils.exceptions import ConfigurationError, TickerFeedError


logger = get_logger(__name__)


class FeedRunner:
    """Owns one MarketFeed for the lifetime of the process"""

    def __init__(self, symbols: List[str], settings: FeedSettings):
        self.symbols = symbols
        self.settings = settings
        self.feed: Optional[MarketFeed] = None
        self._shutdown_event = asyncio.Event()
        self._loop = asyncio.get_running_loop()

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
        self._loop.call_soon_threadsafe(self._shutdown_event.set)

    @staticmethod
    def _log_batch(batch: TickerBatch) -> None:
        marker = " [STALE]" if batch.stale else ""
        for ticker in batch.tickers:
            logger.info(
                f"{batch.source.value:8} {ticker.symbol:10} {ticker.price:>14,.4f} "
                f"({ticker.change_24h:+.2f}%){marker}"
            )

    async def run(self) -> None:
        self.feed = MarketFeed(self.settings)
        self.feed.register_tickers_handler('cli', self._log_batch)
        try:
            await self.feed.start()
            if self.symbols:
                await self.feed.subscribe(self.symbols)
            await self._shutdown_event.wait()
        finally:
            await self.feed.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='ticker-feed', description="Stream ticker updates")
    parser.add_argument('symbols', nargs='*', help="Symbols to subscribe to (e.g. BTCUSDT)")
    parser.add_argument('--host', help="Backend host[:port] (overrides FEED_HOST)")
    parser.add_argument('--poll-interval', type=float, help="Fallback polling interval in seconds")
    parser.add_argument('--log-level', default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument('--log-file', default=None, help="Log file path ('' disables file logging)")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> FeedSettings:
    overrides = {}
    if args.host:
        overrides['host'] = args.host
    if args.poll_interval is not None:
        overrides['poll_interval'] = args.poll_interval
    settings = get_settings()
    if not overrides:
        return settings
    try:
        return FeedSettings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid command-line option: {e.errors()[0]['msg']}",
            error_code='INVALID_CLI_OPTION',
            details={'overrides': overrides},
            original_error=e
        ) from e


async def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point"""
    args = parse_args(argv)
    setup_logging(log_level=args.log_level, log_file=args.log_file)

    logger.info("Starting ticker feed...")
    runner = FeedRunner(args.symbols, build_settings(args))
    await runner.run()


def run() -> None:
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Feed stopped by user")
    except TickerFeedError as e:
        logger.error(f"Feed error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
