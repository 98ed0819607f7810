"""
Tests for the MarketFeed orchestrator
"""

import asyncio
import pytest

from ticker_feed.config.settings import FeedSettings
from ticker_feed.core.market_feed import MarketFeed
from ticker_feed.core.models import ConnectionState, FeedSource
from ticker_feed.utils.exceptions import APIError, ConfigurationError


def feed_tasks():
    return [
        task for task in asyncio.all_tasks()
        if task.get_name().startswith(('ws_', 'poll_')) and not task.done()
    ]


@pytest.fixture
def feed(fast_settings, connector, fetcher):
    return MarketFeed(fast_settings, connector=connector, fetcher=fetcher)


@pytest.fixture
def batches(feed):
    received = []
    feed.register_tickers_handler('test', received.append)
    return received


@pytest.mark.asyncio
class TestFailoverScenario:
    """Realtime -> polling -> realtime round trip"""

    async def test_stream_fallback_and_resubscribe(self, feed, batches, connector, fetcher,
                                                   btc_record, btc_ticker, wait_until):
        await feed.subscribe(['BTC'])
        await feed.start()
        await wait_until(lambda: feed.is_live)
        batches.clear()

        first = connector.last
        assert first.sent_json[0] == {'type': 'subscribe', 'symbols': ['BTC']}

        # realtime delivery
        first.push([dict(btc_record, change24h=2.5)])
        await wait_until(lambda: batches)
        await asyncio.sleep(0.02)

        assert len(batches) == 1
        assert batches[0].source is FeedSource.REALTIME
        assert batches[0].tickers == (btc_ticker,)

        # socket lost, polling takes over within one interval
        connector.failing = True
        calls_before = len(fetcher.calls)
        first.drop()
        await wait_until(lambda: len(batches) == 2, timeout=0.5)

        assert not feed.is_live
        assert batches[1].source is FeedSource.POLLING
        assert batches[1].tickers[0].price == 67400.0
        assert fetcher.calls[calls_before] == ['BTC']

        # socket back: subscription replayed first
        connector.failing = False
        await wait_until(lambda: feed.is_live)

        second = connector.last
        assert second is not first
        assert second.sent_json[0] == {'type': 'subscribe', 'symbols': ['BTC']}
        assert not feed.poller.armed
        await feed.close()

    async def test_default_set_when_fetch_also_fails(self, feed, batches, connector, fetcher, wait_until):
        await feed.subscribe(['BTC'])
        await feed.start()
        await wait_until(lambda: feed.is_live)
        batches.clear()

        connector.failing = True
        fetcher.error = APIError("backend down", status_code=502)
        connector.last.drop()
        await wait_until(lambda: batches, timeout=0.5)

        assert batches[0].source is FeedSource.DEFAULT
        assert batches[0].stale
        assert batches[0].symbols == ('BTCUSDT', 'ETHUSDT', 'BNBUSDT', 'SOLUSDT', 'XRPUSDT')
        assert feed.get_latest('BTCUSDT') is None
        await feed.close()


@pytest.mark.asyncio
class TestTransportExclusivity:

    async def test_no_fetches_while_open(self, feed, fetcher, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)
        calls = len(fetcher.calls)

        await asyncio.sleep(0.15)

        assert len(fetcher.calls) == calls
        assert not feed.poller.armed
        await feed.close()

    async def test_poll_result_dropped_while_open(self, feed, batches, btc_ticker, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)
        batches.clear()

        await feed._on_poll_tickers([btc_ticker])

        assert batches == []
        await feed.close()

    async def test_polling_bootstraps_while_connecting(self, feed, batches, connector, wait_until):
        connector.failing = True

        await feed.start()
        await wait_until(lambda: batches)

        assert batches[0].source is FeedSource.POLLING
        assert not batches[0].stale
        assert feed.poller.armed
        await feed.close()

    async def test_startup_with_both_transports_down(self, feed, batches, connector, fetcher, wait_until):
        connector.failing = True
        fetcher.error = APIError("backend down")

        await feed.start()
        await wait_until(lambda: batches)

        assert batches[0].stale
        assert len(batches[0]) == 5
        assert not feed.is_live
        await feed.close()

    async def test_default_set_waits_for_failure_threshold(self, fast_settings, connector, fetcher, wait_until):
        settings = fast_settings.model_copy(update={'default_after_failures': 3})
        feed = MarketFeed(settings, connector=connector, fetcher=fetcher)
        batches = []
        feed.register_tickers_handler('test', batches.append)
        connector.failing = True
        fetcher.error = APIError("backend down")

        await feed.start()
        await wait_until(lambda: feed.poller.consecutive_failures >= 2)
        assert batches == []

        await wait_until(lambda: batches)
        assert feed.poller.consecutive_failures >= 3
        assert batches[0].source is FeedSource.DEFAULT
        await feed.close()


@pytest.mark.asyncio
class TestSubscriptions:

    async def test_subscribe_while_open_sends_new_symbols(self, feed, connector, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)

        await feed.subscribe(['btc', 'eth'])
        await feed.subscribe(['BTC'])

        assert connector.last.sent_json == [{'type': 'subscribe', 'symbols': ['BTC', 'ETH']}]
        await feed.close()

    async def test_unsubscribe_while_open(self, feed, connector, wait_until):
        await feed.subscribe(['BTC', 'ETH'])
        await feed.start()
        await wait_until(lambda: feed.is_live)

        assert await feed.unsubscribe(['ETH']) == ['ETH']

        assert connector.last.sent_json == [
            {'type': 'subscribe', 'symbols': ['BTC', 'ETH']},
            {'type': 'unsubscribe', 'symbols': ['ETH']},
        ]
        await feed.close()

    async def test_changes_while_down_replay_net_result(self, feed, connector, wait_until):
        connector.failing = True
        await feed.start()
        await feed.subscribe(['BTC', 'ETH', 'SOL'])
        await feed.unsubscribe(['ETH'])

        connector.failing = False
        await wait_until(lambda: feed.is_live)

        assert connector.last.sent_json == [{'type': 'subscribe', 'symbols': ['BTC', 'SOL']}]
        await feed.close()

    async def test_no_subscribe_sent_for_empty_set(self, feed, connector, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)

        assert connector.last.sent == []
        await feed.close()


@pytest.mark.asyncio
class TestFrames:

    async def test_control_and_malformed_frames_are_not_published(self, feed, batches, connector,
                                                                  btc_record, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)
        batches.clear()
        sock = connector.last

        sock.push({'type': 'subscribed', 'symbols': ['BTC']})
        sock.push('garbage')
        sock.push([{'symbol': 'BTC', 'price': -5}])
        sock.push([btc_record])
        await wait_until(lambda: batches)

        assert len(batches) == 1
        assert feed.malformed_frames == 2
        assert feed.is_live
        await feed.close()

    async def test_empty_ticker_frame_is_not_published(self, feed, batches, connector, btc_record, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)
        batches.clear()

        connector.last.push([])
        connector.last.push([btc_record])
        await wait_until(lambda: batches)

        assert len(batches) == 1
        await feed.close()

    async def test_latest_cache(self, feed, connector, btc_record, eth_record, btc_ticker, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)

        connector.last.push([btc_record, eth_record])
        await wait_until(lambda: feed.get_latest('eth') is not None)

        assert feed.get_latest(' btc ') == btc_ticker
        assert set(feed.get_all()) == {'BTC', 'ETH'}
        await feed.close()

    async def test_handler_errors_are_isolated(self, feed, connector, btc_record, wait_until):
        received = []

        def broken(batch):
            raise RuntimeError("consumer bug")

        async def collect(batch):
            received.append(batch)

        feed.register_tickers_handler('broken', broken)
        feed.register_tickers_handler('collect', collect)
        await feed.start()
        await wait_until(lambda: feed.is_live)
        received.clear()

        connector.last.push([btc_record])
        connector.last.push([btc_record])
        await wait_until(lambda: len(received) == 2)

        assert feed.is_live
        await feed.close()

    async def test_unregister_tickers_handler(self, feed, batches, connector, btc_record, wait_until):
        seen = []
        feed.register_tickers_handler('extra', seen.append)
        await feed.start()
        await wait_until(lambda: feed.is_live)
        seen.clear()
        feed.unregister_tickers_handler('extra')

        connector.last.push([btc_record])
        await wait_until(lambda: any(b.source is FeedSource.REALTIME for b in batches))

        assert seen == []
        await feed.close()


@pytest.mark.asyncio
class TestLifecycle:

    async def test_close_tears_everything_down(self, feed, batches, connector, btc_record, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)
        sock = connector.last
        batches.clear()

        await feed.close()
        sock.push([btc_record])
        await asyncio.sleep(0.1)

        assert feed.closed
        assert sock.closed
        assert feed.state is ConnectionState.IDLE
        assert not feed.poller.armed
        assert not feed.connection.reconnect_pending
        assert feed_tasks() == []
        assert batches == []
        assert feed.registry.snapshot() == []
        assert connector.calls == 1

    async def test_close_during_fallback(self, feed, batches, connector, wait_until):
        connector.failing = True
        await feed.start()
        await wait_until(lambda: batches and connector.calls >= 2)

        await feed.close()
        calls = connector.calls
        count = len(batches)
        await asyncio.sleep(0.15)

        assert connector.calls == calls
        assert len(batches) == count
        assert feed_tasks() == []

    async def test_close_is_idempotent(self, feed, wait_until):
        await feed.start()
        await wait_until(lambda: feed.is_live)

        await feed.close()
        await feed.close()

        assert feed.closed

    async def test_start_after_close_raises(self, feed):
        await feed.close()

        with pytest.raises(RuntimeError):
            await feed.start()

    async def test_start_twice(self, feed, connector, wait_until):
        await feed.start()
        await feed.start()
        await wait_until(lambda: feed.is_live)

        assert connector.calls == 1
        await feed.close()

    async def test_async_context_manager(self, feed, wait_until):
        async with feed:
            await wait_until(lambda: feed.is_live)

        assert feed.closed
        assert feed_tasks() == []


class TestConstruction:

    def test_invalid_default_tickers(self, connector, fetcher):
        settings = FeedSettings(default_tickers=[{'symbol': 'BTCUSDT'}])

        with pytest.raises(ConfigurationError) as exc_info:
            MarketFeed(settings, connector=connector, fetcher=fetcher)

        assert exc_info.value.error_code == 'INVALID_DEFAULT_TICKERS'

    def test_urls_come_from_settings(self, fast_settings, fetcher):
        feed = MarketFeed(fast_settings, fetcher=fetcher)

        assert feed.connection.url == 'ws://test.local:9000/ws/market'
        assert feed.state is ConnectionState.IDLE
