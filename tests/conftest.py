"""
Test Configuration Module
Provides fixtures and shared test utilities
"""

import pytest
import asyncio
import json
import sys
import os
from typing import Any, List, Optional

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from ticker_feed.config.settings import FeedSettings
from ticker_feed.core.codec import parse_ticker


class FakeSocket:
    """In-memory stand-in for a websockets client connection"""

    def __init__(self):
        self.sent: List[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("socket is closed")
        self.sent.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def push(self, frame: Any) -> None:
        """Deliver a frame from the server (dicts/lists are JSON-encoded)"""
        if isinstance(frame, (dict, list)):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def drop(self, error: Optional[BaseException] = None) -> None:
        """Server-side close: clean when error is None, abrupt otherwise"""
        self.closed = True
        self._inbox.put_nowait(error)

    @property
    def sent_json(self) -> List[Any]:
        return [json.loads(s) for s in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    """Connector returning FakeSockets, or refusing while ``failing`` is set"""

    def __init__(self):
        self.sockets: List[FakeSocket] = []
        self.urls: List[str] = []
        self.failing = False

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.failing:
            raise OSError("connection refused")
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock


class FakeFetcher:
    """Polling fetcher recording the symbols of every call"""

    def __init__(self, tickers=None):
        self.calls: List[List[str]] = []
        self.tickers = list(tickers or [])
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def __call__(self, symbols):
        self.calls.append(list(symbols))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.tickers)


async def _wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds"""
    return _wait_until


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def fast_settings():
    """Settings with millisecond-scale timers"""
    return FeedSettings(
        host='test.local:9000',
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.08,
        poll_interval=0.05,
        send_queue_size=4,
        default_after_failures=1,
    )


@pytest.fixture
def btc_record():
    return {
        'symbol': 'BTC',
        'price': 67500,
        'change_24h': 2.5,
        'volume_24h': 28000000000,
        'high_24h': 68000,
        'low_24h': 66000,
    }


@pytest.fixture
def eth_record():
    return {
        'symbol': 'ETH',
        'price': 3450.0,
        'change24h': -1.2,
        'volume24h': 15000000000.0,
        'high24h': 3500.0,
        'low24h': 3400.0,
    }


@pytest.fixture
def btc_ticker(btc_record):
    return parse_ticker(btc_record)


@pytest.fixture
def fetcher(btc_record):
    return FakeFetcher([parse_ticker(dict(btc_record, price=67400))])
