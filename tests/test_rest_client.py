"""
Tests for the TickerRestClient
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from ticker_feed.core.rest_client import TickerRestClient
from ticker_feed.utils.exceptions import APIError, APITimeoutError, InvalidResponseError


URL = 'http://test.local:9000/api/v1/prices'


def mock_session(status=200, body=''):
    """Session whose get() yields a response with the given status and body"""
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)

    request = MagicMock()
    request.__aenter__ = AsyncMock(return_value=response)
    request.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=request)
    return session


@pytest.fixture
def client():
    return TickerRestClient(URL, timeout=1.0)


@pytest.mark.asyncio
class TestFetchTickers:
    """Test the prices request"""

    async def test_fetch_success(self, client, btc_record, eth_record):
        """Test a 200 response is decoded into tickers"""
        session = mock_session(body=json.dumps([btc_record, eth_record]))

        with patch.object(client, '_get_session', return_value=session):
            tickers = await client.fetch_tickers()

        assert [t.symbol for t in tickers] == ['BTC', 'ETH']
        session.get.assert_called_once_with(URL, params=None)

    async def test_symbols_query_parameter(self, client):
        """Test wanted symbols are sent as a comma-separated list"""
        session = mock_session(body='[]')

        with patch.object(client, '_get_session', return_value=session):
            await client.fetch_tickers(['BTCUSDT', 'ETHUSDT'])

        session.get.assert_called_once_with(URL, params={'symbols': 'BTCUSDT,ETHUSDT'})

    async def test_http_error_status(self, client):
        session = mock_session(status=503, body='Service Unavailable')

        with patch.object(client, '_get_session', return_value=session):
            with pytest.raises(APIError) as exc_info:
                await client.fetch_tickers()

        assert exc_info.value.status_code == 503
        assert exc_info.value.response_data == 'Service Unavailable'

    async def test_network_error(self, client):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("connection refused"))

        with patch.object(client, '_get_session', return_value=session):
            with pytest.raises(APIError) as exc_info:
                await client.fetch_tickers()

        assert isinstance(exc_info.value.original_error, aiohttp.ClientConnectionError)

    async def test_timeout(self, client):
        """Test request timeouts map to APITimeoutError"""
        session = MagicMock()
        session.get = MagicMock(side_effect=asyncio.TimeoutError())

        with patch.object(client, '_get_session', return_value=session):
            with pytest.raises(APITimeoutError):
                await client.fetch_tickers()

    async def test_invalid_body(self, client):
        """Test a body that is not a ticker list"""
        session = mock_session(body='{"error": "maintenance"}')

        with patch.object(client, '_get_session', return_value=session):
            with pytest.raises(InvalidResponseError):
                await client.fetch_tickers()


@pytest.mark.asyncio
class TestSessionLifecycle:

    async def test_session_created_lazily_and_reused(self, client):
        assert client._session is None

        session = client._get_session()

        assert client._get_session() is session
        await client.close()

    async def test_close(self, client):
        session = client._get_session()

        await client.close()

        assert session.closed
        assert client._session is None

    async def test_close_without_session(self, client):
        await client.close()

        assert client._session is None
