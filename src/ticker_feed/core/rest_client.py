"""
Ticker REST Client

Request/response access to the prices endpoint. Used by the polling
fallback both as the periodic fetch while the socket is down and as the
bootstrap fetch before the first open.
"""

from typing import Iterable, List, Optional
import asyncio

import aiohttp

from ticker_feed.config.constants import REQUEST_TIMEOUT_SEC
from ticker_feed.core.codec import decode_tickers
from ticker_feed.core.models import Ticker
from ticker_feed.utils.logger import get_logger
from ticker_feed.utils.exceptions import APIError, APITimeoutError


logger = get_logger(__name__)


class TickerRestClient:
    """Thin aiohttp wrapper around ``GET /api/v1/prices``"""

    def __init__(self, url: str, timeout: float = REQUEST_TIMEOUT_SEC):
        self.url = url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        # Created lazily so the client can be built outside a running loop
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    "User-Agent": "ticker-feed/1.0",
                    "Accept": "application/json"
                }
            )
        return self._session

    async def fetch_tickers(self, symbols: Iterable[str] = ()) -> List[Ticker]:
        """
        Fetch the current ticker list.

        Args:
            symbols: Wanted symbols, sent as ``?symbols=A,B``. Empty means the
                     backend's default list.

        Raises:
            APITimeoutError: Request exceeded the timeout
            APIError: Network failure or non-200 response
            InvalidResponseError: Body is not a valid ticker list
        """
        wanted = list(symbols)
        params = {'symbols': ','.join(wanted)} if wanted else None
        session = self._get_session()

        try:
            async with session.get(self.url, params=params) as response:
                body = await response.text()
                if response.status != 200:
                    raise APIError(
                        f"Prices endpoint returned HTTP {response.status}",
                        status_code=response.status,
                        response_data=body[:500],
                        details={'url': self.url}
                    )
        except asyncio.TimeoutError as e:
            raise APITimeoutError(
                f"Prices request timed out after {self.timeout}s",
                details={'url': self.url},
                original_error=e
            ) from e
        except aiohttp.ClientError as e:
            raise APIError(
                f"Prices request failed: {e}",
                details={'url': self.url},
                original_error=e
            ) from e

        tickers = decode_tickers(body)
        logger.debug(f"Fetched {len(tickers)} tickers from {self.url}")
        return tickers

    async def close(self) -> None:
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed aiohttp session")
        self._session = None
