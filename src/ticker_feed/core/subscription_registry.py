"""
Subscription Registry - Reference-Counted Wanted-Set

Tracks which symbols any consumer currently wants streamed. Several consumers
may ask for the same symbol; the symbol stays subscribed until the last of
them lets go.

Counter updates happen synchronously before the first await, so concurrent
add()/remove() calls on the event loop never interleave their bookkeeping.
While the transport is down nothing is sent: the full snapshot is replayed
on the next open, so the server always sees the net result of every
add/remove made in between.
"""

from typing import Dict, Iterable, List, Optional

from ticker_feed.config.constants import SUBSCRIBE_COMMAND, UNSUBSCRIBE_COMMAND
from ticker_feed.core.codec import encode_command, normalize_symbols
from ticker_feed.core.connection_manager import ConnectionManager
from ticker_feed.utils.logger import get_logger


logger = get_logger(__name__)


class SubscriptionRegistry:
    """Per-symbol reference counts plus the subscribe/unsubscribe side effects"""

    def __init__(self, connection: Optional[ConnectionManager] = None):
        """
        Args:
            connection: Transport used for live subscribe/unsubscribe commands.
                        Without one the registry only does bookkeeping.
        """
        self._connection = connection
        self._counts: Dict[str, int] = {}

    def __contains__(self, symbol: str) -> bool:
        return symbol.strip().upper() in self._counts

    def __len__(self) -> int:
        return len(self._counts)

    def ref_count(self, symbol: str) -> int:
        return self._counts.get(symbol.strip().upper(), 0)

    def snapshot(self) -> List[str]:
        """Full wanted-set, sorted for a deterministic replay order"""
        return sorted(self._counts)

    async def add(self, symbols: Iterable[str]) -> List[str]:
        """
        Increment reference counts.

        Returns:
            Symbols that went from 0 to 1 (sent as a subscribe command when OPEN)
        """
        added = []
        for symbol in normalize_symbols(symbols):
            count = self._counts.get(symbol, 0)
            self._counts[symbol] = count + 1
            if count == 0:
                added.append(symbol)

        if added:
            logger.info(f"Subscribed: {added} (wanted-set size {len(self._counts)})")
            await self._send(SUBSCRIBE_COMMAND, added)
        return added

    async def remove(self, symbols: Iterable[str]) -> List[str]:
        """
        Decrement reference counts. Symbols that are not wanted are ignored.

        Returns:
            Symbols that dropped to 0 (sent as an unsubscribe command when OPEN)
        """
        removed = []
        for symbol in normalize_symbols(symbols):
            count = self._counts.get(symbol, 0)
            if count == 0:
                logger.debug(f"remove() ignored for unknown symbol {symbol}")
                continue
            if count == 1:
                del self._counts[symbol]
                removed.append(symbol)
            else:
                self._counts[symbol] = count - 1

        if removed:
            logger.info(f"Unsubscribed: {removed} (wanted-set size {len(self._counts)})")
            await self._send(UNSUBSCRIBE_COMMAND, removed)
        return removed

    def clear(self) -> None:
        """Drop every subscription without notifying the transport (teardown)"""
        if self._counts:
            logger.info(f"Subscription registry cleared ({len(self._counts)} symbols)")
        self._counts.clear()

    async def _send(self, action: str, symbols: List[str]) -> None:
        if self._connection is None or not self._connection.is_open:
            return
        # Not buffered: the open handler replays the snapshot instead
        await self._connection.send(encode_command(action, symbols), buffer=False)
