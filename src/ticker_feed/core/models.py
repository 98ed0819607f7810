"""
Data structures shared by the feed components.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple
import time


class ConnectionState(Enum):
    """Lifecycle of the realtime transport"""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class FeedSource(Enum):
    """Where a published batch came from"""
    REALTIME = "realtime"
    POLLING = "polling"
    DEFAULT = "default"  # static last-resort set, never live


@dataclass(frozen=True)
class Ticker:
    """
    Latest price/volume/change snapshot for one symbol.

    A new Ticker supersedes any prior value for the same symbol. Instances are
    only built by the codec, which guarantees an uppercase non-empty symbol and
    a non-negative price.
    """
    symbol: str
    price: float
    change_24h: float
    volume_24h: float
    high_24h: float
    low_24h: float

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the backend (snake_case keys)"""
        return {
            'symbol': self.symbol,
            'price': self.price,
            'change_24h': self.change_24h,
            'volume_24h': self.volume_24h,
            'high_24h': self.high_24h,
            'low_24h': self.low_24h,
        }


@dataclass(frozen=True)
class TickerBatch:
    """One delivery to consumers: every ticker carried by a single frame or fetch"""
    tickers: Tuple[Ticker, ...]
    source: FeedSource
    received_at: float = field(default_factory=time.time)

    @property
    def stale(self) -> bool:
        """True for default data that did not come from either transport"""
        return self.source is FeedSource.DEFAULT

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(t.symbol for t in self.tickers)

    def __len__(self) -> int:
        return len(self.tickers)


@dataclass
class BackoffState:
    """
    Reconnect delay tracker.

    ``next_delay`` is the wait before the upcoming attempt. ``advance`` is
    applied after each failed or closed transition, ``reset`` after every
    successful open.
    """
    base_delay: float
    max_delay: float
    multiplier: float = 2.0
    attempt: int = 0
    next_delay: float = 0.0

    def __post_init__(self):
        if not self.next_delay:
            self.next_delay = self.base_delay

    def advance(self) -> None:
        self.attempt += 1
        self.next_delay = min(self.next_delay * self.multiplier, self.max_delay)

    def reset(self) -> None:
        self.attempt = 0
        self.next_delay = self.base_delay
