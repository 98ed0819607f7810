"""Core package initialization"""

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from ticker_feed.core.market_feed import MarketFeed

__all__ = [
    'MarketFeed',
    'ConnectionManager',
    'SubscriptionRegistry',
    'PollingFallback',
    'TickerRestClient',
]
