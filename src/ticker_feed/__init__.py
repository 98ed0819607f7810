"""Market-data streaming client: realtime socket with polling fallback"""

__version__ = "1.0.0"

# Import classes only when needed to avoid circular imports
# Use direct imports in your code: from ticker_feed.core.market_feed import MarketFeed

__all__ = [
    'MarketFeed',
    'FeedSettings',
]
