"""Config package initialization"""

# Use direct imports in your code: from ticker_feed.config.settings import get_settings

__all__ = [
    'get_settings',
    'FeedSettings',
]
