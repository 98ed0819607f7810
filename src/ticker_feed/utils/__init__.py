"""Utils package initialization"""

# Use direct imports in your code: from ticker_feed.utils.logger import get_logger

__all__ = [
    'get_logger',
    'setup_logging',
]
