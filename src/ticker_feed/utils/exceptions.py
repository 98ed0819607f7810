"""
Custom Exception Classes for the Ticker Feed

Provides a hierarchy of specific exceptions for the failure scenarios of the
streaming client, so each layer can recover precisely instead of catching
everything.

Exception Hierarchy:
├── TickerFeedError (Base)
│   ├── ConfigurationError
│   ├── TransportError
│   ├── APIError
│   │   ├── APITimeoutError
│   │   └── InvalidResponseError
│   └── DataValidationError
│       └── FrameDecodeError

None of these are fatal to the process: transport and fetch errors are
absorbed by the reconnect / fallback cycle, decode errors drop one frame.
"""

from typing import Optional, Dict, Any


class TickerFeedError(Exception):
    """
    Base exception for all ticker feed errors.
    Enables catching all feed errors with: except TickerFeedError
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize feed error with structured information.

        Args:
            message: Human-readable error message
            error_code: Error code for classification (e.g., 'MISSING_FIELD')
            details: Additional context dict
            original_error: Original exception that caused this (for error chaining)
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        error_str = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            error_str += f" (Code: {self.error_code})"
        if self.details:
            error_str += f" | Details: {self.details}"
        return error_str


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigurationError(TickerFeedError):
    """
    Raised when configuration is invalid or incomplete.
    Examples: backoff ceiling below base delay, non-positive poll interval
    Action: Fix configuration and restart
    """
    pass


# ============================================================================
# TRANSPORT ERRORS
# ============================================================================

class TransportError(TickerFeedError):
    """
    Raised when the realtime socket cannot be opened or drops abruptly.
    Recovered automatically by the reconnect cycle, never shown to consumers.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        attempt: Optional[int] = None,
        **kwargs
    ):
        self.url = url
        self.attempt = attempt
        super().__init__(message, **kwargs)


# ============================================================================
# REQUEST / RESPONSE ERRORS
# ============================================================================

class APIError(TickerFeedError):
    """
    Base exception for polling endpoint errors.
    Includes HTTP status code and response body for debugging.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(message, **kwargs)


class APITimeoutError(APIError):
    """
    Raised when a polling request times out.
    Action: Skip this tick, the next tick retries
    """
    pass


class InvalidResponseError(APIError):
    """
    Raised when a polling response cannot be parsed as a ticker list.
    Indicates backend changes or data corruption.
    """
    pass


# ============================================================================
# DATA VALIDATION ERRORS
# ============================================================================

class DataValidationError(TickerFeedError):
    """Raised when inbound data fails validation"""
    pass


class FrameDecodeError(DataValidationError):
    """
    Raised inside the codec when a frame does not match the ticker or
    control schema. Caught at the codec boundary and turned into a
    MalformedFrame, so it never reaches the connection loop.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        self.field = field
        super().__init__(message, **kwargs)
