"""
Exception types raised inside adapters and caught at their boundary.
"""
from typing import Optional


class ConciergeError(Exception):
    """Base exception for the concierge core"""
    pass


class StoreUnavailableError(ConciergeError):
    """Raised when the persistent store is missing or failing"""
    pass


class MalformedRecordError(ConciergeError):
    """Raised when a stored record cannot be deserialized"""
    pass


class DeliveryError(ConciergeError):
    """Raised when the outbound channel rejects a message"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(DeliveryError):
    """Raised on an HTTP 429 from the outbound channel"""

    def __init__(self, message: str = "rate limited"):
        super().__init__(message, status_code=429)
