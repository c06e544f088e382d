"""
Error types for the intake delivery pipeline.

Only ConfigurationError is fatal to a whole batch. Everything raised
while building or delivering a single record is caught by the batch
sender, counted as a failure for that record, and the batch moves on.
"""

from typing import Optional


class IntakeError(Exception):
    """Base class for all intake errors."""
    pass


class ConfigurationError(IntakeError):
    """Raised when settings are invalid or no delivery URL can be resolved."""
    pass


class ValidationError(IntakeError, ValueError):
    """Raised when a record breaks its invariants and must not be stored."""
    pass


class ReadError(IntakeError):
    """Raised when attachment bytes cannot be fully read."""
    pass


class StoreBusyError(IntakeError):
    """Raised when the record store is locked by an in-flight batch."""
    pass


class DeliveryError(IntakeError):
    """
    A failed delivery attempt against one candidate URL.

    Attributes:
        url: The candidate URL the attempt was made against
    """

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class TransportError(DeliveryError):
    """Timeout, DNS failure, refused connection or an aborted request."""
    pass


class RemoteRejection(DeliveryError):
    """
    The endpoint was reachable but answered with a non-success status.

    Attributes:
        status: HTTP status code returned by the endpoint
        body: Response text, already truncated for logging
    """

    def __init__(self, url: str, status: int, body: Optional[str] = None):
        super().__init__(f"HTTP {status}", url=url)
        self.status = status
        self.body = body or ""
