"""
HTTP helpers shared by the delivery client and the proxy.

Status classification and error description live here so both sides
of the wire treat responses the same way.
"""

from typing import Optional

import requests

# Status a client sees for an opaque cross-origin response
OPAQUE_STATUS = 0

# Longest body excerpt kept in attempt errors and logs
BODY_EXCERPT_LIMIT = 200


def is_success_status(status: Optional[int]) -> bool:
    """
    Return True if a response status counts as delivered.

    2xx is success. An opaque response (status 0) is also counted as
    success: the collector's CORS policy hides the status on purpose, so
    a response arriving at all is the only signal available.
    """
    if status is None:
        return False
    return status == OPAQUE_STATUS or 200 <= status < 300


def truncate(text: Optional[str], limit: int = BODY_EXCERPT_LIMIT) -> str:
    """
    Shorten a response body for logging.

    Example:
        >>> truncate("x" * 300, 5)
        'xxxxx...'
    """
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def describe_error(error: Exception) -> str:
    """
    One-line description of a transport failure.

    Example:
        >>> describe_error(requests.Timeout("read timed out"))
        'Timeout: read timed out'
    """
    if isinstance(error, requests.Timeout):
        kind = "Timeout"
    elif isinstance(error, requests.ConnectionError):
        kind = "Connection error"
    else:
        kind = type(error).__name__
    message = str(error)
    return f"{kind}: {message}" if message else kind
