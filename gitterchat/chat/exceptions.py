"""
Custom exceptions for the Gitter client.
"""

from typing import Optional


class GitterError(Exception):
    """Base exception for all Gitter client errors."""
    pass


class GitterAPIError(GitterError):
    """The API answered with an error status or an unusable payload."""

    def __init__(self, what: str, status: Optional[int] = None):
        super().__init__(what)
        self.what = what
        self.status = status


class GitterConnectionError(GitterError):
    """Failed to reach the API."""
    pass


class GitterDecodeError(GitterError):
    """Response body did not match the expected JSON shape."""
    pass


class StreamError(GitterError):
    """A stream was used in a way its lifecycle does not allow."""
    pass


class ConfigError(GitterError):
    """Missing or invalid configuration."""
    pass
