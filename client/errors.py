"""Errors raised while talking to the remote concept repository"""

from typing import Any, Optional


class OclClientError(Exception):
    """Raised when the remote delta cannot be fetched or unpacked."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Any = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class TransportFailure(OclClientError):
    """Network error, timeout or unsuccessful HTTP status."""


class ProtocolFailure(OclClientError):
    """Response arrived but its shape cannot be decoded."""


class MalformedRecordError(ValueError):
    """A single remote record lacks required fields or has the wrong shape."""
