"""Synchronization error taxonomy"""

from client.errors import OclClientError, ProtocolFailure, TransportFailure


class SyncError(Exception):
    """Base class for errors raised by the synchronization engine."""


class SyncInProgressError(SyncError):
    """Another run holds the in-progress gate."""


class LedgerFailure(SyncError):
    """The update ledger cannot be read or written; progress cannot be audited."""


class RecordFailure(SyncError):
    """One record could not be imported. Recovered locally as an ERROR item."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"{identifier}: {reason}")


class PersistenceFailure(RecordFailure):
    """The item store rejected a write for one record."""


__all__ = [
    "OclClientError",
    "TransportFailure",
    "ProtocolFailure",
    "SyncError",
    "SyncInProgressError",
    "LedgerFailure",
    "RecordFailure",
    "PersistenceFailure",
]
