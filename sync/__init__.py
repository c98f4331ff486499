"""Synchronization module"""

from .errors import (
    SyncError,
    SyncInProgressError,
    LedgerFailure,
    RecordFailure,
    PersistenceFailure
)
from .ledger import UpdateService
from .importer import Importer, classify, content_hash
from .updater import Updater, perform_update

__all__ = [
    'SyncError',
    'SyncInProgressError',
    'LedgerFailure',
    'RecordFailure',
    'PersistenceFailure',
    'UpdateService',
    'Importer',
    'classify',
    'content_hash',
    'Updater',
    'perform_update'
]
