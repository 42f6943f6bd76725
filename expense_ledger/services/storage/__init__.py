"""
Storage Services Package

Provides the abstract record store interface and its implementations:
in-memory (tests, local runs) and Google Sheets (persistent).
"""

from expense_ledger.services.storage.interface import (
    CASCADE_RULES,
    Collection,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
)
from expense_ledger.services.storage.memory import InMemoryRecordStore
from expense_ledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
)

__all__ = [
    # Interface
    "CASCADE_RULES",
    "Collection",
    "RecordStore",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryRecordStore",
]
