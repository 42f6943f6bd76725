"""Services package."""

from expense_ledger.services.fetch import (
    FallbackFetcher,
    FetchResponse,
    FetchTimeoutError,
    HttpxReceiptFetcher,
    ReceiptFetcher,
    ReceiptUnreachableError,
    UpstreamFetchError,
)
from expense_ledger.services.storage import (
    Collection,
    ConnectionError,
    DuplicateError,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    RecordStore,
    StorageError,
)

__all__ = [
    # Fetch services
    "FallbackFetcher",
    "FetchResponse",
    "FetchTimeoutError",
    "HttpxReceiptFetcher",
    "ReceiptFetcher",
    "ReceiptUnreachableError",
    "UpstreamFetchError",
    # Storage services
    "Collection",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsClient",
    "GoogleSheetsRecordStore",
    "InMemoryRecordStore",
    "NotFoundError",
    "RecordStore",
    "StorageError",
]
