"""Receipt fetching package."""

from expense_ledger.services.fetch.http_fetcher import (
    FallbackFetcher,
    FetchResponse,
    FetchTimeoutError,
    HttpxReceiptFetcher,
    ReceiptFetcher,
    ReceiptUnreachableError,
    UpstreamFetchError,
)

__all__ = [
    "FallbackFetcher",
    "FetchResponse",
    "FetchTimeoutError",
    "HttpxReceiptFetcher",
    "ReceiptFetcher",
    "ReceiptUnreachableError",
    "UpstreamFetchError",
]
