"""
Receipt Page Fetching

Retrieves the HTML of the NFC-e page a QR code points to.

IMPORTANT BOUNDARIES:
1. Every request is bounded by a hard timeout (RECEIPT_FETCH_TIMEOUT_SECONDS)
2. Non-2xx responses are failures; we never parse an error page
3. No retries here - retrying is a caller-initiated full re-run

FallbackFetcher chains two fetchers SEQUENTIALLY: the second one is only
tried when the first could not reach the page at all (connection/DNS/
blocked origin), never raced and never after an HTTP answer.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from expense_ledger.config import FetchSettings, get_settings

logger = structlog.get_logger(__name__)


class UpstreamFetchError(Exception):
    """The receipt page could not be retrieved."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ReceiptUnreachableError(UpstreamFetchError):
    """No HTTP answer at all (connection refused, DNS, blocked origin)."""
    pass


class FetchTimeoutError(UpstreamFetchError):
    """The page did not answer within the configured timeout."""
    pass


class FetchResponse(BaseModel):
    """A successful (2xx) page retrieval."""

    status_code: int
    text: str
    url: str


class ReceiptFetcher(ABC):
    """Anything that can turn a receipt URL into page HTML."""

    @abstractmethod
    async def fetch(self, url: str) -> FetchResponse:
        """
        GET the receipt page.

        Raises:
            UpstreamFetchError: On non-2xx, timeout or network failure
        """
        pass


class HttpxReceiptFetcher(ReceiptFetcher):
    """Fetches receipt pages with httpx."""

    def __init__(
        self,
        settings: Optional[FetchSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Timeout and User-Agent; defaults to environment config
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self._settings = settings or get_settings().fetch
        self._transport = transport

    async def fetch(self, url: str) -> FetchResponse:
        headers = {"User-Agent": self._settings.user_agent}
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds,
                headers=headers,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(
                f"Timed out after {self._settings.timeout_seconds}s fetching receipt page"
            ) from e
        except httpx.TransportError as e:
            raise ReceiptUnreachableError(f"Could not reach receipt page: {e}") from e

        if not response.is_success:
            raise UpstreamFetchError(
                f"Receipt page answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return FetchResponse(
            status_code=response.status_code,
            text=response.text,
            url=str(response.url),
        )


class FallbackFetcher(ReceiptFetcher):
    """Try `primary`; only if it cannot reach the page, try `secondary`."""

    def __init__(self, primary: ReceiptFetcher, secondary: ReceiptFetcher):
        self._primary = primary
        self._secondary = secondary

    async def fetch(self, url: str) -> FetchResponse:
        try:
            return await self._primary.fetch(url)
        except ReceiptUnreachableError as e:
            logger.info("receipt_fetch_fallback", url=url, reason=str(e))
            return await self._secondary.fetch(url)
