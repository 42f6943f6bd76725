"""Shared fixtures for the test suite."""

from pathlib import Path

import pytest

from expense_ledger.services.storage import InMemoryRecordStore

FIXTURES = Path(__file__).parent / "fixtures"

RECEIPT_URL = (
    "https://www.fazenda.pr.gov.br/nfce/qrcode?"
    "p=41250312345678000190650010000123451012345678|2|1|1|ABCDEF"
)


@pytest.fixture
def owner_id() -> str:
    return "user-123"


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def receipt_html() -> str:
    return (FIXTURES / "nfce_receipt.html").read_text(encoding="utf-8")


@pytest.fixture
def receipt_url() -> str:
    return RECEIPT_URL
