"""Fiscal receipt parsing package."""

from expense_ledger.parsing.nfce import (
    ExtractionError,
    extract_items,
    is_valid_fiscal_qr_url,
    map_payment_method,
    normalize_qr_url,
    parse_nfce_html,
)

__all__ = [
    "ExtractionError",
    "extract_items",
    "is_valid_fiscal_qr_url",
    "map_payment_method",
    "normalize_qr_url",
    "parse_nfce_html",
]
