"""
NFC-e Receipt Page Parser

Extracts purchase data from the HTML page an NFC-e QR code points to.

DESIGN DECISION: Extraction is heuristic (regex probes over the raw
markup), not a DOM parse. Issuer layouts vary between states and no
schema is guaranteed, so:
1. Every field has its own independent probe (no shared parser state)
2. A probe that finds nothing yields None; it never breaks other fields
3. The parser NEVER raises on malformed input

The result is PROPOSED data. The caller decides whether it is usable
(access key or payable amount present) and the user confirms it.
"""

import html as html_lib
import re
from dataclasses import dataclass
from decimal import InvalidOperation
from typing import Any, Callable, Optional

import structlog

from expense_ledger.config import get_settings
from expense_ledger.models.document import ParsedDocument, ParsedItem
from expense_ledger.models.obligation import PaymentMethod
from expense_ledger.utils.dates import convert_br_date
from expense_ledger.utils.money import parse_money

logger = structlog.get_logger(__name__)

ACCESS_KEY_LENGTH = 44


class ExtractionError(Exception):
    """The page was fetched but holds neither an access key nor a payable amount."""

    def __init__(self, message: str, document: Optional[ParsedDocument] = None):
        self.document = document
        super().__init__(message)


@dataclass(frozen=True)
class FieldProbe:
    """
    One field extractor: candidate patterns tried in order, first
    converted non-None value wins. Group 1 of each pattern is the value.
    """
    field: str
    patterns: tuple[re.Pattern, ...]
    convert: Callable[[str], Any]

    def extract(self, text: str) -> Any:
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                try:
                    value = self.convert(match.group(1))
                except (ValueError, InvalidOperation) as e:
                    logger.debug("probe_conversion_failed", field=self.field, error=str(e))
                    continue
                if value is not None:
                    return value
        return None


# =============================================================================
# CONVERTERS
# =============================================================================

def _clean_text(raw: str) -> Optional[str]:
    """Unescape entities and collapse whitespace. Empty -> None."""
    text = " ".join(html_lib.unescape(raw).split())
    return text or None


def _access_key(raw: str) -> Optional[str]:
    digits = re.sub(r"\s", "", raw)
    if len(digits) != ACCESS_KEY_LENGTH or not digits.isdigit():
        return None
    return digits


def _tax_id(raw: str) -> Optional[str]:
    value = raw.strip(" .-/")
    return value if any(c.isdigit() for c in value) else None


def _lower_text(raw: str) -> Optional[str]:
    text = _clean_text(raw)
    return text.lower() if text else None


def map_payment_method(label: Optional[str]) -> Optional[PaymentMethod]:
    """
    Map the receipt's free-text payment label to PaymentMethod.

    Case-insensitive substring match. Any other non-empty label is OTHER;
    absent label is None.
    """
    if not label or not label.strip():
        return None
    lower = label.lower()
    if "crédito" in lower or "credito" in lower:
        return PaymentMethod.CREDIT
    if "débito" in lower or "debito" in lower:
        return PaymentMethod.DEBIT
    if "pix" in lower:
        return PaymentMethod.INSTANT_TRANSFER
    if "dinheiro" in lower:
        return PaymentMethod.CASH
    if "boleto" in lower:
        return PaymentMethod.BILL
    return PaymentMethod.OTHER


def _payment_method(raw: str) -> Optional[PaymentMethod]:
    return map_payment_method(_clean_text(raw))


# =============================================================================
# PROBE TABLES
# =============================================================================

_AMOUNT = r"([\d.,]+)"

HEADER_PROBES: tuple[FieldProbe, ...] = (
    FieldProbe(
        field="access_key",
        patterns=(re.compile(r"(?<!\d)(\d(?:\s?\d){43})(?!\s?\d)"),),
        convert=_access_key,
    ),
    FieldProbe(
        field="merchant_name",
        patterns=(
            re.compile(r'<div[^>]*class="txtTopo"[^>]*>([^<]+)</div>'),
            # Fallback: upper-case line right before the CNPJ marker
            re.compile(r"\n\s*([A-Z\s]{3,50})\s*CNPJ"),
        ),
        convert=_clean_text,
    ),
    FieldProbe(
        field="tax_id",
        patterns=(re.compile(r"CNPJ:?\s*([\d./\-]+)"),),
        convert=_tax_id,
    ),
    FieldProbe(
        field="issued_on",
        patterns=(
            re.compile(
                r"<strong>\s*Emiss[ãa]o:\s*</strong>\s*(\d{2}/\d{2}/\d{4})",
                re.IGNORECASE,
            ),
        ),
        convert=convert_br_date,
    ),
    FieldProbe(
        # "Valor a pagar" is the discount-adjusted total; never use the subtotal
        field="amount_payable",
        patterns=(
            re.compile(
                r"<label>\s*Valor\s+a\s+pagar\s+R\$:\s*</label>[\s\S]{0,100}?"
                r'<span[^>]*class="totalNumb[^"]*"[^>]*>\s*' + _AMOUNT + r"\s*</span>",
                re.IGNORECASE,
            ),
        ),
        convert=parse_money,
    ),
    FieldProbe(
        field="payment_method",
        patterns=(re.compile(r'<label\s+class="tx">([^<]+)</label>'),),
        convert=_payment_method,
    ),
)

ITEM_ROW_PATTERN = re.compile(r'<tr id="Item \+ \d+">([\s\S]*?)</tr>', re.IGNORECASE)

ITEM_PROBES: tuple[FieldProbe, ...] = (
    FieldProbe(
        field="description",
        patterns=(re.compile(r'<span class="txtTit2">([^<]+)</span>'),),
        convert=_clean_text,
    ),
    FieldProbe(
        field="sku",
        patterns=(re.compile(r'<span class="RCod">\s*\(C[óo]digo:\s*(\d+)\s*\)\s*</span>'),),
        convert=_clean_text,
    ),
    FieldProbe(
        field="quantity",
        patterns=(re.compile(r"<strong>Qtde\.:</strong>\s*" + _AMOUNT),),
        convert=parse_money,
    ),
    FieldProbe(
        field="unit",
        patterns=(re.compile(r"<strong>UN:\s*</strong>\s*(\w+)"),),
        convert=_lower_text,
    ),
    FieldProbe(
        field="unit_price",
        patterns=(re.compile(r"<strong>Vl\.\s*Unit\.:</strong>(?:\s|&nbsp;)*" + _AMOUNT),),
        convert=parse_money,
    ),
    FieldProbe(
        field="total_price",
        patterns=(re.compile(r'<span class="valor">\s*' + _AMOUNT + r"\s*</span>"),),
        convert=parse_money,
    ),
)


# =============================================================================
# PUBLIC API
# =============================================================================

def extract_items(html: str, raw_fragment_length: int = 300) -> list[ParsedItem]:
    """
    Scan every item row block and probe it independently.

    Rows without a description are dropped.
    """
    items = []
    for row in ITEM_ROW_PATTERN.finditer(html):
        block = row.group(1)
        fields = {probe.field: probe.extract(block) for probe in ITEM_PROBES}
        if not fields["description"]:
            continue
        items.append(ParsedItem(
            raw_fragment=block[:raw_fragment_length].strip(),
            **fields,
        ))
    return items


def parse_nfce_html(
    html: Optional[str],
    source_url: str,
    raw_fragment_length: Optional[int] = None,
) -> ParsedDocument:
    """
    Parse an NFC-e receipt page into a ParsedDocument.

    Args:
        html: Raw page markup (stored verbatim on the result)
        source_url: URL the page was fetched from
        raw_fragment_length: Characters of item markup to keep per item

    Returns:
        ParsedDocument with every unmatched field set to None
    """
    html = html or ""
    if raw_fragment_length is None:
        raw_fragment_length = get_settings().parser.raw_fragment_length

    header = {probe.field: probe.extract(html) for probe in HEADER_PROBES}
    items = extract_items(html, raw_fragment_length)

    logger.debug(
        "nfce_parsed",
        found=[name for name, value in header.items() if value is not None],
        item_count=len(items),
    )

    return ParsedDocument(
        items=items,
        raw_html=html,
        source_url=source_url,
        **header,
    )


def normalize_qr_url(url: Optional[str]) -> str:
    """QR readers sometimes inject whitespace/line breaks into the URL."""
    return re.sub(r"\s+", "", url or "")


_FISCAL_URL_PATTERNS = (
    re.compile(
        r"fazenda\.(pr|sp|mg|rj|rs|sc|ba|pe|ce|go|df|es|pa|am|ma|pb|rn|pi|al|se|to"
        r"|ac|ap|ro|rr|mt|ms)\.gov\.br",
        re.IGNORECASE,
    ),
    re.compile(r"nfe\.fazenda\.gov\.br", re.IGNORECASE),
    re.compile(r"nfce", re.IGNORECASE),
)


def is_valid_fiscal_qr_url(url: Optional[str]) -> bool:
    """Check whether a URL looks like a state tax authority NFC-e page."""
    if not url:
        return False
    return any(pattern.search(url) for pattern in _FISCAL_URL_PATTERNS)
