"""
Scanned Receipt Models

CRITICAL: A ParsedDocument is PROPOSED data extracted heuristically from
an untrusted page. Every field is optional. It only becomes an
Obligation + FiscalDocument after the user confirms the preview.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from expense_ledger.models.obligation import ErrorKind, PaymentMethod
from expense_ledger.utils.money import parse_masked_amount


class ParsedItem(BaseModel):
    """A line item as found on the receipt page."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1)
    sku: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    raw_fragment: str = ""


class ParsedDocument(BaseModel):
    """Everything the parser could pull out of one receipt page."""

    access_key: Optional[str] = Field(
        default=None,
        description="Issuer access key (chave de acesso)"
    )
    merchant_name: Optional[str] = None
    tax_id: Optional[str] = Field(
        default=None,
        description="Merchant CNPJ as printed"
    )
    issued_on: Optional[date] = None
    amount_payable: Optional[Decimal] = Field(
        default=None,
        description="Discount-adjusted 'Valor a pagar', never the subtotal"
    )
    payment_method: Optional[PaymentMethod] = None
    items: list[ParsedItem] = Field(default_factory=list)

    raw_html: str = ""
    source_url: str = ""

    @property
    def is_usable(self) -> bool:
        """Usable only when the access key or the payable amount was found."""
        return bool(self.access_key) or self.amount_payable is not None


class IngestionEdits(BaseModel):
    """
    User edits applied on top of the preview before saving.

    Any field left as None falls back to the parsed value.
    `items=None` keeps every parsed item; an empty list drops them all.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    event_date: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[str] = None
    entity_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    items: Optional[list[ParsedItem]] = None

    @field_validator('amount', mode='before')
    @classmethod
    def convert_masked_amount(cls, v):
        if v is None or isinstance(v, Decimal):
            return v
        if isinstance(v, str) and not v.strip():
            return None
        return parse_masked_amount(v)


class IngestionResult(BaseModel):
    """Outcome of a scan (preview) or of a confirmed save."""

    success: bool
    preview: Optional[ParsedDocument] = None
    obligation_id: Optional[UUID] = None
    document_id: Optional[UUID] = None
    item_count: int = 0
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    details: Optional[str] = Field(
        default=None,
        description="Underlying storage/network message when available"
    )
