"""
Fiscal Document Queries

Reads back the receipt stored with a scanned obligation so its purchased
lines can be reviewed after confirmation.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from expense_ledger.models.obligation import DocumentItem, FiscalDocument
from expense_ledger.services.storage import Collection, RecordStore


class DocumentItemsView(BaseModel):
    """The line items behind one obligation and their summed total."""

    obligation_id: UUID
    document_id: Optional[UUID] = None
    items: list[DocumentItem] = Field(default_factory=list)

    @property
    def total(self) -> Decimal:
        """Sum of item totals; lines without a total count as zero."""
        return sum(
            (item.total_price for item in self.items if item.total_price is not None),
            Decimal("0.00"),
        )


class DocumentQueryService:
    """Look up an owner's fiscal documents and their items."""

    def __init__(self, store: RecordStore, owner_id: str):
        self._store = store
        self._owner_id = owner_id

    async def document_for_obligation(self, obligation_id) -> Optional[FiscalDocument]:
        records = await self._store.select(
            Collection.DOCUMENTS,
            self._owner_id,
            obligation_id=str(obligation_id),
        )
        return FiscalDocument.from_record(records[0]) if records else None

    async def items_for_obligation(self, obligation_id) -> list[DocumentItem]:
        """
        Items of the document attached to an obligation, in stored order.

        Manual obligations have no document and return an empty list.
        """
        document = await self.document_for_obligation(obligation_id)
        return await self._items(document) if document else []

    async def _items(self, document: FiscalDocument) -> list[DocumentItem]:
        records = await self._store.select(
            Collection.DOCUMENT_ITEMS,
            self._owner_id,
            document_id=str(document.id),
        )
        return [DocumentItem.from_record(record) for record in records]

    async def items_view(self, obligation_id) -> DocumentItemsView:
        document = await self.document_for_obligation(obligation_id)
        items = await self._items(document) if document else []
        return DocumentItemsView(
            obligation_id=obligation_id,
            document_id=document.id if document else None,
            items=items,
        )
