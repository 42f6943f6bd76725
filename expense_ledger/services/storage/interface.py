"""
Abstract Record Store Interface

DESIGN DECISION: The storage engine is an external collaborator. We only
depend on a per-collection record store with insert / insert-many /
update / delete / select, scoped by the owner's id. This allows us to:
1. Use in-memory storage for testing
2. Swap Google Sheets for a real database later
3. Keep business logic decoupled from storage implementation

There is NO cross-record transaction. Flows that write several records
compensate manually (see expense_ledger.saga).
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class Collection(str, Enum):
    """Named collections in the record store."""
    OBLIGATIONS = "obligations"
    RECURRENCE_PLANS = "recurrence_plans"
    INSTALLMENT_PLANS = "installment_plans"
    DOCUMENTS = "documents"
    DOCUMENT_ITEMS = "document_items"
    CATEGORIES = "categories"
    ENTITIES = "entities"
    AUDIT_EVENTS = "audit_events"


# Deleting a parent removes children whose foreign key points at it.
# parent collection -> [(child collection, foreign key field)]
CASCADE_RULES: dict[Collection, list[tuple[Collection, str]]] = {
    Collection.OBLIGATIONS: [(Collection.DOCUMENTS, "obligation_id")],
    Collection.DOCUMENTS: [(Collection.DOCUMENT_ITEMS, "document_id")],
}


class RecordStore(ABC):
    """
    Abstract interface for record storage.

    Records are plain JSON-compatible dicts carrying at least `id` and
    `owner_id`. Any backend must implement these methods.
    """

    @abstractmethod
    async def insert(self, collection: Collection, record: dict[str, Any]) -> str:
        """
        Insert one record.

        Returns:
            The record id

        Raises:
            DuplicateError: If the id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def insert_many(
        self,
        collection: Collection,
        records: list[dict[str, Any]],
    ) -> list[str]:
        """
        Insert a batch of records in ONE call.

        Either every record is written or none is.

        Returns:
            Record ids in input order

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> bool:
        """
        Apply a partial update to one of the owner's records.

        Raises:
            NotFoundError: If the owner has no record with this id
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
    ) -> bool:
        """
        Delete one of the owner's records (and its cascade children).

        Returns:
            True if a record was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def select(
        self,
        collection: Collection,
        owner_id: str,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        """
        List the owner's records whose fields equal every filter value.
        """
        pass


def matches_filters(record: dict[str, Any], filters: dict[str, Any]) -> bool:
    """Equality match on stringified values (records are JSON-shaped)."""
    for field, expected in filters.items():
        actual = record.get(field)
        if expected is None:
            if actual is not None:
                return False
        elif actual is None or str(actual) != str(getattr(expected, "value", expected)):
            return False
    return True


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
