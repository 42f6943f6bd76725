"""
In-Memory Record Store

Process-local implementation of RecordStore. Used by the test suite and
for running the flows without a configured backend.

Emulates what the flows rely on from a real store:
- per-owner scoping on update/delete/select
- all-or-nothing batch inserts
- cascade deletes (CASCADE_RULES)

`inject_failure()` makes the next matching call raise, so compensation
paths can be exercised deterministically.
"""

import copy
from typing import Any, Optional
from uuid import uuid4

from expense_ledger.services.storage.interface import (
    CASCADE_RULES,
    Collection,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
    matches_filters,
)


class InMemoryRecordStore(RecordStore):
    """Dict-backed record store: collection -> id -> record."""

    def __init__(self):
        self._data: dict[Collection, dict[str, dict[str, Any]]] = {
            collection: {} for collection in Collection
        }
        self._failures: dict[tuple[str, Collection], str] = {}
        self.calls: list[tuple[str, Collection]] = []

    def inject_failure(
        self,
        operation: str,
        collection: Collection,
        message: str = "simulated storage failure",
    ) -> None:
        """Make the next `operation` on `collection` raise StorageError."""
        self._failures[(operation, collection)] = message

    def _check_failure(self, operation: str, collection: Collection) -> None:
        self.calls.append((operation, collection))
        message = self._failures.pop((operation, collection), None)
        if message is not None:
            raise StorageError(message)

    def _prepare(self, collection: Collection, record: dict[str, Any]) -> dict[str, Any]:
        if not record.get("owner_id"):
            raise StorageError(f"Record for {collection.value} has no owner_id")
        prepared = copy.deepcopy(record)
        prepared["id"] = str(prepared.get("id") or uuid4())
        if prepared["id"] in self._data[collection]:
            raise DuplicateError(f"{collection.value} record already exists: {prepared['id']}")
        return prepared

    def _owned(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        record = self._data[collection].get(str(record_id))
        if record is None or record.get("owner_id") != owner_id:
            return None
        return record

    async def insert(self, collection: Collection, record: dict[str, Any]) -> str:
        self._check_failure("insert", collection)
        prepared = self._prepare(collection, record)
        self._data[collection][prepared["id"]] = prepared
        return prepared["id"]

    async def insert_many(
        self,
        collection: Collection,
        records: list[dict[str, Any]],
    ) -> list[str]:
        self._check_failure("insert_many", collection)

        # Validate the whole batch before writing anything
        prepared = [self._prepare(collection, record) for record in records]
        ids = [record["id"] for record in prepared]
        if len(set(ids)) != len(ids):
            raise DuplicateError(f"Batch for {collection.value} repeats an id")

        for record in prepared:
            self._data[collection][record["id"]] = record
        return ids

    async def update(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> bool:
        self._check_failure("update", collection)
        record = self._owned(collection, owner_id, record_id)
        if record is None:
            raise NotFoundError(f"{collection.value} record not found: {record_id}")
        forbidden = {"id", "owner_id"} & set(patch)
        if forbidden:
            raise StorageError(f"Cannot update {', '.join(sorted(forbidden))}")
        record.update(copy.deepcopy(patch))
        return True

    async def delete(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
    ) -> bool:
        self._check_failure("delete", collection)
        return self._delete(collection, owner_id, str(record_id))

    def _delete(self, collection: Collection, owner_id: str, record_id: str) -> bool:
        if self._owned(collection, owner_id, record_id) is None:
            return False

        for child_collection, foreign_key in CASCADE_RULES.get(collection, []):
            children = [
                child["id"]
                for child in self._data[child_collection].values()
                if child.get("owner_id") == owner_id and child.get(foreign_key) == record_id
            ]
            for child_id in children:
                self._delete(child_collection, owner_id, child_id)

        del self._data[collection][record_id]
        return True

    async def select(
        self,
        collection: Collection,
        owner_id: str,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        self._check_failure("select", collection)
        return [
            copy.deepcopy(record)
            for record in self._data[collection].values()
            if record.get("owner_id") == owner_id and matches_filters(record, filters)
        ]

    def count(self, collection: Collection) -> int:
        """Rows in a collection across all owners."""
        return len(self._data[collection])
