"""Tests for the record store backends."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from expense_ledger.services.storage import (
    Collection,
    DuplicateError,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    StorageError,
)
from expense_ledger.services.storage.google_sheets import (
    COLLECTION_COLUMNS,
    record_to_row,
    row_to_record,
)


def run(coro):
    return asyncio.run(coro)


class TestInMemoryStore:
    """Tests for the in-memory backend."""

    def test_insert_and_select(self, store, owner_id):
        """Test basic round trip with filters."""
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "Food"}))
        run(store.insert(Collection.CATEGORIES, {"id": "c2", "owner_id": owner_id, "name": "Rent"}))

        assert len(run(store.select(Collection.CATEGORIES, owner_id))) == 2
        rent = run(store.select(Collection.CATEGORIES, owner_id, name="Rent"))
        assert [r["id"] for r in rent] == ["c2"]

    def test_owner_scoping(self, store, owner_id):
        """Test that other owners' rows are invisible and untouchable."""
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": "someone-else", "name": "X"}))

        assert run(store.select(Collection.CATEGORIES, owner_id)) == []
        assert run(store.delete(Collection.CATEGORIES, owner_id, "c1")) is False
        with pytest.raises(NotFoundError):
            run(store.update(Collection.CATEGORIES, owner_id, "c1", {"name": "Y"}))
        assert store.count(Collection.CATEGORIES) == 1

    def test_insert_requires_owner(self, store):
        with pytest.raises(StorageError):
            run(store.insert(Collection.CATEGORIES, {"id": "c1", "name": "X"}))

    def test_duplicate_id(self, store, owner_id):
        record = {"id": "c1", "owner_id": owner_id, "name": "X"}
        run(store.insert(Collection.CATEGORIES, record))
        with pytest.raises(DuplicateError):
            run(store.insert(Collection.CATEGORIES, record))

    def test_insert_many_is_all_or_nothing(self, store, owner_id):
        """Test that a bad record aborts the whole batch."""
        records = [
            {"id": "a", "owner_id": owner_id},
            {"id": "b"},  # no owner
        ]
        with pytest.raises(StorageError):
            run(store.insert_many(Collection.OBLIGATIONS, records))
        assert store.count(Collection.OBLIGATIONS) == 0

    def test_update_cannot_change_identity(self, store, owner_id):
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "X"}))
        with pytest.raises(StorageError):
            run(store.update(Collection.CATEGORIES, owner_id, "c1", {"owner_id": "other"}))

    def test_delete_cascades(self, store, owner_id):
        """Test obligation -> document -> items cascade."""
        run(store.insert(Collection.OBLIGATIONS, {"id": "o1", "owner_id": owner_id}))
        run(store.insert(Collection.DOCUMENTS, {"id": "d1", "owner_id": owner_id, "obligation_id": "o1"}))
        run(store.insert_many(Collection.DOCUMENT_ITEMS, [
            {"id": "i1", "owner_id": owner_id, "document_id": "d1"},
            {"id": "i2", "owner_id": owner_id, "document_id": "d1"},
        ]))

        assert run(store.delete(Collection.OBLIGATIONS, owner_id, "o1")) is True

        assert store.count(Collection.OBLIGATIONS) == 0
        assert store.count(Collection.DOCUMENTS) == 0
        assert store.count(Collection.DOCUMENT_ITEMS) == 0

    def test_injected_failure_fires_once(self, store, owner_id):
        """Test failure injection."""
        store.inject_failure("insert", Collection.CATEGORIES, "boom")
        with pytest.raises(StorageError, match="boom"):
            run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id}))
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id}))
        assert store.count(Collection.CATEGORIES) == 1

    def test_select_returns_copies(self, store, owner_id):
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "X"}))
        run(store.select(Collection.CATEGORIES, owner_id))[0]["name"] = "changed"
        assert run(store.select(Collection.CATEGORIES, owner_id))[0]["name"] == "X"


class FakeWorksheet:
    """List-backed stand-in for a gspread worksheet."""

    def __init__(self, columns):
        self.rows = [list(columns)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_rows(self, rows, value_input_option=None):
        self.rows.extend(list(row) for row in rows)

    def update(self, range_name=None, values=None):
        index = int(range_name[1:]) - 1
        self.rows[index] = list(values[0])

    def delete_rows(self, index):
        del self.rows[index - 1]


@pytest.fixture
def sheets():
    worksheets = {
        collection: FakeWorksheet(COLLECTION_COLUMNS[collection])
        for collection in Collection
    }
    client = MagicMock()
    client.get_worksheet.side_effect = lambda collection: worksheets[collection]
    return GoogleSheetsRecordStore(client=client), worksheets


class TestGoogleSheetsStore:
    """Tests for the Google Sheets backend with a mocked client."""

    def test_columns_start_with_identity(self):
        for columns in COLLECTION_COLUMNS.values():
            assert columns[:2] == ["id", "owner_id"]

    def test_row_conversion(self):
        """Test JSON-encoded nested values and empty cells."""
        columns = ["id", "owner_id", "details", "note"]
        row = record_to_row(columns, {"id": "1", "owner_id": "u", "details": {"a": 1}})

        assert row == ["1", "u", json.dumps({"a": 1}), ""]
        assert row_to_record(columns, row) == {
            "id": "1", "owner_id": "u", "details": {"a": 1}, "note": None,
        }

    def test_insert_select_update_delete(self, sheets, owner_id):
        """Test the full record lifecycle against a worksheet."""
        store, worksheets = sheets
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "Food"}))
        run(store.insert(Collection.CATEGORIES, {"id": "c2", "owner_id": "other", "name": "Rent"}))

        records = run(store.select(Collection.CATEGORIES, owner_id))
        assert [r["name"] for r in records] == ["Food"]

        run(store.update(Collection.CATEGORIES, owner_id, "c1", {"name": "Groceries"}))
        assert run(store.select(Collection.CATEGORIES, owner_id))[0]["name"] == "Groceries"

        assert run(store.delete(Collection.CATEGORIES, owner_id, "c1")) is True
        assert len(worksheets[Collection.CATEGORIES].rows) == 2  # header + other owner

    def test_insert_many_uses_one_append(self, sheets, owner_id):
        store, worksheets = sheets
        sheet = worksheets[Collection.OBLIGATIONS]
        sheet.append_rows = MagicMock(wraps=sheet.append_rows)

        run(store.insert_many(Collection.OBLIGATIONS, [
            {"id": str(n), "owner_id": owner_id} for n in range(3)
        ]))

        assert sheet.append_rows.call_count == 1
        assert len(sheet.rows) == 4

    def test_duplicate_id_rejected(self, sheets, owner_id):
        store, _ = sheets
        run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "X"}))
        with pytest.raises(DuplicateError):
            run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id, "name": "X"}))

    def test_update_missing_raises(self, sheets, owner_id):
        store, _ = sheets
        with pytest.raises(NotFoundError):
            run(store.update(Collection.CATEGORIES, owner_id, "missing", {"name": "X"}))

    def test_delete_cascades(self, sheets, owner_id):
        """Test deleting a document removes its items."""
        store, worksheets = sheets
        run(store.insert(Collection.DOCUMENTS, {"id": "d1", "owner_id": owner_id, "obligation_id": "o1"}))
        run(store.insert_many(Collection.DOCUMENT_ITEMS, [
            {"id": "i1", "owner_id": owner_id, "document_id": "d1", "description": "A"},
            {"id": "i2", "owner_id": owner_id, "document_id": "d1", "description": "B"},
        ]))

        run(store.delete(Collection.DOCUMENTS, owner_id, "d1"))

        assert len(worksheets[Collection.DOCUMENT_ITEMS].rows) == 1
        assert len(worksheets[Collection.DOCUMENTS].rows) == 1

    def test_write_errors_are_wrapped(self, sheets, owner_id):
        """Test gspread failures surface as StorageError."""
        store, worksheets = sheets
        worksheets[Collection.CATEGORIES].append_rows = MagicMock(side_effect=RuntimeError("quota"))
        with pytest.raises(StorageError, match="quota"):
            run(store.insert(Collection.CATEGORIES, {"id": "c1", "owner_id": owner_id}))
