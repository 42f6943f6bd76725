"""
Google Sheets Record Store

DESIGN DECISION: Google Sheets is the default persistent backend because:
1. Users can view their obligations directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ingestion saga compensates manually)
- Limited query capabilities (we filter in Python)

Each collection lives in its own worksheet. Row 1 holds the column names;
nested values (dicts/lists) are JSON-encoded in a single cell.
"""

import json
from typing import Any, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from expense_ledger.config import GoogleSheetsSettings, get_settings
from expense_ledger.models.audit import AuditEvent
from expense_ledger.models.obligation import (
    Category,
    DocumentItem,
    Entity,
    FiscalDocument,
    InstallmentPlan,
    Obligation,
    RecurrencePlan,
)
from expense_ledger.services.storage.interface import (
    CASCADE_RULES,
    Collection,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    RecordStore,
    StorageError,
    matches_filters,
)


# Column layout per collection (id first, owner second)
def _columns(model) -> list[str]:
    fields = [name for name in model.model_fields if name not in ("id", "owner_id")]
    return ["id", "owner_id", *fields]


COLLECTION_COLUMNS: dict[Collection, list[str]] = {
    Collection.OBLIGATIONS: _columns(Obligation),
    Collection.RECURRENCE_PLANS: _columns(RecurrencePlan),
    Collection.INSTALLMENT_PLANS: _columns(InstallmentPlan),
    Collection.DOCUMENTS: _columns(FiscalDocument),
    Collection.DOCUMENT_ITEMS: _columns(DocumentItem),
    Collection.CATEGORIES: _columns(Category),
    Collection.ENTITIES: _columns(Entity),
    Collection.AUDIT_EVENTS: _columns(AuditEvent),
}


def record_to_row(columns: list[str], record: dict[str, Any]) -> list[str]:
    """Convert a record to a spreadsheet row in column order."""
    row = []
    for column in columns:
        value = record.get(column)
        if value is None:
            row.append("")
        elif isinstance(value, (dict, list)):
            row.append(json.dumps(value))
        else:
            row.append(str(value))
    return row


def row_to_record(columns: list[str], row: list[str]) -> dict[str, Any]:
    """Convert a spreadsheet row back to a record ("" becomes None)."""
    record: dict[str, Any] = {}
    for index, column in enumerate(columns):
        cell = row[index] if index < len(row) else ""
        if cell == "":
            record[column] = None
        elif cell[:1] in ("{", "["):
            try:
                record[column] = json.loads(cell)
            except ValueError:
                record[column] = cell
        else:
            record[column] = cell
    return record


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, collection: Collection) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        spreadsheet = self.get_spreadsheet()
        title = f"{self._settings.worksheet_prefix}{collection.value}"
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            columns = COLLECTION_COLUMNS[collection]
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsRecordStore(RecordStore):
    """
    Google Sheets implementation of the record store.

    Writes are NOT retried: an append that timed out may still have
    landed, and a blind retry would duplicate the row. Reads are retried.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _rows(self, collection: Collection) -> tuple[gspread.Worksheet, list[list[str]]]:
        sheet = self._client.get_worksheet(collection)
        return sheet, sheet.get_all_values()[1:]  # Skip header

    def _find_row(
        self,
        rows: list[list[str]],
        owner_id: str,
        record_id: str,
    ) -> Optional[int]:
        """1-based sheet row index of the owner's record, or None."""
        for idx, row in enumerate(rows, start=2):  # Row 1 is the header
            if len(row) > 1 and row[0] == str(record_id) and row[1] == owner_id:
                return idx
        return None

    async def insert(self, collection: Collection, record: dict[str, Any]) -> str:
        """Append one record."""
        ids = await self.insert_many(collection, [record])
        return ids[0]

    async def insert_many(
        self,
        collection: Collection,
        records: list[dict[str, Any]],
    ) -> list[str]:
        """Append a batch of records with a single append_rows call."""
        columns = COLLECTION_COLUMNS[collection]
        for record in records:
            if not record.get("id") or not record.get("owner_id"):
                raise StorageError(f"Record for {collection.value} needs id and owner_id")

        try:
            sheet, rows = self._rows(collection)
            existing = {row[0] for row in rows if row}
            ids = [str(record["id"]) for record in records]
            if existing & set(ids) or len(set(ids)) != len(ids):
                raise DuplicateError(f"Duplicate id in {collection.value}")

            sheet.append_rows(
                [record_to_row(columns, record) for record in records],
                value_input_option="RAW",
            )
            return ids
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {collection.value}: {e}")

    async def update(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> bool:
        """Rewrite the record's row with the patch applied."""
        columns = COLLECTION_COLUMNS[collection]
        try:
            sheet, rows = self._rows(collection)
            idx = self._find_row(rows, owner_id, record_id)
            if idx is None:
                raise NotFoundError(f"{collection.value} record not found: {record_id}")

            record = row_to_record(columns, rows[idx - 2])
            record.update(patch)
            sheet.update(range_name=f"A{idx}", values=[record_to_row(columns, record)])
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection.value}: {e}")

    async def delete(
        self,
        collection: Collection,
        owner_id: str,
        record_id: str,
    ) -> bool:
        """Delete the record's row, then its cascade children."""
        try:
            sheet, rows = self._rows(collection)
            idx = self._find_row(rows, owner_id, record_id)
            if idx is None:
                return False

            for child_collection, foreign_key in CASCADE_RULES.get(collection, []):
                children = await self.select(
                    child_collection,
                    owner_id,
                    **{foreign_key: str(record_id)},
                )
                for child in children:
                    await self.delete(child_collection, owner_id, child["id"])

            sheet.delete_rows(idx)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {collection.value}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def select(
        self,
        collection: Collection,
        owner_id: str,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        """Read the worksheet and filter in Python."""
        columns = COLLECTION_COLUMNS[collection]
        try:
            _, rows = self._rows(collection)
            records = []
            for row in rows:
                if not row or not row[0]:  # Skip empty rows
                    continue
                record = row_to_record(columns, row)
                if record.get("owner_id") == owner_id and matches_filters(record, filters):
                    records.append(record)
            return records
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}: {e}")
