"""
Integration tests for the origination flows.

Storage is the in-memory store; HTTP goes through httpx.MockTransport.
No real network calls.
"""

import asyncio
from datetime import date
from decimal import Decimal

import httpx
import pytest

from expense_ledger.audit import AuditLogger
from expense_ledger.config import FetchSettings
from expense_ledger.models.document import ParsedDocument, ParsedItem
from expense_ledger.models.obligation import (
    ErrorKind,
    InstallmentPlan,
    Obligation,
    ObligationStatus,
    OriginType,
    PaymentMethod,
    RecurrencePlan,
)
from expense_ledger.orchestrator import (
    ManualObligationFlow,
    ScannedDocumentFlow,
    create_app_components,
)
from expense_ledger.queries import DocumentQueryService
from expense_ledger.schedule import ScheduleError
from expense_ledger.services.fetch import HttpxReceiptFetcher
from expense_ledger.services.storage import Collection, InMemoryRecordStore


def run(coro):
    return asyncio.run(coro)


def obligations(store, owner_id) -> list[Obligation]:
    records = run(store.select(Collection.OBLIGATIONS, owner_id))
    return sorted(
        (Obligation.from_record(record) for record in records),
        key=lambda o: o.event_date,
    )


def audit_types(store, owner_id) -> list[str]:
    return [r["event_type"] for r in run(store.select(Collection.AUDIT_EVENTS, owner_id))]


@pytest.fixture
def manual_flow(store, owner_id) -> ManualObligationFlow:
    return ManualObligationFlow(store, owner_id, audit_logger=AuditLogger(store))


def scanned_flow(store, owner_id, handler) -> ScannedDocumentFlow:
    fetcher = HttpxReceiptFetcher(
        settings=FetchSettings(),
        transport=httpx.MockTransport(handler),
    )
    return ScannedDocumentFlow(store, owner_id, fetcher=fetcher, audit_logger=AuditLogger(store))


class TestManualEntry:
    """Tests for plain manual entries."""

    def test_single_entry(self, manual_flow, store, owner_id):
        """Test a non-recurring entry writes exactly one confirmed row."""
        result = run(manual_flow.create_manual_obligation({
            "amount": "R$ 89,90",
            "event_date": "2025-03-10",
            "description": "Pharmacy",
            "payment_method": "cash",
        }))

        assert result.success
        assert result.generated_count == 0
        [stored] = obligations(store, owner_id)
        assert stored.id == result.obligation_id
        assert stored.amount == Decimal("89.90")
        assert stored.status == ObligationStatus.CONFIRMED
        assert stored.origin == OriginType.MANUAL
        assert "obligation_created" in audit_types(store, owner_id)

    def test_invalid_form_writes_nothing(self, manual_flow, store, owner_id):
        """Test validation failure returns field errors and no rows."""
        result = run(manual_flow.create_manual_obligation({
            "amount": "",
            "event_date": "2025-03-10",
            "payment_method": "cash",
        }))

        assert not result.success
        assert result.error_kind == ErrorKind.INPUT_VALIDATION
        assert [e.field for e in result.field_errors] == ["amount"]
        assert store.count(Collection.OBLIGATIONS) == 0
        assert audit_types(store, owner_id) == ["validation_failed"]

    def test_origin_insert_failure(self, manual_flow, store):
        """Test a storage failure on the origin is a persistence error."""
        store.inject_failure("insert", Collection.OBLIGATIONS, "sheet unavailable")

        result = run(manual_flow.create_manual_obligation({
            "amount": "10,00",
            "event_date": "2025-03-10",
            "payment_method": "cash",
        }))

        assert not result.success
        assert result.error_kind == ErrorKind.PERSISTENCE
        assert "sheet unavailable" in result.message


class TestRecurringEntry:
    """Tests for recurring manual entries."""

    FORM = {
        "amount": "R$ 150,00",
        "event_date": "2025-03-01",
        "description": "Streaming",
        "payment_method": "credit",
        "is_recurring": True,
        "recurrence_interval_value": 1,
        "recurrence_interval_unit": "month",
        "recurrence_ends_on": "2025-06-01",
    }

    def test_monthly_until_june(self, manual_flow, store, owner_id):
        """Test origin plus three projected occurrences, end date included."""
        result = run(manual_flow.create_manual_obligation(self.FORM))

        assert result.success
        assert result.generated_count == 3

        stored = obligations(store, owner_id)
        assert [o.event_date for o in stored] == [
            date(2025, 3, 1), date(2025, 4, 1), date(2025, 5, 1), date(2025, 6, 1),
        ]
        origin, *projected = stored
        assert origin.status == ObligationStatus.CONFIRMED
        assert origin.description == "Streaming"
        assert all(o.status == ObligationStatus.PROJECTED for o in projected)
        assert all(o.amount == Decimal("150.00") for o in projected)
        assert all(o.description == "Streaming (Assinatura)" for o in projected)

    def test_plan_is_linked(self, manual_flow, store, owner_id):
        """Test the plan record and the origin back-reference."""
        result = run(manual_flow.create_manual_obligation(self.FORM))

        [plan_record] = run(store.select(Collection.RECURRENCE_PLANS, owner_id))
        plan = RecurrencePlan.from_record(plan_record)
        assert plan.origin_obligation_id == result.obligation_id
        assert plan.expected_amount == Decimal("150.00")
        assert plan.ends_on == date(2025, 6, 1)
        assert all(o.recurrence_plan_id == plan.id for o in obligations(store, owner_id))

    def test_schedule_written_in_one_batch(self, manual_flow, store):
        run(manual_flow.create_manual_obligation(self.FORM))
        assert store.calls.count(("insert_many", Collection.OBLIGATIONS)) == 1

    def test_schedule_failure_keeps_origin(self, manual_flow, store, owner_id):
        """Test a failed batch insert is a warning, not a rollback."""
        store.inject_failure("insert_many", Collection.OBLIGATIONS, "quota exceeded")

        result = run(manual_flow.create_manual_obligation(self.FORM))

        assert result.success
        assert result.generated_count == 0
        assert any("quota exceeded" in w for w in result.warnings)
        assert len(obligations(store, owner_id)) == 1
        assert "schedule_failed" in audit_types(store, owner_id)

    def test_plan_insert_failure_keeps_origin(self, manual_flow, store, owner_id):
        store.inject_failure("insert", Collection.RECURRENCE_PLANS)

        result = run(manual_flow.create_manual_obligation(self.FORM))

        assert result.success
        assert result.warnings
        assert len(obligations(store, owner_id)) == 1

    def test_interval_past_calendar_end(self, manual_flow, store, owner_id):
        """Test an interval that overflows the calendar yields no occurrences."""
        result = run(manual_flow.create_manual_obligation({
            **self.FORM,
            "event_date": "2025-01-01",
            "recurrence_interval_unit": "day",
            "recurrence_interval_value": 100_000_000,
            "recurrence_ends_on": "2025-12-31",
        }))

        assert result.success
        assert result.generated_count == 0
        assert result.warnings == []
        assert len(obligations(store, owner_id)) == 1
        assert len(run(store.select(Collection.RECURRENCE_PLANS, owner_id))) == 1
        assert "schedule_generated" in audit_types(store, owner_id)

    def test_monthly_at_calendar_end(self, manual_flow, store, owner_id):
        result = run(manual_flow.create_manual_obligation({
            **self.FORM,
            "event_date": "9999-12-01",
            "recurrence_ends_on": "9999-12-31",
        }))

        assert result.success
        assert result.generated_count == 0
        assert len(obligations(store, owner_id)) == 1


class TestInstallmentEntry:
    """Tests for installment manual entries."""

    def test_three_installments(self, manual_flow, store, owner_id):
        """Test 300.00 in 3 installments."""
        result = run(manual_flow.create_manual_obligation({
            "amount": "R$ 300,00",
            "event_date": "2025-03-01",
            "description": "TV",
            "payment_method": "credit",
            "is_installment": True,
            "installment_count": 3,
        }))

        assert result.success
        assert result.generated_count == 2

        origin, second, third = obligations(store, owner_id)
        assert origin.amount == Decimal("100.00")
        assert origin.description == "TV (1/3)"
        assert origin.installment_number == 1
        assert origin.status == ObligationStatus.CONFIRMED
        assert (second.event_date, second.description) == (date(2025, 4, 1), "TV (2/3)")
        assert (third.event_date, third.description) == (date(2025, 5, 1), "TV (3/3)")
        assert second.amount == third.amount == Decimal("100.00")

        [plan_record] = run(store.select(Collection.INSTALLMENT_PLANS, owner_id))
        plan = InstallmentPlan.from_record(plan_record)
        assert plan.total_amount == Decimal("300.00")
        assert plan.installment_amount == Decimal("100.00")
        assert origin.installment_plan_id == plan.id

    def test_explicit_installment_amount(self, manual_flow, store, owner_id):
        """Test the per-installment amount from the form wins."""
        run(manual_flow.create_manual_obligation({
            "amount": "100,00",
            "event_date": "2025-03-01",
            "payment_method": "credit",
            "is_installment": True,
            "installment_count": 2,
            "installment_amount": "55,00",
        }))

        assert {o.amount for o in obligations(store, owner_id)} == {Decimal("55.00")}

    def test_past_calendar_end_rejected(self, manual_flow, store):
        """Test a last installment beyond 9999 is an input error with no rows."""
        result = run(manual_flow.create_manual_obligation({
            "amount": "300,00",
            "event_date": "9999-11-01",
            "payment_method": "credit",
            "is_installment": True,
            "installment_count": 3,
        }))

        assert not result.success
        assert result.error_kind == ErrorKind.INPUT_VALIDATION
        assert [e.field for e in result.field_errors] == ["installment_count"]
        assert store.count(Collection.OBLIGATIONS) == 0

    def test_count_above_limit_rejected(self, manual_flow, store):
        result = run(manual_flow.create_manual_obligation({
            "amount": "300,00",
            "event_date": "2025-03-01",
            "payment_method": "credit",
            "is_installment": True,
            "installment_count": 1_000_000,
        }))

        assert not result.success
        assert [e.field for e in result.field_errors] == ["installment_count"]
        assert store.count(Collection.OBLIGATIONS) == 0

    def test_schedule_error_keeps_origin_unlinked(self, manual_flow, store, owner_id, monkeypatch):
        """Test an expansion error is a warning and writes no plan."""
        def fail(origin, plan):
            raise ScheduleError("cannot expand")

        monkeypatch.setattr("expense_ledger.orchestrator.expand_schedule", fail)

        result = run(manual_flow.create_manual_obligation({
            "amount": "300,00",
            "event_date": "2025-03-01",
            "payment_method": "credit",
            "is_installment": True,
            "installment_count": 3,
        }))

        assert result.success
        assert any("cannot expand" in w for w in result.warnings)
        [origin] = obligations(store, owner_id)
        assert origin.installment_plan_id is None
        assert run(store.select(Collection.INSTALLMENT_PLANS, owner_id)) == []
        assert "schedule_failed" in audit_types(store, owner_id)


class TestUpdateObligation:
    """Tests for editing an existing obligation."""

    def create(self, flow) -> str:
        result = run(flow.create_manual_obligation({
            "amount": "10,00",
            "event_date": "2025-03-10",
            "description": "Old",
            "payment_method": "cash",
        }))
        return result.obligation_id

    def test_edits_allowed_fields(self, manual_flow, store, owner_id):
        obligation_id = self.create(manual_flow)

        result = run(manual_flow.update_obligation(
            obligation_id,
            {"description": "New", "payment_method": "debit"},
        ))

        assert result.success
        [stored] = obligations(store, owner_id)
        assert stored.description == "New"
        assert stored.payment_method == PaymentMethod.DEBIT
        assert stored.amount == Decimal("10.00")
        assert "obligation_updated" in audit_types(store, owner_id)

    def test_rejects_amount_edit(self, manual_flow):
        """Test that amount is not editable."""
        obligation_id = self.create(manual_flow)

        result = run(manual_flow.update_obligation(obligation_id, {"amount": "20,00"}))

        assert not result.success
        assert result.error_kind == ErrorKind.INPUT_VALIDATION

    def test_empty_patch(self, manual_flow):
        obligation_id = self.create(manual_flow)
        result = run(manual_flow.update_obligation(obligation_id, {}))
        assert result.error_kind == ErrorKind.INPUT_VALIDATION

    def test_other_owner_cannot_edit(self, store, manual_flow):
        """Test owner scoping on update."""
        obligation_id = self.create(manual_flow)
        intruder = ManualObligationFlow(store, "intruder")

        result = run(intruder.update_obligation(obligation_id, {"description": "Hacked"}))

        assert not result.success
        assert result.error_kind == ErrorKind.PERSISTENCE


class TestScannedIngestion:
    """Tests for the fetch + parse preview."""

    def test_preview(self, store, owner_id, receipt_html, receipt_url):
        """Test a receipt page becomes a preview and nothing is saved."""
        flow = scanned_flow(store, owner_id, lambda r: httpx.Response(200, text=receipt_html))

        result = run(flow.ingest_scanned_document(receipt_url))

        assert result.success
        assert result.preview.amount_payable == Decimal("60.00")
        assert result.item_count == 2
        assert store.count(Collection.OBLIGATIONS) == 0
        assert "receipt_fetched" in audit_types(store, owner_id)

    def test_url_whitespace_is_normalized(self, store, owner_id, receipt_html, receipt_url):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text=receipt_html)

        flow = scanned_flow(store, owner_id, handler)
        run(flow.ingest_scanned_document(f"  {receipt_url[:30]}\n{receipt_url[30:]} "))

        assert len(seen) == 1
        assert " " not in seen[0]

    def test_rejects_non_http_url(self, store, owner_id):
        """Test that the fetcher is never called for a non-http URL."""
        flow = scanned_flow(store, owner_id, lambda r: pytest.fail("should not fetch"))

        result = run(flow.ingest_scanned_document("ftp://example.com/nfce"))

        assert result.error_kind == ErrorKind.INPUT_VALIDATION

    def test_http_error(self, store, owner_id, receipt_url):
        flow = scanned_flow(store, owner_id, lambda r: httpx.Response(500, text="oops"))

        result = run(flow.ingest_scanned_document(receipt_url))

        assert result.error_kind == ErrorKind.UPSTREAM_FETCH
        assert "500" in result.details
        assert "receipt_fetch_failed" in audit_types(store, owner_id)

    def test_timeout(self, store, owner_id, receipt_url):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        result = run(scanned_flow(store, owner_id, handler).ingest_scanned_document(receipt_url))

        assert result.error_kind == ErrorKind.UPSTREAM_FETCH
        assert "Timed out" in result.message

    def test_unusable_page(self, store, owner_id, receipt_url):
        """Test a page without key or amount is an extraction failure."""
        flow = scanned_flow(store, owner_id, lambda r: httpx.Response(200, text="<html></html>"))

        result = run(flow.ingest_scanned_document(receipt_url))

        assert result.error_kind == ErrorKind.EXTRACTION
        assert "extraction_failed" in audit_types(store, owner_id)


class TestScannedConfirmation:
    """Tests for the ingestion saga."""

    @pytest.fixture
    def preview(self, store, owner_id, receipt_html, receipt_url) -> ParsedDocument:
        flow = scanned_flow(store, owner_id, lambda r: httpx.Response(200, text=receipt_html))
        return run(flow.ingest_scanned_document(receipt_url)).preview

    @pytest.fixture
    def flow(self, store, owner_id) -> ScannedDocumentFlow:
        return scanned_flow(store, owner_id, lambda r: pytest.fail("no fetch on confirm"))

    def test_saves_obligation_document_and_items(self, flow, preview, store, owner_id):
        """Test the happy path writes all three record kinds."""
        result = run(flow.confirm_ingestion(preview))

        assert result.success
        assert result.item_count == 2

        [obligation] = obligations(store, owner_id)
        assert obligation.id == result.obligation_id
        assert obligation.amount == Decimal("60.00")
        assert obligation.event_date == date(2025, 3, 15)
        assert obligation.description == "SUPERMERCADO EXEMPLO LTDA"
        assert obligation.payment_method == PaymentMethod.CREDIT
        assert obligation.origin == OriginType.SCANNED_DOCUMENT
        assert obligation.status == ObligationStatus.CONFIRMED

        [document] = run(store.select(Collection.DOCUMENTS, owner_id))
        assert document["obligation_id"] == str(obligation.id)
        assert document["external_id"] == preview.access_key
        assert document["raw_text"] == preview.source_url
        assert document["raw_payload"] == preview.raw_html
        assert document["source"] == "nfce-html"
        assert document["kind"] == "link"

        items = run(store.select(Collection.DOCUMENT_ITEMS, owner_id))
        assert len(items) == 2
        assert all(item["document_id"] == document["id"] for item in items)

    def test_items_read_back_for_obligation(self, flow, preview, store, owner_id):
        """Test the stored lines are returned for the confirmed obligation."""
        result = run(flow.confirm_ingestion(preview))
        documents = DocumentQueryService(store, owner_id)

        items = run(documents.items_for_obligation(result.obligation_id))

        assert [item.description for item in items] == ["ARROZ TIPO 1 5KG", "FEIJAO CARIOCA"]
        assert [item.total_price for item in items] == [Decimal("51.80"), Decimal("12.60")]

        view = run(documents.items_view(result.obligation_id))
        assert view.document_id == items[0].document_id
        assert view.total == Decimal("64.40")

        assert run(DocumentQueryService(store, "someone-else").items_for_obligation(
            result.obligation_id
        )) == []

    def test_user_edits_override_preview(self, flow, preview, store, owner_id):
        """Test reviewed values and an empty item list."""
        result = run(flow.confirm_ingestion(preview, {
            "amount": "R$ 55,00",
            "description": "Groceries",
            "category_id": "cat-food",
            "items": [],
        }))

        assert result.success
        assert result.item_count == 0
        [obligation] = obligations(store, owner_id)
        assert obligation.amount == Decimal("55.00")
        assert obligation.description == "Groceries"
        assert obligation.category_id == "cat-food"
        assert store.count(Collection.DOCUMENT_ITEMS) == 0
        assert ("insert_many", Collection.DOCUMENT_ITEMS) not in store.calls

    def test_item_failure_leaves_no_rows(self, flow, preview, store, owner_id):
        """Test compensation after the item stage fails."""
        store.inject_failure("insert_many", Collection.DOCUMENT_ITEMS, "items rejected")

        result = run(flow.confirm_ingestion(preview))

        assert not result.success
        assert result.error_kind == ErrorKind.PERSISTENCE
        assert result.details == "items rejected"
        assert store.count(Collection.OBLIGATIONS) == 0
        assert store.count(Collection.DOCUMENTS) == 0
        assert store.count(Collection.DOCUMENT_ITEMS) == 0

        events = audit_types(store, owner_id)
        assert "saga_stage_failed" in events
        assert events.count("compensation_executed") == 2

    def test_document_failure_removes_obligation(self, flow, preview, store):
        store.inject_failure("insert", Collection.DOCUMENTS)

        result = run(flow.confirm_ingestion(preview))

        assert result.error_kind == ErrorKind.PERSISTENCE
        assert store.count(Collection.OBLIGATIONS) == 0
        assert ("insert_many", Collection.DOCUMENT_ITEMS) not in store.calls

    def test_failed_compensation_is_audited(self, flow, preview, store, owner_id):
        """Test that a failing undo is recorded and unwinding continues."""
        store.inject_failure("insert_many", Collection.DOCUMENT_ITEMS)
        store.inject_failure("delete", Collection.DOCUMENTS)

        result = run(flow.confirm_ingestion(preview))

        assert not result.success
        assert "compensation_failed" in audit_types(store, owner_id)
        # Deleting the obligation still ran (and cascades to its document)
        assert store.count(Collection.OBLIGATIONS) == 0

    def test_missing_amount_is_input_error(self, flow, store):
        """Test a preview without an amount needs a manual value."""
        preview = ParsedDocument(
            access_key="4" * 44,
            items=[ParsedItem(description="PAO")],
            source_url="https://example.com/nfce",
        )

        result = run(flow.confirm_ingestion(preview))

        assert result.error_kind == ErrorKind.INPUT_VALIDATION
        assert store.count(Collection.OBLIGATIONS) == 0


class TestAppComponents:
    """Tests for the component factory."""

    def test_in_memory_components(self):
        manual, scanned, registries, summaries, documents = create_app_components(
            "user-1", use_storage=False
        )
        result = run(manual.create_manual_obligation({
            "amount": "10,00",
            "event_date": "2025-03-10",
            "payment_method": "cash",
        }))
        assert result.success
        assert run(summaries.month_summary(2025, 3)).confirmed_total == Decimal("10.00")
        assert isinstance(scanned, ScannedDocumentFlow)
        assert run(registries.list_categories()) == []
        assert run(documents.items_for_obligation(result.obligation_id)) == []

    def test_shared_store(self):
        """Test every component reads the same backend."""
        manual, _, _, _, _ = create_app_components("user-1", use_storage=False)
        assert isinstance(manual._store, InMemoryRecordStore)
