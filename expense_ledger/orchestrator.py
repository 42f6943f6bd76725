"""
Main Orchestrator for Expense Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Manual entry (form → validate → origin → plan → projected schedule)
2. Scanned receipt (QR URL → fetch → parse → preview → confirm → saga)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No scanned data persists without the user confirming the preview
- No flow method raises; every outcome is a result model
- Every step is audited

The two paths treat partial failure differently, on purpose:
- Manual: the origin obligation is kept; a failing plan/schedule write is
  reported as a warning on a successful result.
- Scanned: obligation, document and items are written as a compensating
  saga; a failure leaves no rows behind.
"""

from datetime import date, datetime
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.models.document import (
    IngestionEdits,
    IngestionResult,
    ParsedDocument,
)
from expense_ledger.models.obligation import (
    CreationResult,
    DocumentItem,
    ErrorKind,
    FiscalDocument,
    InstallmentPlan,
    ManualObligationInput,
    Obligation,
    ObligationPatch,
    ObligationStatus,
    OriginType,
    PaymentMethod,
    RecurrencePlan,
    ValidationIssue,
)
from expense_ledger.parsing import ExtractionError, normalize_qr_url, parse_nfce_html
from expense_ledger.queries import DocumentQueryService, RegistryService, SummaryService
from expense_ledger.saga import Saga, SagaFailedError
from expense_ledger.schedule import (
    ScheduleError,
    expand_schedule,
    installment_description,
)
from expense_ledger.services.fetch import (
    FetchTimeoutError,
    HttpxReceiptFetcher,
    ReceiptFetcher,
    UpstreamFetchError,
)
from expense_ledger.services.storage import (
    Collection,
    GoogleSheetsClient,
    GoogleSheetsRecordStore,
    InMemoryRecordStore,
    NotFoundError,
    RecordStore,
    StorageError,
)
from expense_ledger.utils.money import to_cents
from expense_ledger.validation import InputValidationError, ObligationValidator

logger = structlog.get_logger(__name__)

INGESTION_SAGA = "scanned_document_ingestion"


class PersistenceError(Exception):
    """A multi-record write failed (after compensation, where applicable)."""

    def __init__(self, message: str, stage: Optional[str] = None, cause: Optional[Exception] = None):
        self.stage = stage
        self.cause = cause
        super().__init__(message)


def _pydantic_issues(error: ValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(part) for part in item["loc"]) or "form",
            issue_type=item["type"],
            message=item["msg"],
            severity="error",
        )
        for item in error.errors()
    ]


class ManualObligationFlow:
    """
    Orchestrates manual entry.

    Flow:
    1. Validate → Two-stage validation (schema, then semantic)
    2. Origin → Insert the confirmed origin obligation
    3. Plan → Insert the recurrence/installment plan and link the origin
    4. Schedule → Expand the plan and insert every occurrence in ONE batch

    Steps 3-4 never roll back step 2.
    """

    def __init__(
        self,
        store: RecordStore,
        owner_id: str,
        validator: Optional[ObligationValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._owner_id = owner_id
        self._validator = validator or ObligationValidator()
        self._audit_logger = audit_logger

    def _build_origin(self, data: ManualObligationInput) -> Obligation:
        """
        The confirmed origin obligation.

        For installments the stored amount is the PER-INSTALLMENT amount
        and the origin is installment 1 of N.
        """
        amount = data.amount
        description = data.description
        installment_number = None

        if data.is_installment:
            amount = data.installment_amount
            description = installment_description(
                data.description, 1, data.installment_count
            )
            installment_number = 1

        return Obligation(
            owner_id=self._owner_id,
            amount=amount,
            event_date=data.event_date,
            description=description,
            category_id=data.category_id,
            entity_id=data.entity_id,
            payment_method=data.payment_method,
            origin=OriginType.MANUAL,
            status=ObligationStatus.CONFIRMED,
            installment_number=installment_number,
        )

    def _build_plan(
        self,
        origin: Obligation,
        data: ManualObligationInput,
    ) -> Union[RecurrencePlan, InstallmentPlan]:
        if data.is_recurring:
            return RecurrencePlan(
                owner_id=self._owner_id,
                origin_obligation_id=origin.id,
                interval_value=data.recurrence_interval_value,
                interval_unit=data.recurrence_interval_unit,
                expected_amount=data.amount,
                starts_on=data.event_date,
                ends_on=data.recurrence_ends_on,
            )
        return InstallmentPlan(
            owner_id=self._owner_id,
            origin_obligation_id=origin.id,
            total_amount=data.amount,
            installment_count=data.installment_count,
            installment_amount=data.installment_amount,
            starts_on=data.event_date,
        )

    async def _attach_schedule(
        self,
        origin: Obligation,
        data: ManualObligationInput,
        correlation_id: UUID,
    ) -> tuple[int, Optional[str]]:
        """
        Expand the schedule, insert the plan, link the origin to it, then
        batch-insert the occurrences.

        Returns:
            (generated_count, warning_or_none)
        """
        plan = self._build_plan(origin, data)
        if isinstance(plan, RecurrencePlan):
            plan_type, collection, link_field = (
                "recurrence", Collection.RECURRENCE_PLANS, "recurrence_plan_id"
            )
        else:
            plan_type, collection, link_field = (
                "installment", Collection.INSTALLMENT_PLANS, "installment_plan_id"
            )

        step = "expand_schedule"
        try:
            # Nothing is written when the schedule cannot be expanded
            occurrences = expand_schedule(
                origin.model_copy(update={link_field: plan.id}), plan
            )

            step = f"create_{plan_type}_plan"
            await self._store.insert(collection, plan.to_record())

            step = "link_origin"
            await self._store.update(
                Collection.OBLIGATIONS,
                self._owner_id,
                str(origin.id),
                {link_field: str(plan.id)},
            )
            origin = origin.model_copy(update={link_field: plan.id})

            if self._audit_logger:
                await self._audit_logger.log_plan_created(
                    owner_id=self._owner_id,
                    plan_type=plan_type,
                    plan_id=plan.id,
                    origin_obligation_id=origin.id,
                    correlation_id=correlation_id,
                )

            step = "insert_schedule"
            if occurrences:
                await self._store.insert_many(
                    Collection.OBLIGATIONS,
                    [occurrence.to_record() for occurrence in occurrences],
                )
        except (ScheduleError, StorageError) as e:
            logger.warning(
                "schedule_step_failed",
                owner_id=self._owner_id,
                obligation_id=str(origin.id),
                step=step,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_schedule_failed(
                    owner_id=self._owner_id,
                    origin_obligation_id=origin.id,
                    step=step,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return 0, f"The entry was saved, but its {plan_type} schedule was not ({step}): {e}"

        if self._audit_logger:
            await self._audit_logger.log_schedule_generated(
                owner_id=self._owner_id,
                plan_id=plan.id,
                count=len(occurrences),
                correlation_id=correlation_id,
            )
        return len(occurrences), None

    async def create_manual_obligation(
        self,
        form: Union[ManualObligationInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        """
        Create an obligation from the manual form, plus its schedule.

        Returns:
            CreationResult. Validation and origin-insert failures are
            unsuccessful results; later failures are warnings.
        """
        correlation_id = correlation_id or create_correlation_id()

        data, validation = self._validator.validate(form)
        if not validation.is_valid:
            if self._audit_logger:
                issues = [
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in validation.field_errors
                ]
                await self._audit_logger.log_validation_failed(
                    owner_id=self._owner_id,
                    issues=issues,
                    correlation_id=correlation_id,
                )
            return CreationResult(
                success=False,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message=self._validator.get_user_friendly_summary(validation),
                field_errors=validation.field_errors,
                warnings=validation.warnings,
            )

        origin = self._build_origin(data)
        try:
            await self._store.insert(Collection.OBLIGATIONS, origin.to_record())
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="obligation_insert_failed",
                    error_message=str(e),
                    owner_id=self._owner_id,
                    correlation_id=correlation_id,
                )
            return CreationResult(
                success=False,
                error_kind=ErrorKind.PERSISTENCE,
                message=f"Could not save the entry: {e}",
                warnings=validation.warnings,
            )

        if self._audit_logger:
            await self._audit_logger.log_obligation_created(
                owner_id=self._owner_id,
                obligation_id=origin.id,
                amount=str(origin.amount),
                origin=origin.origin.value,
                correlation_id=correlation_id,
            )

        warnings = list(validation.warnings)
        generated = 0
        if data.is_recurring or data.is_installment:
            generated, warning = await self._attach_schedule(origin, data, correlation_id)
            if warning:
                warnings.append(warning)

        return CreationResult(
            success=True,
            obligation_id=origin.id,
            generated_count=generated,
            message="Entry saved",
            warnings=warnings,
        )

    async def update_obligation(
        self,
        obligation_id: Union[UUID, str],
        patch: Union[ObligationPatch, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> CreationResult:
        """
        Edit description, category, entity or payment method.

        Amount, date, status and plan links are not editable. Only the
        given obligation changes; projected occurrences are left as they are.
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            if not isinstance(patch, ObligationPatch):
                patch = ObligationPatch.model_validate(patch)
        except ValidationError as e:
            return CreationResult(
                success=False,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message="Only description, category, entity and payment method can be edited",
                field_errors=_pydantic_issues(e),
            )

        fields = patch.model_dump(mode="json", exclude_unset=True)
        if not fields:
            return CreationResult(
                success=False,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message="Nothing to update",
            )
        changes = {**fields, "updated_at": datetime.utcnow().isoformat()}

        try:
            await self._store.update(
                Collection.OBLIGATIONS,
                self._owner_id,
                str(obligation_id),
                changes,
            )
        except NotFoundError:
            return CreationResult(
                success=False,
                error_kind=ErrorKind.PERSISTENCE,
                message=f"Obligation not found: {obligation_id}",
            )
        except StorageError as e:
            return CreationResult(
                success=False,
                error_kind=ErrorKind.PERSISTENCE,
                message=f"Could not update the entry: {e}",
            )

        if self._audit_logger:
            await self._audit_logger.log_obligation_updated(
                owner_id=self._owner_id,
                obligation_id=UUID(str(obligation_id)),
                fields=sorted(fields),
                correlation_id=correlation_id,
            )

        return CreationResult(
            success=True,
            obligation_id=UUID(str(obligation_id)),
            message="Entry updated",
        )


class ScannedDocumentFlow:
    """
    Orchestrates the scanned-receipt flow.

    Flow:
    1. Fetch → GET the QR-code URL (bounded by the fetch timeout)
    2. Parse → Heuristic extraction; unusable pages are rejected
    3. Review → Present the preview to the user (PAUSE - require confirmation)
    4. Save → Obligation, document and items as one compensating saga

    Human confirmation (step 3) is MANDATORY.
    The system NEVER auto-saves a scanned receipt.
    """

    def __init__(
        self,
        store: RecordStore,
        owner_id: str,
        fetcher: Optional[ReceiptFetcher] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._owner_id = owner_id
        self._fetcher = fetcher or HttpxReceiptFetcher()
        self._audit_logger = audit_logger

    async def _fetch_and_parse(self, url: str, correlation_id: UUID) -> ParsedDocument:
        """
        Raises:
            InputValidationError: URL is not http(s)
            UpstreamFetchError: Page could not be retrieved
            ExtractionError: Page holds no usable receipt data
        """
        if not url.lower().startswith("http"):
            raise InputValidationError(
                "Receipt URL must start with http",
                field_errors=[ValidationIssue(
                    field="url",
                    issue_type="invalid_format",
                    message="Receipt URL must start with http",
                    severity="error",
                    suggested_fix="Scan the QR code again or paste the full link",
                )],
            )

        try:
            response = await self._fetcher.fetch(url)
        except UpstreamFetchError as e:
            if self._audit_logger:
                await self._audit_logger.log_receipt_fetch_failed(
                    owner_id=self._owner_id,
                    url=url,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_receipt_fetched(
                owner_id=self._owner_id,
                url=url,
                status_code=response.status_code,
                correlation_id=correlation_id,
            )

        document = parse_nfce_html(response.text, url)
        if not document.is_usable:
            if self._audit_logger:
                await self._audit_logger.log_extraction_failed(
                    owner_id=self._owner_id,
                    url=url,
                    correlation_id=correlation_id,
                )
            raise ExtractionError("Could not extract receipt data from the page", document)

        return document

    async def ingest_scanned_document(
        self,
        url: str,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionResult:
        """
        Fetch and parse a receipt URL into a preview. Nothing is saved.
        """
        correlation_id = correlation_id or create_correlation_id()
        url = normalize_qr_url(url)

        try:
            document = await self._fetch_and_parse(url, correlation_id)
        except InputValidationError as e:
            return IngestionResult(
                success=False,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message=str(e),
            )
        except FetchTimeoutError as e:
            return IngestionResult(
                success=False,
                error_kind=ErrorKind.UPSTREAM_FETCH,
                message="Timed out fetching the receipt page",
                details=str(e),
            )
        except UpstreamFetchError as e:
            return IngestionResult(
                success=False,
                error_kind=ErrorKind.UPSTREAM_FETCH,
                message="Could not fetch the receipt page",
                details=str(e),
            )
        except ExtractionError as e:
            return IngestionResult(
                success=False,
                preview=e.document,
                error_kind=ErrorKind.EXTRACTION,
                message=str(e),
            )

        return IngestionResult(
            success=True,
            preview=document,
            item_count=len(document.items),
            message="Receipt read; review before saving",
        )

    def _build_records(
        self,
        preview: ParsedDocument,
        edits: IngestionEdits,
    ) -> tuple[Obligation, FiscalDocument, list[DocumentItem]]:
        """Obligation, document and items for the confirmed preview."""
        amount = edits.amount if edits.amount is not None else preview.amount_payable
        if amount is None:
            raise InputValidationError(
                "Amount is required",
                field_errors=[ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="The receipt amount was not found; enter it manually",
                    severity="error",
                )],
            )

        obligation = Obligation(
            owner_id=self._owner_id,
            amount=to_cents(amount),
            event_date=edits.event_date or preview.issued_on or date.today(),
            description=edits.description or preview.merchant_name,
            category_id=edits.category_id,
            entity_id=edits.entity_id,
            payment_method=(
                edits.payment_method or preview.payment_method or PaymentMethod.OTHER
            ),
            origin=OriginType.SCANNED_DOCUMENT,
            status=ObligationStatus.CONFIRMED,
        )

        document = FiscalDocument(
            owner_id=self._owner_id,
            obligation_id=obligation.id,
            external_id=preview.access_key,
            raw_text=preview.source_url,
            raw_payload=preview.raw_html,
        )

        parsed_items = edits.items if edits.items is not None else preview.items
        items = [
            DocumentItem(
                owner_id=self._owner_id,
                document_id=document.id,
                description=item.description,
                sku=item.sku,
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                total_price=item.total_price,
                raw_fragment=item.raw_fragment or None,
            )
            for item in parsed_items
        ]
        return obligation, document, items

    def _ingestion_saga(
        self,
        obligation: Obligation,
        document: FiscalDocument,
        items: list[DocumentItem],
    ) -> Saga:
        store, owner_id = self._store, self._owner_id

        async def create_obligation(context):
            return await store.insert(Collection.OBLIGATIONS, obligation.to_record())

        async def delete_obligation(context):
            await store.delete(Collection.OBLIGATIONS, owner_id, str(obligation.id))

        async def create_document(context):
            return await store.insert(Collection.DOCUMENTS, document.to_record())

        async def delete_document(context):
            await store.delete(Collection.DOCUMENTS, owner_id, str(document.id))

        async def create_items(context):
            return await store.insert_many(
                Collection.DOCUMENT_ITEMS,
                [item.to_record() for item in items],
            )

        saga = Saga(INGESTION_SAGA)
        saga.add_stage("create_obligation", create_obligation, delete_obligation)
        saga.add_stage("create_document", create_document, delete_document)
        if items:
            saga.add_stage("create_items", create_items)
        return saga

    async def _persist(
        self,
        obligation: Obligation,
        document: FiscalDocument,
        items: list[DocumentItem],
        correlation_id: UUID,
    ) -> None:
        """
        Run the ingestion saga.

        Raises:
            PersistenceError: After the completed stages were compensated
        """
        saga = self._ingestion_saga(obligation, document, items)
        try:
            await saga.run()
        except SagaFailedError as e:
            if self._audit_logger:
                await self._audit_logger.log_saga_stage_failed(
                    owner_id=self._owner_id,
                    saga=e.saga,
                    stage=e.stage,
                    error_message=str(e.error),
                    correlation_id=correlation_id,
                )
                for stage in e.compensated:
                    await self._audit_logger.log_compensation_executed(
                        owner_id=self._owner_id,
                        saga=e.saga,
                        stage=stage,
                        correlation_id=correlation_id,
                    )
                for failure in e.compensation_failures:
                    await self._audit_logger.log_compensation_failed(
                        owner_id=self._owner_id,
                        saga=e.saga,
                        stage=failure.stage,
                        error_message=failure.error,
                        correlation_id=correlation_id,
                    )
            raise PersistenceError(
                f"Could not save the receipt (failed at {e.stage})",
                stage=e.stage,
                cause=e.error,
            ) from e

    async def confirm_ingestion(
        self,
        preview: ParsedDocument,
        edits: Optional[Union[IngestionEdits, dict[str, Any]]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> IngestionResult:
        """
        Save a reviewed preview.

        CRITICAL: This is called ONLY after explicit user confirmation.
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            if edits is None:
                edits = IngestionEdits()
            elif not isinstance(edits, IngestionEdits):
                edits = IngestionEdits.model_validate(edits)
            obligation, document, items = self._build_records(preview, edits)
        except InputValidationError as e:
            return IngestionResult(
                success=False,
                preview=preview,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message=str(e),
            )
        except ValidationError as e:
            return IngestionResult(
                success=False,
                preview=preview,
                error_kind=ErrorKind.INPUT_VALIDATION,
                message="; ".join(i.message for i in _pydantic_issues(e)),
            )

        try:
            await self._persist(obligation, document, items, correlation_id)
        except PersistenceError as e:
            return IngestionResult(
                success=False,
                preview=preview,
                error_kind=ErrorKind.PERSISTENCE,
                message=str(e),
                details=str(e.cause),
            )

        if self._audit_logger:
            await self._audit_logger.log_obligation_created(
                owner_id=self._owner_id,
                obligation_id=obligation.id,
                amount=str(obligation.amount),
                origin=obligation.origin.value,
                correlation_id=correlation_id,
            )
            await self._audit_logger.log_document_saved(
                owner_id=self._owner_id,
                document_id=document.id,
                obligation_id=obligation.id,
                access_key=document.external_id,
                correlation_id=correlation_id,
            )
            if items:
                await self._audit_logger.log_document_items_saved(
                    owner_id=self._owner_id,
                    document_id=document.id,
                    count=len(items),
                    correlation_id=correlation_id,
                )

        return IngestionResult(
            success=True,
            obligation_id=obligation.id,
            document_id=document.id,
            item_count=len(items),
            message="Receipt saved",
        )


def create_app_components(
    owner_id: str,
    use_storage: bool = True,
) -> tuple[
    ManualObligationFlow,
    ScannedDocumentFlow,
    RegistryService,
    SummaryService,
    DocumentQueryService,
]:
    """
    Factory function to create all application components for one owner.

    Args:
        owner_id: Opaque id supplied by the authentication layer
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on the in-memory store.

    Returns:
        (manual_flow, scanned_flow, registries, summaries, documents)
    """
    store: RecordStore
    if use_storage:
        try:
            store = GoogleSheetsRecordStore(GoogleSheetsClient())
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            store = InMemoryRecordStore()
    else:
        store = InMemoryRecordStore()

    audit_logger = AuditLogger(store)

    return (
        ManualObligationFlow(store, owner_id, audit_logger=audit_logger),
        ScannedDocumentFlow(store, owner_id, audit_logger=audit_logger),
        RegistryService(store, owner_id),
        SummaryService(store, owner_id),
        DocumentQueryService(store, owner_id),
    )
