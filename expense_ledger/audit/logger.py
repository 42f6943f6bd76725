"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of what each user action wrote
2. A record of every saga compensation (and every failed one)
3. Debugging capability for best-effort receipt parsing

The audit logger:
- Is async so it can share the flows' event loop
- Gracefully handles failures (an audit write never breaks a flow)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder
from expense_ledger.services.storage import Collection, RecordStore


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The record store's audit_events collection (when one is given)
    """

    def __init__(self, store: Optional[RecordStore] = None):
        """
        Args:
            store: Record store for persistence. If None, only logs locally.
        """
        self._store = store
        self._logger = structlog.get_logger("expense_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.insert(Collection.AUDIT_EVENTS, event.to_record())
                return True
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_validation_failed(
        self,
        owner_id: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log a rejected manual entry."""
        await self.log(AuditEventBuilder.validation_failed(
            owner_id=owner_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_obligation_created(
        self,
        owner_id: str,
        obligation_id: UUID,
        amount: str,
        origin: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.obligation_created(
            owner_id=owner_id,
            obligation_id=obligation_id,
            amount=amount,
            origin=origin,
            correlation_id=correlation_id,
        ))

    async def log_obligation_updated(
        self,
        owner_id: str,
        obligation_id: UUID,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.obligation_updated(
            owner_id=owner_id,
            obligation_id=obligation_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_plan_created(
        self,
        owner_id: str,
        plan_type: str,
        plan_id: UUID,
        origin_obligation_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log a recurrence or installment plan."""
        await self.log(AuditEventBuilder.plan_created(
            owner_id=owner_id,
            plan_type=plan_type,
            plan_id=plan_id,
            origin_obligation_id=origin_obligation_id,
            correlation_id=correlation_id,
        ))

    async def log_schedule_generated(
        self,
        owner_id: str,
        plan_id: UUID,
        count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.schedule_generated(
            owner_id=owner_id,
            plan_id=plan_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_schedule_failed(
        self,
        owner_id: str,
        origin_obligation_id: UUID,
        step: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a post-origin failure on the manual path (origin is kept)."""
        await self.log(AuditEventBuilder.schedule_failed(
            owner_id=owner_id,
            origin_obligation_id=origin_obligation_id,
            step=step,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_receipt_fetched(
        self,
        owner_id: str,
        url: str,
        status_code: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_fetched(
            owner_id=owner_id,
            url=url,
            status_code=status_code,
            correlation_id=correlation_id,
        ))

    async def log_receipt_fetch_failed(
        self,
        owner_id: str,
        url: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.receipt_fetch_failed(
            owner_id=owner_id,
            url=url,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_extraction_failed(
        self,
        owner_id: str,
        url: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.extraction_failed(
            owner_id=owner_id,
            url=url,
            correlation_id=correlation_id,
        ))

    async def log_document_saved(
        self,
        owner_id: str,
        document_id: UUID,
        obligation_id: UUID,
        access_key: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.document_saved(
            owner_id=owner_id,
            document_id=document_id,
            obligation_id=obligation_id,
            access_key=access_key,
            correlation_id=correlation_id,
        ))

    async def log_document_items_saved(
        self,
        owner_id: str,
        document_id: UUID,
        count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.document_items_saved(
            owner_id=owner_id,
            document_id=document_id,
            count=count,
            correlation_id=correlation_id,
        ))

    async def log_saga_stage_failed(
        self,
        owner_id: str,
        saga: str,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.saga_stage_failed(
            owner_id=owner_id,
            saga=saga,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_compensation_executed(
        self,
        owner_id: str,
        saga: str,
        stage: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.compensation_executed(
            owner_id=owner_id,
            saga=saga,
            stage=stage,
            correlation_id=correlation_id,
        ))

    async def log_compensation_failed(
        self,
        owner_id: str,
        saga: str,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.compensation_failed(
            owner_id=owner_id,
            saga=saga,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a QR scan).
    Pass it through all subsequent operations.
    """
    return uuid4()
