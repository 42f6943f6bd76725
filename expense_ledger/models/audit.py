"""
Audit Models for Expense Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when a saga had to compensate
3. Ability to reconstruct what was written for a given user action

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of both origination paths has its own event type.
    """
    # Manual path
    VALIDATION_FAILED = "validation_failed"
    OBLIGATION_CREATED = "obligation_created"
    OBLIGATION_UPDATED = "obligation_updated"
    RECURRENCE_PLAN_CREATED = "recurrence_plan_created"
    INSTALLMENT_PLAN_CREATED = "installment_plan_created"
    SCHEDULE_GENERATED = "schedule_generated"
    SCHEDULE_FAILED = "schedule_failed"

    # Scanned path
    RECEIPT_FETCHED = "receipt_fetched"
    RECEIPT_FETCH_FAILED = "receipt_fetch_failed"
    EXTRACTION_FAILED = "extraction_failed"
    DOCUMENT_SAVED = "document_saved"
    DOCUMENT_ITEMS_SAVED = "document_items_saved"

    # Saga bookkeeping
    SAGA_STAGE_FAILED = "saga_stage_failed"
    COMPENSATION_EXECUTED = "compensation_executed"
    COMPENSATION_FAILED = "compensation_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )
    owner_id: Optional[str] = Field(
        default=None,
        description="User the event belongs to"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'obligation', 'document', 'receipt')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one scan)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "owner_id": self.owner_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict:
        """Convert to a record for the audit_events collection."""
        record = self.model_dump(mode="json")
        record["id"] = record["event_id"]
        record["owner_id"] = self.owner_id or ""
        return record


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.obligation_created(owner_id, obligation_id, ...)
        event = AuditEventBuilder.compensation_executed(owner_id, "create_document", ...)
    """

    @staticmethod
    def validation_failed(
        owner_id: str,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="obligation_input",
            correlation_id=correlation_id,
            description=f"Manual entry rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def obligation_created(
        owner_id: str,
        obligation_id: UUID,
        amount: str,
        origin: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.OBLIGATION_CREATED,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Obligation created ({origin}): R$ {amount}",
            details={"amount": amount, "origin": origin},
            is_user_action=True,
        )

    @staticmethod
    def obligation_updated(
        owner_id: str,
        obligation_id: UUID,
        fields: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.OBLIGATION_UPDATED,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Obligation updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def plan_created(
        owner_id: str,
        plan_type: str,
        plan_id: UUID,
        origin_obligation_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        event_type = (
            AuditEventType.RECURRENCE_PLAN_CREATED
            if plan_type == "recurrence"
            else AuditEventType.INSTALLMENT_PLAN_CREATED
        )
        return AuditEvent(
            owner_id=owner_id,
            event_type=event_type,
            entity_type=f"{plan_type}_plan",
            entity_id=plan_id,
            correlation_id=correlation_id,
            description=f"{plan_type.capitalize()} plan created",
            details={"origin_obligation_id": str(origin_obligation_id)},
        )

    @staticmethod
    def schedule_generated(
        owner_id: str,
        plan_id: UUID,
        count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.SCHEDULE_GENERATED,
            entity_type="plan",
            entity_id=plan_id,
            correlation_id=correlation_id,
            description=f"{count} projected occurrences written",
            details={"count": count},
        )

    @staticmethod
    def schedule_failed(
        owner_id: str,
        origin_obligation_id: UUID,
        step: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.SCHEDULE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="obligation",
            entity_id=origin_obligation_id,
            correlation_id=correlation_id,
            description=f"Schedule step failed: {step} (origin kept)",
            details={"step": step},
            error_message=error_message,
        )

    @staticmethod
    def receipt_fetched(
        owner_id: str,
        url: str,
        status_code: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.RECEIPT_FETCHED,
            entity_type="receipt",
            correlation_id=correlation_id,
            description=f"Receipt page fetched (HTTP {status_code})",
            details={"url": url, "status_code": status_code},
            is_user_action=True,
        )

    @staticmethod
    def receipt_fetch_failed(
        owner_id: str,
        url: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.RECEIPT_FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Receipt page could not be fetched",
            details={"url": url},
            error_message=error_message,
        )

    @staticmethod
    def extraction_failed(
        owner_id: str,
        url: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.EXTRACTION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="receipt",
            correlation_id=correlation_id,
            description="Neither access key nor payable amount found on receipt page",
            details={"url": url},
        )

    @staticmethod
    def document_saved(
        owner_id: str,
        document_id: UUID,
        obligation_id: UUID,
        access_key: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.DOCUMENT_SAVED,
            entity_type="document",
            entity_id=document_id,
            correlation_id=correlation_id,
            description="Fiscal document saved",
            details={
                "obligation_id": str(obligation_id),
                "access_key": access_key,
            },
        )

    @staticmethod
    def document_items_saved(
        owner_id: str,
        document_id: UUID,
        count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.DOCUMENT_ITEMS_SAVED,
            entity_type="document",
            entity_id=document_id,
            correlation_id=correlation_id,
            description=f"{count} document items saved",
            details={"count": count},
        )

    @staticmethod
    def saga_stage_failed(
        owner_id: str,
        saga: str,
        stage: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.SAGA_STAGE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="saga",
            correlation_id=correlation_id,
            description=f"Saga '{saga}' failed at stage '{stage}'",
            details={"saga": saga, "stage": stage},
            error_message=error_message,
        )

    @staticmethod
    def compensation_executed(
        owner_id: str,
        saga: str,
        stage: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.COMPENSATION_EXECUTED,
            severity=AuditSeverity.WARNING,
            entity_type="saga",
            correlation_id=correlation_id,
            description=f"Compensated stage '{stage}' of saga '{saga}'",
            details={"saga": saga, "stage": stage},
        )

    @staticmethod
    def compensation_failed(
        owner_id: str,
        saga: str,
        stage: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.COMPENSATION_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="saga",
            correlation_id=correlation_id,
            description=f"Compensation of stage '{stage}' failed; rows may remain",
            details={"saga": saga, "stage": stage},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            owner_id=owner_id,
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
