"""
Data Models Package

This package contains all Pydantic models used in the Expense Ledger system.
All data flowing through the system must conform to these schemas.
"""

from expense_ledger.models.obligation import (
    Category,
    CreationResult,
    DocumentItem,
    DocumentKind,
    Entity,
    ErrorKind,
    FiscalDocument,
    InstallmentPlan,
    IntervalUnit,
    ManualObligationInput,
    Obligation,
    ObligationPatch,
    ObligationStatus,
    OriginType,
    PaymentMethod,
    ProcessingStatus,
    RecurrencePlan,
    StoredRecord,
    ValidationIssue,
    ValidationResult,
)
from expense_ledger.models.document import (
    IngestionEdits,
    IngestionResult,
    ParsedDocument,
    ParsedItem,
)
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Obligation models
    "Category",
    "CreationResult",
    "DocumentItem",
    "DocumentKind",
    "Entity",
    "ErrorKind",
    "FiscalDocument",
    "InstallmentPlan",
    "IntervalUnit",
    "ManualObligationInput",
    "Obligation",
    "ObligationPatch",
    "ObligationStatus",
    "OriginType",
    "PaymentMethod",
    "ProcessingStatus",
    "RecurrencePlan",
    "StoredRecord",
    "ValidationIssue",
    "ValidationResult",
    # Scanned receipt models
    "IngestionEdits",
    "IngestionResult",
    "ParsedDocument",
    "ParsedItem",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
