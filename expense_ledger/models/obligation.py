"""
Core Data Models for Expense Ledger

These models define the strict schemas for all records flowing through
the system. They are designed to:
1. Enforce type safety at runtime
2. Provide clear, field-level validation error messages
3. Serialize to plain records for any storage backend
4. Keep invalid states unrepresentable (closed enums, model invariants)

DESIGN DECISION: Money is Decimal with 2 decimal places everywhere.
Floats never touch an amount.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from expense_ledger.utils.money import parse_masked_amount


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PaymentMethod(str, Enum):
    """How an obligation is (or will be) paid."""
    CREDIT = "credit"
    DEBIT = "debit"
    INSTANT_TRANSFER = "instant_transfer"  # Pix
    CASH = "cash"
    BILL = "bill"                          # Boleto
    OTHER = "other"


class OriginType(str, Enum):
    """Which origination path created the obligation."""
    MANUAL = "manual"
    SCANNED_DOCUMENT = "scanned_document"


class ObligationStatus(str, Enum):
    """
    Obligation status.

    CONFIRMED: created directly by the user or backed by a receipt.
    PROJECTED: generated by a recurrence or installment plan, not yet due.
    """
    CONFIRMED = "confirmed"
    PROJECTED = "projected"


class IntervalUnit(str, Enum):
    """Fixed recurrence units. Arbitrary recurrence rules are not supported."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class DocumentKind(str, Enum):
    """How a fiscal document reached us."""
    LINK = "link"  # Fetched from the QR-code URL


class ProcessingStatus(str, Enum):
    """Processing status of a stored fiscal document."""
    PROCESSED = "processed"


class ErrorKind(str, Enum):
    """Discriminator for failed results returned to the UI."""
    INPUT_VALIDATION = "input_validation"
    UPSTREAM_FETCH = "upstream_fetch"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"


class StoredRecord(BaseModel):
    """Base for every persisted entity: identity, owner and timestamps."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Opaque identifier of the owning user"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the record was created"
    )

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-compatible dict (dates as YYYY-MM-DD, Decimal as str)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]):
        """Rebuild a model from a stored record."""
        return cls.model_validate(record)


# =============================================================================
# OBLIGATION
# =============================================================================

class Obligation(StoredRecord):
    """
    A single dated, amount-bearing financial record.

    CRITICAL: For installment plans the stored amount is the
    PER-INSTALLMENT amount, never the plan total.
    """

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount in BRL"
    )
    event_date: date = Field(
        ...,
        description="Calendar date of the obligation"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    category_id: Optional[str] = None
    entity_id: Optional[str] = None
    payment_method: PaymentMethod
    origin: OriginType = OriginType.MANUAL
    status: ObligationStatus = ObligationStatus.CONFIRMED

    # Plan back-references (filled once the plan id is known)
    recurrence_plan_id: Optional[UUID] = None
    installment_plan_id: Optional[UUID] = None
    installment_number: Optional[int] = Field(
        default=None,
        ge=1,
        description="1-based position inside an installment plan"
    )

    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last update timestamp"
    )

    @model_validator(mode='after')
    def validate_plan_references(self) -> 'Obligation':
        """An obligation belongs to at most one plan."""
        if self.recurrence_plan_id and self.installment_plan_id:
            raise ValueError(
                "Obligation cannot reference both a recurrence and an installment plan"
            )
        return self


# =============================================================================
# PLANS
# =============================================================================

class RecurrencePlan(StoredRecord):
    """Rule generating a bounded series of periodic obligations."""

    origin_obligation_id: UUID
    interval_value: int = Field(..., gt=0)
    interval_unit: IntervalUnit
    expected_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount of every generated occurrence"
    )
    starts_on: date
    ends_on: date = Field(
        ...,
        description="Required - open-ended recurrence is not supported"
    )
    active: bool = True

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurrencePlan':
        if self.ends_on < self.starts_on:
            raise ValueError("Recurrence end date cannot be before its start date")
        return self


class InstallmentPlan(StoredRecord):
    """Rule generating a fixed-count series of equal-amount obligations."""

    origin_obligation_id: UUID
    total_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Sum across all installments (as declared by the user)"
    )
    installment_count: int = Field(..., ge=2, le=360)
    installment_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
    )
    starts_on: date


# =============================================================================
# FISCAL DOCUMENTS
# =============================================================================

class FiscalDocument(StoredRecord):
    """Structured record of a scanned retailer receipt backing one obligation."""

    obligation_id: UUID
    kind: DocumentKind = DocumentKind.LINK
    external_id: Optional[str] = Field(
        default=None,
        max_length=60,
        description="Issuer access key (44 digits when present)"
    )
    raw_text: str = Field(
        ...,
        description="Original QR-code URL"
    )
    raw_payload: str = Field(
        default="",
        description="Full retrieved markup, stored verbatim"
    )
    source: str = "nfce-html"
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSED


class DocumentItem(StoredRecord):
    """One purchased line of a fiscal document."""

    document_id: UUID
    description: str = Field(
        ...,
        min_length=1,
        max_length=300,
    )
    sku: Optional[str] = Field(default=None, max_length=60)
    quantity: Optional[Decimal] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, max_length=20)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    raw_fragment: Optional[str] = Field(
        default=None,
        description="Matched markup slice kept for diagnostics"
    )


# =============================================================================
# REGISTRIES
# =============================================================================

class Category(StoredRecord):
    """User-defined spending category."""

    name: str = Field(..., min_length=1, max_length=100)


class Entity(StoredRecord):
    """Counterparty (merchant, landlord, provider...)."""

    name: str = Field(..., min_length=1, max_length=200)
    normalized_name: str = Field(..., min_length=1, max_length=200)


# =============================================================================
# INPUT MODELS
# =============================================================================

class ManualObligationInput(BaseModel):
    """
    A manual entry as submitted by the form.

    Masked currency strings ("R$ 1.234,56") are converted to Decimal
    HERE, once. Nothing downstream re-parses a display string.
    For installments, `amount` is the plan TOTAL.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    event_date: date
    description: Optional[str] = Field(default=None, max_length=480)
    category_id: Optional[str] = None
    entity_id: Optional[str] = None
    payment_method: PaymentMethod

    # Recurrence subflow
    is_recurring: bool = False
    recurrence_interval_value: Optional[int] = Field(default=None, gt=0)
    recurrence_interval_unit: Optional[IntervalUnit] = None
    recurrence_ends_on: Optional[date] = None

    # Installment subflow
    is_installment: bool = False
    installment_count: Optional[int] = Field(default=None, gt=0, le=360)
    installment_amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        decimal_places=2,
    )

    @field_validator(
        'description',
        'category_id',
        'entity_id',
        'recurrence_interval_value',
        'recurrence_interval_unit',
        'recurrence_ends_on',
        'installment_count',
        'installment_amount',
        mode='before',
    )
    @classmethod
    def empty_as_none(cls, v):
        """Blank form fields mean "not provided"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('amount', 'installment_amount', mode='before')
    @classmethod
    def convert_masked_amount(cls, v):
        if v is None or isinstance(v, Decimal):
            return v
        if isinstance(v, str) and not v.strip():
            return None
        return parse_masked_amount(v)


class ObligationPatch(BaseModel):
    """Fields a user may edit on an existing obligation."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[str] = None
    entity_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


# =============================================================================
# VALIDATION & RESULT MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (subflow requirements, sanity checks)
    """

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def field_errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]


class CreationResult(BaseModel):
    """Outcome of a manual creation or update, returned to the UI."""

    success: bool
    obligation_id: Optional[UUID] = None
    generated_count: int = Field(
        default=0,
        ge=0,
        description="Future occurrences written by the schedule engine"
    )
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    field_errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
