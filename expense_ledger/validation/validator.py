"""
Two-Stage Validation Pipeline

DESIGN DECISION: Manual entries are validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required field presence (pydantic)
- Masked currency strings are converted to Decimal here, once

STAGE 2 - SEMANTIC VALIDATION:
- Recurring entries need an interval and an end date not before the start
- Installment entries need 2 to 360 installments, all on representable dates
- Absurd amount detection (warning only)

Stage 2 is skipped when stage 1 fails.

IMPORTANT: Validation never silently fixes user input. The one value it
fills in is the per-installment amount when the form left it blank,
computed exactly like the form's own auto-fill (total / count, half up).
"""

from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from expense_ledger.config import get_settings
from expense_ledger.models.obligation import (
    ManualObligationInput,
    ValidationIssue,
    ValidationResult,
)
from expense_ledger.utils.dates import add_months
from expense_ledger.utils.money import format_brl, to_cents


class InputValidationError(Exception):
    """User input was rejected; carries the field-level issues."""

    def __init__(self, message: str, field_errors: Optional[list[ValidationIssue]] = None):
        self.field_errors = field_errors or []
        super().__init__(message)


def derive_installment_amount(total: Decimal, count: int) -> Decimal:
    """Per-installment amount: total / count rounded half up to cents."""
    return to_cents(total / Decimal(count))


class ObligationValidator:
    """
    Validates a manual obligation form through a two-stage pipeline.

    Stage 1: Schema validation (pydantic model construction)
    Stage 2: Semantic validation (subflow requirements, sanity bounds)
    """

    def __init__(self):
        self._settings = get_settings().app

    def _validate_schema(
        self,
        form: Union[ManualObligationInput, dict[str, Any]],
    ) -> tuple[Optional[ManualObligationInput], list[ValidationIssue]]:
        """
        Stage 1: Build the input model.

        Returns: (model_or_none, list_of_issues)
        """
        if isinstance(form, ManualObligationInput):
            return form, []

        try:
            return ManualObligationInput.model_validate(form), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "form"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type=error["type"],
                    message=error["msg"],
                    severity="error",
                ))
            return None, issues

    def _validate_semantic(
        self,
        data: ManualObligationInput,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if data.is_recurring and data.is_installment:
            issues.append(ValidationIssue(
                field="is_installment",
                issue_type="conflict",
                message="An entry cannot be both recurring and an installment plan",
                severity="error",
                suggested_fix="Choose either recurrence or installments",
            ))

        if data.is_recurring:
            if data.recurrence_interval_value is None:
                issues.append(ValidationIssue(
                    field="recurrence_interval_value",
                    issue_type="missing",
                    message="Recurrence interval is required",
                    severity="error",
                ))
            if data.recurrence_interval_unit is None:
                issues.append(ValidationIssue(
                    field="recurrence_interval_unit",
                    issue_type="missing",
                    message="Recurrence interval unit is required",
                    severity="error",
                ))
            if data.recurrence_ends_on is None:
                issues.append(ValidationIssue(
                    field="recurrence_ends_on",
                    issue_type="missing",
                    message="Recurring entries need an end date",
                    severity="error",
                    suggested_fix="Open-ended recurrence is not supported",
                ))
            elif data.recurrence_ends_on < data.event_date:
                issues.append(ValidationIssue(
                    field="recurrence_ends_on",
                    issue_type="inconsistent",
                    message="End date cannot be before the start date",
                    severity="error",
                ))

        if data.is_installment:
            if data.installment_count is None or data.installment_count < 2:
                issues.append(ValidationIssue(
                    field="installment_count",
                    issue_type="invalid_value",
                    message="An installment plan needs at least 2 installments",
                    severity="error",
                ))
            elif (
                data.installment_amount is None
                and derive_installment_amount(data.amount, data.installment_count) <= 0
            ):
                issues.append(ValidationIssue(
                    field="installment_amount",
                    issue_type="invalid_value",
                    message="Each installment must be at least R$ 0,01",
                    severity="error",
                ))
            else:
                try:
                    add_months(data.event_date, data.installment_count - 1)
                except (OverflowError, ValueError):
                    issues.append(ValidationIssue(
                        field="installment_count",
                        issue_type="out_of_range",
                        message="The last installment would fall after 31/12/9999",
                        severity="error",
                        suggested_fix="Use an earlier date or fewer installments",
                    ))

        # Absurd amount check
        max_amount = Decimal(str(self._settings.max_obligation_amount))
        if data.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({format_brl(data.amount)}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        form: Union[ManualObligationInput, dict[str, Any]],
    ) -> tuple[Optional[ManualObligationInput], ValidationResult]:
        """
        Run the full two-stage pipeline.

        Returns:
            (input_model, result). The model is None when stage 1 failed;
            for installments it carries the derived per-installment amount.
        """
        all_issues = []

        data, schema_issues = self._validate_schema(form)
        all_issues.extend(schema_issues)
        schema_valid = data is not None

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(data)
            all_issues.extend(semantic_issues)

            if (
                semantic_valid
                and data.is_installment
                and data.installment_amount is None
            ):
                data = data.model_copy(update={
                    "installment_amount": derive_installment_amount(
                        data.amount, data.installment_count
                    ),
                })

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        result = ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )
        return data, result

    def validate_or_raise(
        self,
        form: Union[ManualObligationInput, dict[str, Any]],
    ) -> tuple[ManualObligationInput, ValidationResult]:
        """Like validate(), but raises InputValidationError when invalid."""
        data, result = self.validate(form)
        if not result.is_valid:
            raise InputValidationError(
                self.get_user_friendly_summary(result),
                field_errors=result.field_errors,
            )
        return data, result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("Please fix the following:")
            for issue in result.field_errors:
                lines.append(f"   • {issue.field}: {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
