"""Validation package."""

from expense_ledger.validation.validator import (
    InputValidationError,
    ObligationValidator,
    derive_installment_amount,
)

__all__ = [
    "InputValidationError",
    "ObligationValidator",
    "derive_installment_amount",
]
