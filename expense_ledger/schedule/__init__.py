"""Schedule expansion package."""

from expense_ledger.schedule.engine import (
    ScheduleError,
    expand_installments,
    expand_recurrence,
    expand_schedule,
    installment_description,
    recurrence_description,
    strip_installment_suffix,
)

__all__ = [
    "ScheduleError",
    "expand_installments",
    "expand_recurrence",
    "expand_schedule",
    "installment_description",
    "recurrence_description",
    "strip_installment_suffix",
]
