"""
Schedule Expansion Engine

Turns one origin obligation plus a plan into the ordered list of future
(projected) obligations.

GUARANTEES:
- Pure: no I/O, no store access, deterministic for a given input
- Never mutates the origin obligation
- Exactly one plan type per call

The caller persists the returned obligations with a single batch insert.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from expense_ledger.config import get_settings
from expense_ledger.models.obligation import (
    InstallmentPlan,
    Obligation,
    ObligationStatus,
    RecurrencePlan,
)
from expense_ledger.utils.dates import add_months, step_date

_INSTALLMENT_SUFFIX_RE = re.compile(r"\s*\(\d+/\d+\)$")


class ScheduleError(Exception):
    """A schedule cannot be generated for the given origin and plan."""
    pass


def recurrence_description(description: Optional[str], marker: str) -> str:
    """'Netflix' -> 'Netflix (Assinatura)'; no description -> marker alone."""
    return f"{description} {marker}" if description else marker


def installment_description(description: Optional[str], number: int, count: int) -> str:
    """'TV' -> 'TV (2/10)'; no description -> '(2/10)'."""
    position = f"({number}/{count})"
    return f"{description} {position}" if description else position


def strip_installment_suffix(description: Optional[str]) -> Optional[str]:
    """Undo installment_description() on an origin description."""
    if not description:
        return description
    return _INSTALLMENT_SUFFIX_RE.sub("", description) or None


def _occurrence(
    origin: Obligation,
    event_date: date,
    amount: Decimal,
    description: str,
    **plan_fields,
) -> Obligation:
    """Projected copy of the origin's pass-through fields."""
    return Obligation(
        owner_id=origin.owner_id,
        amount=amount,
        event_date=event_date,
        description=description,
        category_id=origin.category_id,
        entity_id=origin.entity_id,
        payment_method=origin.payment_method,
        origin=origin.origin,
        status=ObligationStatus.PROJECTED,
        **plan_fields,
    )


def expand_recurrence(
    origin: Obligation,
    plan: RecurrencePlan,
    max_occurrences: Optional[int] = None,
    marker: Optional[str] = None,
) -> list[Obligation]:
    """
    Generate the recurring occurrences after the origin.

    Steps forward from the origin date by the plan interval. An occurrence
    that lands exactly on `plan.ends_on` is emitted; the first one after it
    is not. Generation stops silently after `max_occurrences` steps.

    Every occurrence carries the plan's expected amount, not the origin's
    stored amount.
    """
    settings = get_settings().schedule
    if max_occurrences is None:
        max_occurrences = settings.max_recurrences
    if marker is None:
        marker = settings.recurrence_marker

    description = recurrence_description(origin.description, marker)
    occurrences = []

    for step in range(1, max_occurrences + 1):
        try:
            occurrence_date = step_date(
                origin.event_date,
                plan.interval_unit,
                plan.interval_value,
                step,
            )
        except (OverflowError, ValueError):
            # Past the last representable date, so past ends_on as well
            break
        if occurrence_date > plan.ends_on:
            break
        occurrences.append(_occurrence(
            origin,
            event_date=occurrence_date,
            amount=plan.expected_amount,
            description=description,
            recurrence_plan_id=plan.id,
        ))

    return occurrences


def expand_installments(
    origin: Obligation,
    plan: InstallmentPlan,
    base_description: Optional[str] = None,
) -> list[Obligation]:
    """
    Generate installments 2..N (the origin is installment 1).

    Installment i falls on origin date + (i - 1) calendar months with the
    day of month held (short months clamp). Each one carries exactly the
    per-installment amount; the total is never re-divided here.
    """
    if base_description is None:
        base_description = strip_installment_suffix(origin.description)

    count = plan.installment_count
    try:
        add_months(origin.event_date, count - 1)
    except (OverflowError, ValueError) as e:
        raise ScheduleError(
            f"Installment {count} of {count} falls outside the supported calendar"
        ) from e

    return [
        _occurrence(
            origin,
            event_date=add_months(origin.event_date, number - 1),
            amount=plan.installment_amount,
            description=installment_description(base_description, number, count),
            installment_plan_id=plan.id,
            installment_number=number,
        )
        for number in range(2, count + 1)
    ]


def expand_schedule(
    origin: Obligation,
    plan: Union[RecurrencePlan, InstallmentPlan],
    **kwargs,
) -> list[Obligation]:
    """Dispatch on the plan type."""
    if isinstance(plan, RecurrencePlan):
        return expand_recurrence(origin, plan, **kwargs)
    if isinstance(plan, InstallmentPlan):
        return expand_installments(origin, plan, **kwargs)
    raise TypeError(f"Unsupported plan type: {type(plan).__name__}")
