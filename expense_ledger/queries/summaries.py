"""
Obligation Summaries

DESIGN DECISION: Aggregation is DETERMINISTIC and done in Python over
records read from the store. The store only filters by owner.

Two views feed the dashboard:
- month_summary: what was confirmed vs projected in one calendar month
- future_commitments: projected totals for a 12-month window around today
  (3 months back, the current month, 8 months ahead)
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from expense_ledger.models.obligation import Obligation, ObligationStatus
from expense_ledger.services.storage import Collection, RecordStore
from expense_ledger.utils.dates import add_months

MONTHS_BEFORE = 3
MONTHS_AFTER = 8


class MonthSummary(BaseModel):
    """Totals for one calendar month."""

    year: int
    month: int = Field(..., ge=1, le=12)
    confirmed_total: Decimal = Decimal("0.00")
    projected_total: Decimal = Decimal("0.00")
    count: int = 0
    by_category: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Total per category id ('uncategorized' when unset)"
    )

    @property
    def total(self) -> Decimal:
        return self.confirmed_total + self.projected_total


class MonthCommitment(BaseModel):
    """Projected amount falling in one month."""

    month_key: str = Field(..., description="YYYY-MM")
    amount: Decimal = Decimal("0.00")
    is_current: bool = False


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


def month_summary(
    obligations: Iterable[Obligation],
    year: int,
    month: int,
) -> MonthSummary:
    """Confirmed total, projected total and count for a calendar month."""
    confirmed = Decimal("0.00")
    projected = Decimal("0.00")
    count = 0
    by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))

    for obligation in obligations:
        if obligation.event_date.year != year or obligation.event_date.month != month:
            continue
        count += 1
        if obligation.status == ObligationStatus.PROJECTED:
            projected += obligation.amount
        else:
            confirmed += obligation.amount
        by_category[obligation.category_id or "uncategorized"] += obligation.amount

    return MonthSummary(
        year=year,
        month=month,
        confirmed_total=confirmed,
        projected_total=projected,
        count=count,
        by_category=dict(by_category),
    )


def future_commitments(
    obligations: Iterable[Obligation],
    today: date,
) -> list[MonthCommitment]:
    """
    Projected totals per month for the 12-month window around `today`.

    Months with nothing projected are still present with amount 0.
    """
    first_of_month = today.replace(day=1)
    buckets: dict[str, Decimal] = {}
    for offset in range(-MONTHS_BEFORE, MONTHS_AFTER + 1):
        buckets[month_key(add_months(first_of_month, offset))] = Decimal("0.00")

    for obligation in obligations:
        if obligation.status != ObligationStatus.PROJECTED:
            continue
        key = month_key(obligation.event_date)
        if key in buckets:
            buckets[key] += obligation.amount

    current = month_key(today)
    return [
        MonthCommitment(month_key=key, amount=amount, is_current=key == current)
        for key, amount in buckets.items()
    ]


class SummaryService:
    """Loads an owner's obligations and applies the summary functions."""

    def __init__(self, store: RecordStore, owner_id: str):
        self._store = store
        self._owner_id = owner_id

    async def _obligations(self) -> list[Obligation]:
        records = await self._store.select(Collection.OBLIGATIONS, self._owner_id)
        return [Obligation.from_record(record) for record in records]

    async def month_summary(self, year: int, month: int) -> MonthSummary:
        return month_summary(await self._obligations(), year, month)

    async def future_commitments(self, today: Optional[date] = None) -> list[MonthCommitment]:
        return future_commitments(await self._obligations(), today or date.today())
