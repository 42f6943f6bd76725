"""Calendar-safe date stepping."""

import re
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from expense_ledger.models.obligation import IntervalUnit

_BR_DATE_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")


def convert_br_date(text: Optional[str]) -> Optional[date]:
    """Convert "DD/MM/YYYY" to a date. None if absent or not a real date."""
    if not text:
        return None
    match = _BR_DATE_RE.search(text)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def add_months(origin: date, months: int) -> date:
    """Add calendar months, clamping to the last day of short months."""
    return origin + relativedelta(months=months)


def add_years(origin: date, years: int) -> date:
    """Add calendar years (Feb 29 clamps to Feb 28)."""
    return origin + relativedelta(years=years)


def step_date(origin: date, unit: IntervalUnit, value: int, steps: int) -> date:
    """
    Date of the `steps`-th occurrence after `origin`.

    Always computed from the origin, so a clamped short month
    (Jan 31 -> Feb 28) does not drag later occurrences to the 28th.
    """
    total = value * steps
    if unit == IntervalUnit.DAY:
        return origin + timedelta(days=total)
    if unit == IntervalUnit.WEEK:
        return origin + timedelta(weeks=total)
    if unit == IntervalUnit.MONTH:
        return add_months(origin, total)
    if unit == IntervalUnit.YEAR:
        return add_years(origin, total)
    raise ValueError(f"Unsupported interval unit: {unit}")
