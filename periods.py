import calendar
from dataclasses import dataclass
from datetime import date
from typing import Optional

from models import BudgetPeriod


PERIOD_MONTHS = {
    BudgetPeriod.monthly: 1,
    BudgetPeriod.quarterly: 3,
    BudgetPeriod.yearly: 12,
}


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_end(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def budget_window_end(start: date, period: BudgetPeriod) -> date:
    """Last day of the budget window that opens on ``start``."""
    return add_months(start, PERIOD_MONTHS[period]) - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period and period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    first = today.replace(day=1)
    return Period("this_month", first, month_end(first))
