from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable

from models import Budget, Transaction, TransactionType


NOMINAL = "nominal"
WARNING = "warning"
CRITICAL = "critical"


@dataclass(frozen=True)
class Thresholds:
    warning_percent: int = 70
    critical_percent: int = 90

    @classmethod
    def from_settings(cls, settings) -> "Thresholds":
        return cls(
            warning_percent=settings.budget_warning_percent,
            critical_percent=settings.budget_critical_percent,
        )


@dataclass(frozen=True)
class BudgetProgress:
    budget_id: str
    category_id: str
    period: str
    start_date: date
    end_date: date
    budget: float
    spent: float
    remaining: float
    percent_used: int
    is_over_budget: bool
    status: str

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def matches_budget(budget: Budget, txn: Transaction) -> bool:
    return (
        txn.type == TransactionType.expense
        and txn.category_id == budget.category_id
        and budget.start_date <= txn.date <= budget.end_date
    )


def status_for(percent: float, is_over_budget: bool, thresholds: Thresholds) -> str:
    if is_over_budget or percent > thresholds.critical_percent:
        return CRITICAL
    if percent >= thresholds.warning_percent:
        return WARNING
    return NOMINAL


def progress_from_spent(
    budget: Budget, spent: float, thresholds: Thresholds = Thresholds()
) -> BudgetProgress:
    amount = float(budget.amount)
    spent = float(spent)
    remaining = amount - spent
    is_over_budget = spent > amount
    if amount > 0:
        raw_percent = 100 * spent / amount
    else:
        raw_percent = 0.0
    # clamped for display; over-budget is carried by is_over_budget
    percent_used = min(100, max(0, round(raw_percent)))
    return BudgetProgress(
        budget_id=budget.id,
        category_id=budget.category_id,
        period=budget.period.value,
        start_date=budget.start_date,
        end_date=budget.end_date,
        budget=amount,
        spent=spent,
        remaining=remaining,
        percent_used=percent_used,
        is_over_budget=is_over_budget,
        status=status_for(percent_used, is_over_budget, thresholds),
    )


def compute_progress(
    budget: Budget,
    transactions: Iterable[Transaction],
    thresholds: Thresholds = Thresholds(),
) -> BudgetProgress:
    spent = sum(float(t.amount) for t in transactions if matches_budget(budget, t))
    return progress_from_spent(budget, spent, thresholds)
