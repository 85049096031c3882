from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import extract, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import hash_password
from config import Settings
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from models import (
    Budget,
    BudgetId,
    Category,
    CategoryId,
    Transaction,
    TransactionId,
    TransactionType,
    User,
    UserId,
)
from periods import Period, add_months
from progress import BudgetProgress, Thresholds, compute_progress, progress_from_spent
from repositories import (
    BudgetRepository,
    CategoryRepository,
    TransactionRepository,
    UserRepository,
)
from schemas import (
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    TransactionIn,
    TransactionUpdateIn,
    UserUpdateIn,
)


logger = logging.getLogger(__name__)


def _window_error() -> ValidationFailed:
    return ValidationFailed(
        "Start date must be before end date",
        details=[{"loc": ["body", "end_date"], "msg": "must be after start_date"}],
    )


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[CategoryId] = None
    start: Optional[date] = None
    end: Optional[date] = None


class TransactionService:
    def __init__(self, session: Session, user: User) -> None:
        self.session = session
        self.user = user
        self.transactions = TransactionRepository(session)
        self.categories = CategoryRepository(session)

    def _check_category(
        self, category_id: CategoryId, txn_type: TransactionType
    ) -> None:
        category = self.categories.find_by_id(category_id)
        if not category:
            raise ValidationFailed(
                "Category not found",
                details=[{"loc": ["body", "category_id"], "msg": "unknown category"}],
            )
        if category.type != txn_type:
            raise ValidationFailed(
                "Category type mismatch",
                details=[
                    {
                        "loc": ["body", "category_id"],
                        "msg": f"category is for {category.type.value} transactions",
                    }
                ],
            )

    def list(self, filters: TransactionFilters) -> list[Transaction]:
        if filters.start and filters.end and filters.start > filters.end:
            raise ValidationFailed("Start date must be before end date")
        return self.transactions.find_by_filters(
            self.user.id,
            txn_type=filters.type,
            category_id=filters.category_id,
            start=filters.start,
            end=filters.end,
        )

    def get(self, transaction_id: TransactionId) -> Transaction:
        txn = self.transactions.find_by_id(transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        if txn.user_id != self.user.id:
            raise Forbidden("You can only access your own transactions")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id, data.type)
        values = data.model_dump()
        values["user_id"] = self.user.id
        txn = self.transactions.create(values)
        logger.info(
            f"transaction_created: user_id={self.user.id} transaction_id={txn.id}"
        )
        return txn

    def update(
        self, transaction_id: TransactionId, data: TransactionUpdateIn
    ) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.changes()
        if "category_id" in changes or "type" in changes:
            self._check_category(
                changes.get("category_id", txn.category_id),
                changes.get("type", txn.type),
            )
        updated = self.transactions.update(txn.id, changes)
        if updated is None:
            raise NotFound("Transaction not found")
        return updated

    def delete(self, transaction_id: TransactionId) -> None:
        txn = self.get(transaction_id)
        if not self.transactions.delete(txn.id):
            raise NotFound("Transaction not found")
        logger.info(
            f"transaction_deleted: user_id={self.user.id} transaction_id={txn.id}"
        )


class BudgetService:
    def __init__(
        self, session: Session, user: User, thresholds: Optional[Thresholds] = None
    ) -> None:
        self.session = session
        self.user = user
        self.thresholds = thresholds or Thresholds()
        self.budgets = BudgetRepository(session)
        self.transactions = TransactionRepository(session)
        self.categories = CategoryRepository(session)

    def _check_category(self, category_id: CategoryId) -> Category:
        category = self.categories.find_by_id(category_id)
        if not category:
            raise ValidationFailed(
                "Category not found",
                details=[{"loc": ["body", "category_id"], "msg": "unknown category"}],
            )
        if category.type != TransactionType.expense:
            raise ValidationFailed("Budgets can only be set for expense categories")
        return category

    def _check_overlap(
        self,
        category_id: CategoryId,
        start: date,
        end: date,
        exclude_id: Optional[BudgetId] = None,
    ) -> None:
        clashes = self.budgets.find_overlapping(
            self.user.id, category_id, start, end, exclude_id=exclude_id
        )
        if clashes:
            raise Conflict(
                "A budget for this category already covers part of this period",
                details=[{"budget_id": b.id} for b in clashes],
            )

    def list(
        self,
        *,
        active: bool = False,
        category_id: Optional[CategoryId] = None,
        as_of: Optional[date] = None,
    ) -> list[Budget]:
        if active:
            budgets = self.budgets.find_active(self.user.id, as_of or date.today())
            if category_id:
                budgets = [b for b in budgets if b.category_id == category_id]
            return budgets
        if category_id:
            budget = self.budgets.find_by_user_id_and_category(
                self.user.id, category_id
            )
            return [budget] if budget else []
        return self.budgets.find_by_user_id(self.user.id)

    def get(self, budget_id: BudgetId) -> Budget:
        budget = self.budgets.find_by_id(budget_id)
        if not budget:
            raise NotFound("Budget not found")
        if budget.user_id != self.user.id:
            raise Forbidden("You can only access your own budgets")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        if data.end_date is None or data.start_date >= data.end_date:
            raise _window_error()
        self._check_category(data.category_id)
        self._check_overlap(data.category_id, data.start_date, data.end_date)
        values = data.model_dump()
        values["user_id"] = self.user.id
        budget = self.budgets.create(values)
        logger.info(f"budget_created: user_id={self.user.id} budget_id={budget.id}")
        return budget

    def update(self, budget_id: BudgetId, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        changes = data.changes()
        start = changes.get("start_date", budget.start_date)
        end = changes.get("end_date", budget.end_date)
        if start >= end:
            raise _window_error()
        category_id = changes.get("category_id", budget.category_id)
        if "category_id" in changes:
            self._check_category(category_id)
        if {"category_id", "start_date", "end_date"} & changes.keys():
            self._check_overlap(category_id, start, end, exclude_id=budget.id)
        updated = self.budgets.update(budget.id, changes)
        if updated is None:
            raise NotFound("Budget not found")
        return updated

    def delete(self, budget_id: BudgetId) -> None:
        budget = self.get(budget_id)
        if not self.budgets.delete(budget.id):
            raise NotFound("Budget not found")
        logger.info(f"budget_deleted: user_id={self.user.id} budget_id={budget.id}")

    def progress(self, budget_id: BudgetId) -> BudgetProgress:
        budget = self.get(budget_id)
        transactions = self.transactions.find_by_date_range(
            self.user.id, budget.start_date, budget.end_date
        )
        return compute_progress(budget, transactions, self.thresholds)

    def progress_all(self, as_of: Optional[date] = None) -> list[BudgetProgress]:
        active = self.budgets.find_active(self.user.id, as_of or date.today())
        spent = self.budgets.spent_by_budget(self.user.id, active)
        return [
            progress_from_spent(b, spent.get(b.id, 0.0), self.thresholds)
            for b in active
        ]


class CategoryService:
    def __init__(self, session: Session, user: Optional[User] = None) -> None:
        self.session = session
        self.user = user
        self.categories = CategoryRepository(session)

    def _require_admin(self) -> None:
        if self.user is None or not self.user.is_admin:
            raise Forbidden("Only administrators can manage categories")

    def list(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        if txn_type:
            return self.categories.find_by_type(txn_type)
        return self.categories.find_all()

    def get(self, category_id: CategoryId) -> Category:
        category = self.categories.find_by_id(category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        self._require_admin()
        if self.categories.find_by_name(data.name, data.type):
            raise Conflict("Category with this name already exists")
        values = data.model_dump()
        values["name"] = data.name.strip()
        return self.categories.create(values)

    def update(self, category_id: CategoryId, data: CategoryUpdateIn) -> Category:
        self._require_admin()
        category = self.get(category_id)
        changes = data.changes()
        name = changes.get("name", category.name)
        txn_type = changes.get("type", category.type)
        existing = self.categories.find_by_name(name, txn_type)
        if existing and existing.id != category.id:
            raise Conflict("Category with this name already exists")
        if "type" in changes and changes["type"] != category.type:
            if self.categories.is_referenced(category.id):
                raise Conflict("Category type cannot change while it is in use")
        updated = self.categories.update(category.id, changes)
        if updated is None:
            raise NotFound("Category not found")
        return updated

    def delete(self, category_id: CategoryId) -> None:
        self._require_admin()
        category = self.get(category_id)
        if self.categories.is_referenced(category.id):
            raise Conflict("Category is used by transactions or budgets")
        self.categories.delete(category.id)


class UserService:
    def __init__(self, session: Session, user: User) -> None:
        self.session = session
        self.user = user
        self.users = UserRepository(session)

    def _check_self(self, user_id: UserId) -> None:
        if user_id != self.user.id:
            raise Forbidden("You can only manage your own account")

    def get(self, user_id: UserId) -> User:
        self._check_self(user_id)
        user = self.users.find_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def update(self, user_id: UserId, data: UserUpdateIn) -> User:
        self._check_self(user_id)
        changes = data.changes()
        if "email" in changes:
            existing = self.users.find_by_email(changes["email"])
            if existing and existing.id != user_id:
                raise Conflict("Email already in use")
        if "password" in changes:
            changes["password_hash"] = hash_password(changes.pop("password"))
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        try:
            user = self.users.update(user_id, changes)
        except IntegrityError as exc:
            if "email" in changes:
                raise Conflict("Email already in use") from exc
            raise
        if user is None:
            raise NotFound("User not found")
        return user

    def set_allowed_origins(self, user_id: UserId, origins: list[str]) -> User:
        self._check_self(user_id)
        cleaned = sorted({str(origin).rstrip("/") for origin in origins})
        user = self.users.update(user_id, {"allowed_origins": cleaned})
        if user is None:
            raise NotFound("User not found")
        return user

    def delete(self, user_id: UserId) -> None:
        """Delete the account and everything it owns in one database transaction."""
        self._check_self(user_id)
        if self.users.find_by_id(user_id) is None:
            raise NotFound("User not found")
        try:
            txn_count = TransactionRepository(self.session).delete_by_user_id(user_id)
            budget_count = BudgetRepository(self.session).delete_by_user_id(user_id)
            self.users.delete(user_id, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"user_deleted: user_id={user_id} transactions={txn_count} "
            f"budgets={budget_count}"
        )


class DashboardService:
    def __init__(self, session: Session, user: User) -> None:
        self.session = session
        self.user = user

    def summary(self, period: Period) -> dict[str, object]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user.id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.type)
        )
        totals = {TransactionType.income: 0.0, TransactionType.expense: 0.0}
        count = 0
        for row in self.session.execute(stmt):
            totals[row.type] = float(row.total or 0)
            count += int(row.count or 0)
        income = totals[TransactionType.income]
        expense = totals[TransactionType.expense]
        return {
            "period": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
            "income": income,
            "expense": expense,
            "net": income - expense,
            "transaction_count": count,
        }

    def spending_by_category(self, period: Period) -> list[dict[str, object]]:
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                Category.color.label("color"),
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            )
            .select_from(Transaction)
            .join(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.user_id == self.user.id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Category.id, Category.name, Category.color)
            .order_by(func.sum(Transaction.amount).desc())
        )
        rows = self.session.execute(stmt).all()
        total = sum(float(row.total or 0) for row in rows)
        breakdown = []
        for row in rows:
            amount = float(row.total or 0)
            percent = (amount / total * 100) if total else 0
            breakdown.append(
                {
                    "category_id": row.category_id,
                    "name": row.name,
                    "color": row.color,
                    "amount": amount,
                    "percent": round(percent, 1),
                }
            )
        return breakdown

    def monthly_trends(
        self, months: int = 6, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        if months < 1:
            raise ValidationFailed("months must be at least 1")
        today = today or date.today()
        first = add_months(today.replace(day=1), -(months - 1))
        year = extract("year", Transaction.date).label("year")
        month = extract("month", Transaction.date).label("month")
        stmt = (
            select(
                year,
                month,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user.id,
                Transaction.date.between(first, today),
            )
            .group_by(year, month, Transaction.type)
        )
        totals: dict[tuple[int, int, TransactionType], float] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month), row.type)] = float(row.total or 0)

        out: list[dict[str, object]] = []
        for offset in range(months):
            current = add_months(first, offset)
            income = totals.get(
                (current.year, current.month, TransactionType.income), 0.0
            )
            expense = totals.get(
                (current.year, current.month, TransactionType.expense), 0.0
            )
            out.append(
                {
                    "year": current.year,
                    "month": current.month,
                    "label": f"{current.year:04d}-{current.month:02d}",
                    "income": income,
                    "expense": expense,
                    "net": income - expense,
                }
            )
        return out


def build_budget_service(
    session: Session, user: User, settings: Settings
) -> BudgetService:
    return BudgetService(session, user, Thresholds.from_settings(settings))
