from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

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


class _Repository:
    model: type

    def __init__(self, session: Session) -> None:
        self.session = session

    def _get(self, record_id: str):
        if not record_id:
            return None
        return self.session.get(self.model, record_id)

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def _insert(self, data: Mapping[str, object]):
        now = datetime.utcnow()
        record = self.model(**data, created_at=now, updated_at=now)
        self.session.add(record)
        self._commit()
        self.session.refresh(record)
        return record

    def _patch(self, record_id: str, changes: Mapping[str, object]):
        record = self._get(record_id)
        if record is None:
            return None
        for field, value in changes.items():
            setattr(record, field, value)
        record.updated_at = datetime.utcnow()
        self._commit()
        self.session.refresh(record)
        return record

    def _remove(self, record_id: str, *, commit: bool = True) -> bool:
        record = self._get(record_id)
        if record is None:
            return False
        self.session.delete(record)
        if commit:
            self._commit()
        else:
            self.session.flush()
        return True


class UserRepository(_Repository):
    model = User

    def find_by_id(self, user_id: UserId) -> Optional[User]:
        return self._get(user_id)

    def find_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.scalar(stmt)

    def create(self, data: Mapping[str, object]) -> User:
        data = dict(data)
        data["email"] = str(data["email"]).strip().lower()
        return self._insert(data)

    def update(self, user_id: UserId, changes: Mapping[str, object]) -> Optional[User]:
        changes = dict(changes)
        if "email" in changes:
            changes["email"] = str(changes["email"]).strip().lower()
        return self._patch(user_id, changes)

    def delete(self, user_id: UserId, *, commit: bool = True) -> bool:
        return self._remove(user_id, commit=commit)


class CategoryRepository(_Repository):
    model = Category

    def find_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        return list(self.session.scalars(stmt).all())

    def find_by_id(self, category_id: CategoryId) -> Optional[Category]:
        return self._get(category_id)

    def find_by_type(self, txn_type: TransactionType) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.type == txn_type)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_name(self, name: str, txn_type: TransactionType) -> Optional[Category]:
        stmt = select(Category).where(
            Category.type == txn_type,
            func.lower(Category.name) == name.strip().lower(),
        )
        return self.session.scalar(stmt)

    def is_referenced(self, category_id: CategoryId) -> bool:
        txn_count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        ).scalar_one()
        budget_count = self.session.execute(
            select(func.count(Budget.id)).where(Budget.category_id == category_id)
        ).scalar_one()
        return (txn_count or 0) + (budget_count or 0) > 0

    def create(self, data: Mapping[str, object]) -> Category:
        return self._insert(data)

    def update(
        self, category_id: CategoryId, changes: Mapping[str, object]
    ) -> Optional[Category]:
        return self._patch(category_id, changes)

    def delete(self, category_id: CategoryId) -> bool:
        return self._remove(category_id)


class TransactionRepository(_Repository):
    model = Transaction

    def _for_user(self, user_id: UserId):
        return (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )

    def find_by_id(self, transaction_id: TransactionId) -> Optional[Transaction]:
        return self._get(transaction_id)

    def find_by_user_id(self, user_id: UserId) -> list[Transaction]:
        return list(self.session.scalars(self._for_user(user_id)).all())

    def find_by_user_id_and_type(
        self, user_id: UserId, txn_type: TransactionType
    ) -> list[Transaction]:
        stmt = self._for_user(user_id).where(Transaction.type == txn_type)
        return list(self.session.scalars(stmt).all())

    def find_by_date_range(
        self, user_id: UserId, start: date, end: date
    ) -> list[Transaction]:
        stmt = self._for_user(user_id).where(Transaction.date.between(start, end))
        return list(self.session.scalars(stmt).all())

    def find_by_filters(
        self,
        user_id: UserId,
        *,
        txn_type: Optional[TransactionType] = None,
        category_id: Optional[CategoryId] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Transaction]:
        stmt = self._for_user(user_id)
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        if category_id:
            stmt = stmt.where(Transaction.category_id == category_id)
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        return list(self.session.scalars(stmt).all())

    def create(self, data: Mapping[str, object]) -> Transaction:
        return self._insert(data)

    def update(
        self, transaction_id: TransactionId, changes: Mapping[str, object]
    ) -> Optional[Transaction]:
        return self._patch(transaction_id, changes)

    def delete(self, transaction_id: TransactionId) -> bool:
        return self._remove(transaction_id)

    def delete_by_user_id(self, user_id: UserId) -> int:
        result = self.session.execute(
            delete(Transaction).where(Transaction.user_id == user_id)
        )
        self.session.flush()
        return result.rowcount or 0


class BudgetRepository(_Repository):
    model = Budget

    def _for_user(self, user_id: UserId):
        return (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.start_date.desc(), Budget.created_at.desc())
        )

    def find_by_id(self, budget_id: BudgetId) -> Optional[Budget]:
        return self._get(budget_id)

    def find_by_user_id(self, user_id: UserId) -> list[Budget]:
        return list(self.session.scalars(self._for_user(user_id)).all())

    def find_by_user_id_and_category(
        self, user_id: UserId, category_id: CategoryId
    ) -> Optional[Budget]:
        stmt = self._for_user(user_id).where(Budget.category_id == category_id)
        return self.session.scalars(stmt).first()

    def find_active(self, user_id: UserId, as_of: date) -> list[Budget]:
        stmt = self._for_user(user_id).where(
            Budget.start_date <= as_of,
            Budget.end_date >= as_of,
        )
        return list(self.session.scalars(stmt).all())

    def find_overlapping(
        self,
        user_id: UserId,
        category_id: CategoryId,
        start: date,
        end: date,
        *,
        exclude_id: Optional[BudgetId] = None,
    ) -> list[Budget]:
        stmt = self._for_user(user_id).where(
            Budget.category_id == category_id,
            Budget.start_date <= end,
            Budget.end_date >= start,
        )
        if exclude_id:
            stmt = stmt.where(Budget.id != exclude_id)
        return list(self.session.scalars(stmt).all())

    def spent_by_budget(
        self, user_id: UserId, budgets: Iterable[Budget]
    ) -> dict[str, float]:
        """Expense totals per budget, each summed over that budget's own window."""
        budget_ids = [b.id for b in budgets]
        if not budget_ids:
            return {}
        stmt = (
            select(
                Budget.id.label("budget_id"),
                func.coalesce(func.sum(Transaction.amount), 0).label("spent"),
            )
            .select_from(Budget)
            .outerjoin(
                Transaction,
                and_(
                    Transaction.user_id == Budget.user_id,
                    Transaction.category_id == Budget.category_id,
                    Transaction.type == TransactionType.expense,
                    Transaction.date >= Budget.start_date,
                    Transaction.date <= Budget.end_date,
                ),
            )
            .where(Budget.user_id == user_id, Budget.id.in_(budget_ids))
            .group_by(Budget.id)
        )
        return {
            row.budget_id: float(row.spent or 0) for row in self.session.execute(stmt)
        }

    def create(self, data: Mapping[str, object]) -> Budget:
        return self._insert(data)

    def update(
        self, budget_id: BudgetId, changes: Mapping[str, object]
    ) -> Optional[Budget]:
        return self._patch(budget_id, changes)

    def delete(self, budget_id: BudgetId) -> bool:
        return self._remove(budget_id)

    def delete_by_user_id(self, user_id: UserId) -> int:
        result = self.session.execute(delete(Budget).where(Budget.user_id == user_id))
        self.session.flush()
        return result.rowcount or 0
