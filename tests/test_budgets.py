from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from models import BudgetPeriod, TransactionType
from progress import CRITICAL, WARNING, Thresholds
from repositories import CategoryRepository, UserRepository
from schemas import BudgetIn, BudgetUpdateIn, TransactionIn
from services import BudgetService, TransactionService


def _setup(session: Session):
    users = UserRepository(session)
    alice = users.create(
        {"name": "Alice", "email": "alice@example.com", "password_hash": "x"}
    )
    bob = users.create(
        {"name": "Bob", "email": "bob@example.com", "password_hash": "x"}
    )
    categories = CategoryRepository(session)
    food = categories.create({"name": "Food", "type": TransactionType.expense})
    transport = categories.create(
        {"name": "Transportation", "type": TransactionType.expense}
    )
    salary = categories.create({"name": "Salary", "type": TransactionType.income})
    return alice, bob, food, transport, salary


def _spend(session, user, category, amount, day, txn_type=TransactionType.expense):
    return TransactionService(session, user).create(
        TransactionIn(
            type=txn_type,
            category_id=category.id,
            amount=amount,
            description="Purchase",
            date=day,
        )
    )


def test_budget_end_date_defaults_from_period() -> None:
    monthly = BudgetIn(category_id="c", amount=100, start_date=date(2025, 7, 1))
    quarterly = BudgetIn(
        category_id="c",
        amount=100,
        period=BudgetPeriod.quarterly,
        start_date=date(2025, 7, 1),
    )

    assert monthly.end_date == date(2025, 7, 31)
    assert quarterly.end_date == date(2025, 9, 30)


def test_budget_input_rejects_inverted_or_empty_window() -> None:
    with pytest.raises(ValidationError):
        BudgetIn(
            category_id="c",
            amount=100,
            start_date=date(2025, 7, 31),
            end_date=date(2025, 7, 1),
        )
    with pytest.raises(ValidationError):
        BudgetIn(
            category_id="c",
            amount=100,
            start_date=date(2025, 7, 1),
            end_date=date(2025, 7, 1),
        )
    with pytest.raises(ValidationError):
        BudgetIn(category_id="c", amount=0, start_date=date(2025, 7, 1))


def test_budget_example_progress() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, transport, salary = _setup(session)
        service = BudgetService(session, alice)
        budget = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )
        _spend(session, alice, food, 120, date(2025, 7, 3))
        _spend(session, alice, food, 80, date(2025, 7, 12))
        _spend(session, alice, salary, 1000, date(2025, 7, 1), TransactionType.income)
        _spend(session, alice, transport, 50, date(2025, 7, 8))

        progress = service.progress(budget.id)

        assert progress.spent == 200
        assert progress.remaining == 300
        assert progress.percent_used == 40
        assert progress.is_over_budget is False


def test_budgets_only_for_expense_categories() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, _, _, salary = _setup(session)

        with pytest.raises(ValidationFailed):
            BudgetService(session, alice).create(
                BudgetIn(
                    category_id=salary.id, amount=500, start_date=date(2025, 7, 1)
                )
            )
        with pytest.raises(ValidationFailed):
            BudgetService(session, alice).create(
                BudgetIn(category_id="nope", amount=500, start_date=date(2025, 7, 1))
            )


def test_overlapping_budget_for_same_category_conflicts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, transport, _ = _setup(session)
        service = BudgetService(session, alice)
        first = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )

        with pytest.raises(Conflict) as excinfo:
            service.create(
                BudgetIn(
                    category_id=food.id,
                    amount=300,
                    start_date=date(2025, 7, 15),
                    end_date=date(2025, 8, 14),
                )
            )
        assert excinfo.value.details == [{"budget_id": first.id}]

        service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 8, 1))
        )
        service.create(
            BudgetIn(category_id=transport.id, amount=100, start_date=date(2025, 7, 1))
        )
        BudgetService(session, bob).create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )


def test_partial_update_checks_effective_window_before_writing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, _, _ = _setup(session)
        service = BudgetService(session, alice)
        budget = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )

        with pytest.raises(ValidationFailed):
            service.update(budget.id, BudgetUpdateIn(end_date=date(2025, 6, 15)))
        with pytest.raises(ValidationFailed):
            service.update(budget.id, BudgetUpdateIn(start_date=date(2025, 7, 31)))

        session.expire_all()
        unchanged = service.get(budget.id)
        assert unchanged.start_date == date(2025, 7, 1)
        assert unchanged.end_date == date(2025, 7, 31)

        updated = service.update(
            budget.id, BudgetUpdateIn(amount=650, end_date=date(2025, 8, 15))
        )
        assert updated.amount == 650
        assert updated.end_date == date(2025, 8, 15)
        assert updated.start_date == date(2025, 7, 1)


def test_update_rejects_explicit_null_for_required_field() -> None:
    with pytest.raises(ValidationError):
        BudgetUpdateIn(amount=None)
    with pytest.raises(ValidationError):
        BudgetUpdateIn(start_date=date(2025, 7, 31), end_date=date(2025, 7, 1))
    assert BudgetUpdateIn(amount=12).changes() == {"amount": 12}


def test_budgets_of_other_users_are_forbidden_and_untouched() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, _, _ = _setup(session)
        budget = BudgetService(session, alice).create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )
        intruder = BudgetService(session, bob)

        with pytest.raises(Forbidden):
            intruder.get(budget.id)
        with pytest.raises(Forbidden):
            intruder.update(budget.id, BudgetUpdateIn(amount=1))
        with pytest.raises(Forbidden):
            intruder.delete(budget.id)
        with pytest.raises(Forbidden):
            intruder.progress(budget.id)

        session.expire_all()
        assert BudgetService(session, alice).get(budget.id).amount == 500


def test_delete_then_missing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, _, _ = _setup(session)
        service = BudgetService(session, alice)
        budget = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )

        service.delete(budget.id)

        with pytest.raises(NotFound):
            service.delete(budget.id)
        with pytest.raises(NotFound):
            service.progress(budget.id)


def test_progress_all_covers_active_budgets_only() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, transport, _ = _setup(session)
        service = BudgetService(session, alice, Thresholds(60, 80))
        food_budget = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )
        transport_budget = service.create(
            BudgetIn(category_id=transport.id, amount=100, start_date=date(2025, 7, 1))
        )
        service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 6, 1))
        )
        BudgetService(session, bob).create(
            BudgetIn(category_id=food.id, amount=10, start_date=date(2025, 7, 1))
        )
        _spend(session, alice, food, 320, date(2025, 7, 2))
        _spend(session, alice, food, 999, date(2025, 6, 20))
        _spend(session, alice, transport, 130, date(2025, 7, 5))
        _spend(session, bob, food, 50, date(2025, 7, 2))

        results = {p.budget_id: p for p in service.progress_all(date(2025, 7, 20))}

        assert set(results) == {food_budget.id, transport_budget.id}
        assert results[food_budget.id].spent == 320
        assert results[food_budget.id].percent_used == 64
        assert results[food_budget.id].status == WARNING
        assert results[transport_budget.id].is_over_budget is True
        assert results[transport_budget.id].percent_used == 100
        assert results[transport_budget.id].status == CRITICAL

        for budget_id, progress in results.items():
            assert service.progress(budget_id) == progress


def test_list_active_and_by_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, transport, _ = _setup(session)
        service = BudgetService(session, alice)
        july = service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 7, 1))
        )
        service.create(
            BudgetIn(category_id=food.id, amount=500, start_date=date(2025, 6, 1))
        )
        service.create(
            BudgetIn(category_id=transport.id, amount=50, start_date=date(2025, 6, 1))
        )

        assert len(service.list()) == 3
        active = service.list(active=True, as_of=date(2025, 7, 4))
        assert [b.id for b in active] == [july.id]
        assert [b.id for b in service.list(category_id=food.id)] == [july.id]
