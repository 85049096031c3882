from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import Forbidden, NotFound, ValidationFailed
from models import TransactionType
from repositories import CategoryRepository, UserRepository
from schemas import TransactionIn, TransactionUpdateIn
from services import TransactionFilters, TransactionService


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
    salary = categories.create({"name": "Salary", "type": TransactionType.income})
    return alice, bob, food, salary


def _lunch(category_id: str, day: date = date(2025, 7, 4), amount: float = 12.5):
    return TransactionIn(
        type=TransactionType.expense,
        category_id=category_id,
        amount=amount,
        description="Lunch",
        date=day,
    )


def test_transaction_input_validation() -> None:
    with pytest.raises(ValidationError):
        TransactionIn(
            type=TransactionType.expense,
            category_id="c",
            amount=0,
            description="Lunch",
            date=date(2025, 7, 4),
        )
    with pytest.raises(ValidationError):
        TransactionIn(
            type=TransactionType.expense,
            category_id="c",
            amount=5,
            description="L",
            date=date(2025, 7, 4),
        )
    with pytest.raises(ValidationError):
        TransactionUpdateIn(amount=None)
    with pytest.raises(ValidationError):
        TransactionUpdateIn(user_id="someone-else")

    assert TransactionUpdateIn(notes=None).changes() == {"notes": None}


def test_create_assigns_owner_and_checks_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, salary = _setup(session)
        service = TransactionService(session, alice)

        txn = service.create(_lunch(food.id))

        assert txn.user_id == alice.id
        assert txn.amount == 12.5
        assert txn.created_at is not None

        with pytest.raises(ValidationFailed, match="Category type mismatch"):
            service.create(_lunch(salary.id))
        with pytest.raises(ValidationFailed, match="Category not found"):
            service.create(_lunch("missing"))


def test_update_rechecks_category_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, salary = _setup(session)
        service = TransactionService(session, alice)
        txn = service.create(_lunch(food.id))

        with pytest.raises(ValidationFailed):
            service.update(txn.id, TransactionUpdateIn(category_id=salary.id))

        updated = service.update(
            txn.id,
            TransactionUpdateIn(
                type=TransactionType.income, category_id=salary.id, amount=40
            ),
        )
        assert updated.type == TransactionType.income
        assert updated.amount == 40
        assert updated.description == "Lunch"


def test_other_users_transactions_are_forbidden() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food, _ = _setup(session)
        txn = TransactionService(session, alice).create(_lunch(food.id))
        intruder = TransactionService(session, bob)

        with pytest.raises(Forbidden):
            intruder.get(txn.id)
        with pytest.raises(Forbidden):
            intruder.update(txn.id, TransactionUpdateIn(amount=1))
        with pytest.raises(Forbidden):
            intruder.delete(txn.id)

        session.expire_all()
        assert TransactionService(session, alice).get(txn.id).amount == 12.5
        assert intruder.list(TransactionFilters()) == []


def test_delete_twice_is_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, _ = _setup(session)
        service = TransactionService(session, alice)
        txn = service.create(_lunch(food.id))

        service.delete(txn.id)

        with pytest.raises(NotFound):
            service.delete(txn.id)
        with pytest.raises(NotFound):
            service.get(txn.id)


def test_list_filters() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, food, salary = _setup(session)
        service = TransactionService(session, alice)
        service.create(_lunch(food.id, date(2025, 6, 28), 10))
        service.create(_lunch(food.id, date(2025, 7, 4), 20))
        service.create(
            TransactionIn(
                type=TransactionType.income,
                category_id=salary.id,
                amount=1000,
                description="Salary",
                date=date(2025, 7, 1),
            )
        )

        july = service.list(
            TransactionFilters(start=date(2025, 7, 1), end=date(2025, 7, 31))
        )
        assert [t.amount for t in july] == [20, 1000]

        expenses = service.list(TransactionFilters(type=TransactionType.expense))
        assert [t.amount for t in expenses] == [20, 10]

        with pytest.raises(ValidationFailed):
            service.list(
                TransactionFilters(start=date(2025, 7, 31), end=date(2025, 7, 1))
            )
