from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import verify_password
from database import Base
from errors import Conflict, Forbidden
from models import TransactionType
from repositories import (
    BudgetRepository,
    CategoryRepository,
    TransactionRepository,
    UserRepository,
)
from schemas import BudgetIn, TransactionIn, UserUpdateIn
from services import BudgetService, TransactionService, UserService


def _setup(session: Session):
    users = UserRepository(session)
    alice = users.create(
        {"name": "Alice", "email": "alice@example.com", "password_hash": "x"}
    )
    bob = users.create(
        {"name": "Bob", "email": "bob@example.com", "password_hash": "x"}
    )
    food = CategoryRepository(session).create(
        {"name": "Food", "type": TransactionType.expense}
    )
    return alice, bob, food


def _populate(session: Session, user, category) -> None:
    TransactionService(session, user).create(
        TransactionIn(
            type=TransactionType.expense,
            category_id=category.id,
            amount=25,
            description="Groceries",
            date=date(2025, 7, 2),
        )
    )
    BudgetService(session, user).create(
        BudgetIn(category_id=category.id, amount=300, start_date=date(2025, 7, 1))
    )


def test_users_manage_only_their_own_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, _ = _setup(session)
        service = UserService(session, alice)

        with pytest.raises(Forbidden):
            service.get(bob.id)
        with pytest.raises(Forbidden):
            service.update(bob.id, UserUpdateIn(name="Mallory"))
        with pytest.raises(Forbidden):
            service.delete(bob.id)

        assert service.get(alice.id).email == "alice@example.com"


def test_update_profile_and_password() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, _ = _setup(session)
        service = UserService(session, alice)

        with pytest.raises(Conflict):
            service.update(alice.id, UserUpdateIn(email="BOB@example.com"))

        updated = service.update(
            alice.id,
            UserUpdateIn(name=" Alice Smith ", password="correct horse battery"),
        )
        assert updated.name == "Alice Smith"
        assert verify_password("correct horse battery", updated.password_hash)


def test_allowed_origins_are_normalized() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, _ = _setup(session)

        user = UserService(session, alice).set_allowed_origins(
            alice.id,
            [
                "https://b.example.com/",
                "https://a.example.com",
                "https://a.example.com",
            ],
        )

        assert user.allowed_origins == [
            "https://a.example.com",
            "https://b.example.com",
        ]


def test_account_deletion_removes_owned_records() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, bob, food = _setup(session)
        _populate(session, alice, food)
        _populate(session, bob, food)
        alice_id, bob_id = alice.id, bob.id

        UserService(session, alice).delete(alice_id)

        assert UserRepository(session).find_by_id(alice_id) is None
        assert TransactionRepository(session).find_by_user_id(alice_id) == []
        assert BudgetRepository(session).find_by_user_id(alice_id) == []
        assert len(TransactionRepository(session).find_by_user_id(bob_id)) == 1
        assert len(BudgetRepository(session).find_by_user_id(bob_id)) == 1
        assert CategoryRepository(session).find_by_id(food.id) is not None


def test_email_change_race_is_a_conflict(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice, _, _ = _setup(session)
        service = UserService(session, alice)
        monkeypatch.setattr(service.users, "find_by_email", lambda email: None)

        with pytest.raises(Conflict):
            service.update(alice.id, UserUpdateIn(email="bob@example.com"))

        session.expire_all()
        assert UserRepository(session).find_by_id(alice.id).email == "alice@example.com"
