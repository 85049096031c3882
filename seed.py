"""Seed the default category set and, optionally, a demo account.

    python seed.py            # categories only
    python seed.py --demo     # categories plus test@example.com / password123

The schema is brought to the latest Alembic revision first, so a seeded
database stays on the normal migration path.
"""

import argparse
import logging
from datetime import date
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.orm import Session

from auth import hash_password
from config import get_settings
from database import Database
from models import BudgetPeriod, TransactionType
from periods import budget_window_end
from repositories import (
    BudgetRepository,
    CategoryRepository,
    TransactionRepository,
    UserRepository,
)


logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Salary", TransactionType.income, "cash", "#4CAF50"),
    ("Investment", TransactionType.income, "chart-line", "#2196F3"),
    ("Gift", TransactionType.income, "gift", "#9C27B0"),
    ("Other Income", TransactionType.income, "plus-circle", "#607D8B"),
    ("Housing", TransactionType.expense, "home", "#FF5722"),
    ("Transportation", TransactionType.expense, "car", "#795548"),
    ("Food", TransactionType.expense, "restaurant", "#FFC107"),
    ("Utilities", TransactionType.expense, "flash", "#03A9F4"),
    ("Healthcare", TransactionType.expense, "medical-bag", "#E91E63"),
    ("Entertainment", TransactionType.expense, "movie", "#673AB7"),
    ("Education", TransactionType.expense, "school", "#3F51B5"),
    ("Shopping", TransactionType.expense, "cart", "#9E9E9E"),
    ("Other Expense", TransactionType.expense, "minus-circle", "#F44336"),
]

ALEMBIC_INI = Path(__file__).resolve().parent / "alembic.ini"

DEMO_EMAIL = "test@example.com"
DEMO_PASSWORD = "password123"


def migrate(database_url: str) -> None:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


def seed_categories(session: Session) -> int:
    repo = CategoryRepository(session)
    created = 0
    for name, txn_type, icon, color in DEFAULT_CATEGORIES:
        if repo.find_by_name(name, txn_type):
            continue
        repo.create({"name": name, "type": txn_type, "icon": icon, "color": color})
        created += 1
    return created


def seed_demo_user(session: Session, today: date) -> bool:
    users = UserRepository(session)
    if users.find_by_email(DEMO_EMAIL):
        return False
    user = users.create(
        {
            "name": "Test User",
            "email": DEMO_EMAIL,
            "password_hash": hash_password(DEMO_PASSWORD),
        }
    )
    categories = CategoryRepository(session)
    by_name = {c.name: c for c in categories.find_all()}
    month_start = today.replace(day=1)

    transactions = TransactionRepository(session)
    samples = [
        ("Salary", TransactionType.income, 5000.0, "Monthly salary", 1),
        ("Housing", TransactionType.expense, 1500.0, "Rent payment", 1),
        ("Food", TransactionType.expense, 120.0, "Weekly groceries", 4),
        ("Food", TransactionType.expense, 80.0, "Restaurant dinner", 10),
        ("Transportation", TransactionType.expense, 50.0, "Fuel", 5),
        ("Utilities", TransactionType.expense, 95.5, "Electricity bill", 8),
    ]
    for name, txn_type, amount, description, day in samples:
        txn_date = month_start.replace(day=min(day, today.day))
        transactions.create(
            {
                "user_id": user.id,
                "type": txn_type,
                "category_id": by_name[name].id,
                "amount": amount,
                "description": description,
                "date": txn_date,
            }
        )

    budgets = BudgetRepository(session)
    for name, amount in (
        ("Food", 500.0),
        ("Housing", 1600.0),
        ("Transportation", 200.0),
    ):
        category = by_name[name]
        budgets.create(
            {
                "user_id": user.id,
                "category_id": category.id,
                "amount": amount,
                "period": BudgetPeriod.monthly,
                "start_date": month_start,
                "end_date": budget_window_end(month_start, BudgetPeriod.monthly),
            }
        )
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--demo", action="store_true", help="also create a demo user")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    migrate(settings.database_url)
    db = Database(settings)
    try:
        with db.session_scope() as session:
            created = seed_categories(session)
            logger.info(f"seed: categories_created={created}")
            if args.demo:
                made = seed_demo_user(session, date.today())
                logger.info(f"seed: demo_user_created={made}")
    finally:
        db.dispose()


if __name__ == "__main__":
    main()
