from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from config import get_settings
from database import Database
from models import (
    Transaction,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    User,
    UserRole,
)
from security import hash_password

logger = logging.getLogger(__name__)

SAMPLE_PASSWORD = "password123"
TRANSACTIONS_PER_USER = 50
HISTORY_DAYS = 180


@dataclass(frozen=True)
class SampleUser:
    name: str
    email: str
    role: UserRole
    avatar: str


@dataclass(frozen=True)
class Counterparty:
    name: str
    email: str
    avatar: str


SAMPLE_USERS = [
    SampleUser(
        "John Doe", "john@example.com", UserRole.user,
        "https://mui.com/static/images/avatar/1.jpg",
    ),
    SampleUser(
        "Jane Smith", "jane@example.com", UserRole.admin,
        "https://mui.com/static/images/avatar/2.jpg",
    ),
]

COUNTERPARTIES = [
    Counterparty(name, f"{name.split()[0].lower()}@example.com",
                 f"https://mui.com/static/images/avatar/{idx}.jpg")
    for idx, name in enumerate(
        [
            "Matheus Ferreira",
            "Floyd Miles",
            "Jerome Bell",
            "Emily Johnson",
            "Michael Brown",
            "Sarah Wilson",
        ],
        start=1,
    )
]

INCOME_CATEGORIES = [
    TransactionCategory.revenue,
    TransactionCategory.investment,
    TransactionCategory.other,
]
EXPENSE_CATEGORIES = [
    TransactionCategory.expenses,
    TransactionCategory.transfer,
    TransactionCategory.other,
]


@dataclass(frozen=True)
class SeedSummary:
    users: int
    transactions: int


def _reference(rng: random.Random) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "REF" + "".join(rng.choice(alphabet) for _ in range(9))


def sample_transactions(
    user_id: int,
    *,
    count: int = TRANSACTIONS_PER_USER,
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
) -> list[Transaction]:
    rng = rng or random.Random()
    today = today or date.today()
    transactions = []
    for _ in range(count):
        party = rng.choice(COUNTERPARTIES)
        is_income = rng.random() > 0.4
        txn_type = TransactionType.income if is_income else TransactionType.expense
        statuses = [TransactionStatus.completed, TransactionStatus.pending]
        if not is_income:
            statuses.append(TransactionStatus.failed)
        transactions.append(
            Transaction(
                user_id=user_id,
                name=party.name,
                email=party.email,
                avatar=party.avatar,
                date=today - timedelta(days=rng.randrange(HISTORY_DAYS)),
                amount_cents=rng.randint(50, 1049) * 100,
                type=txn_type,
                category=rng.choice(INCOME_CATEGORIES if is_income else EXPENSE_CATEGORIES),
                status=rng.choice(statuses),
                description=f"Sample {txn_type.value} transaction",
                reference=_reference(rng),
            )
        )
    return transactions


def seed_database(
    session: Session,
    *,
    rng: Optional[random.Random] = None,
    today: Optional[date] = None,
    transactions_per_user: int = TRANSACTIONS_PER_USER,
) -> SeedSummary:
    """Replace all users and transactions with the sample data set."""
    rng = rng or random.Random()
    session.execute(delete(Transaction))
    session.execute(delete(User))
    session.flush()
    session.expunge_all()
    logger.info("seed: cleared existing data")

    users = []
    for sample in SAMPLE_USERS:
        user = User(
            name=sample.name,
            email=sample.email,
            password_hash=hash_password(SAMPLE_PASSWORD),
            role=sample.role,
            avatar=sample.avatar,
        )
        session.add(user)
        users.append(user)
    session.flush()

    total = 0
    for user in users:
        txns = sample_transactions(
            user.id, count=transactions_per_user, rng=rng, today=today
        )
        session.add_all(txns)
        total += len(txns)
        logger.info(f"seed: user={user.email} transactions={len(txns)}")

    session.commit()
    return SeedSummary(users=len(users), transactions=total)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    store = Database(settings.database_url).open()
    try:
        store.create_schema()
        with store.session_scope() as session:
            summary = seed_database(session)
        logger.info(
            f"seed: done users={summary.users} transactions={summary.transactions}"
        )
        for sample in SAMPLE_USERS:
            logger.info(f"seed: login email={sample.email} password={SAMPLE_PASSWORD}")
    finally:
        store.close()


if __name__ == "__main__":
    main()
