from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import case, extract, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from csv_utils import export_transactions
from errors import Conflict, InvalidCredentials, NotFound
from models import Transaction, TransactionType, User
from periods import Period, current_month, trailing_months
from queries import (
    PageRequest,
    SortSpec,
    TransactionFilters,
    TransactionPage,
    build_query,
)
from schemas import (
    ProfileUpdateIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdateIn,
)
from security import hash_password, verify_password

RECENT_TRANSACTIONS_LIMIT = 5
TREND_MONTHS = 12


def cents_to_amount(cents: int) -> float:
    return cents / 100


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User does not exist")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.scalar(stmt)

    def list_all(self) -> list[User]:
        return self.session.scalars(select(User).order_by(User.id)).all()

    def register(self, data: RegisterIn) -> User:
        if self.find_by_email(data.email):
            raise Conflict("A user with this email already exists")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
            role=data.role,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            # lost a race against a concurrent registration
            self.session.rollback()
            raise Conflict("A user with this email already exists") from exc
        self.session.refresh(user)
        return user

    def login(self, email: str, password: str) -> User:
        user = self.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        return user

    def update_profile(self, user_id: int, data: ProfileUpdateIn) -> User:
        user = self.get(user_id)
        if data.name:
            user.name = data.name
        if data.avatar:
            user.avatar = data.avatar
        self.session.commit()
        self.session.refresh(user)
        return user


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn, *, today: Optional[date] = None) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            name=data.name,
            email=data.email,
            avatar=data.avatar,
            date=data.date or today or date.today(),
            amount_cents=data.amount_cents,
            type=data.type,
            category=data.category,
            status=data.status,
            description=data.description,
            reference=data.reference,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound(
                "Transaction does not exist or you do not have permission to access it"
            )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        for key, value in data.changes().items():
            setattr(txn, key, value)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self,
        filters: TransactionFilters,
        sort: Optional[SortSpec] = None,
        page: Optional[PageRequest] = None,
    ) -> TransactionPage:
        page = page or PageRequest()
        query = build_query(self.user_id, filters, sort)
        total = int(self.session.execute(query.count()).scalar_one() or 0)
        items = self.session.scalars(query.select_page(page)).all()
        return TransactionPage(
            items=list(items), total_count=total, page=page.page, page_size=page.page_size
        )

    def all_matching(self, filters: TransactionFilters) -> list[Transaction]:
        query = build_query(self.user_id, filters, SortSpec("date", "desc"))
        return list(self.session.scalars(query.select_all()).all())

    def recent(self, limit: int = RECENT_TRANSACTIONS_LIMIT) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


class StatsService:
    """Dashboard aggregates for one user, computed in the database."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _totals(self, period: Optional[Period] = None) -> tuple[int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.type == TransactionType.income, Transaction.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.type == TransactionType.expense, Transaction.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
        ).where(Transaction.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expenses or 0)

    def monthly_trends(
        self, *, months: int = TREND_MONTHS, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        period = trailing_months(months, today=today)
        year = extract("year", Transaction.date).label("year")
        month = extract("month", Transaction.date).label("month")
        stmt = (
            select(
                year,
                month,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(year, month, Transaction.type)
            .order_by(year, month, Transaction.type)
        )
        return [
            {
                "year": int(row.year),
                "month": int(row.month),
                "type": row.type.value,
                "total": cents_to_amount(int(row.total or 0)),
            }
            for row in self.session.execute(stmt)
        ]

    def category_breakdown(self) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.category, Transaction.type)
            .order_by(Transaction.category, Transaction.type)
        )
        return [
            {
                "category": row.category.value,
                "type": row.type.value,
                "total": cents_to_amount(int(row.total or 0)),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def dashboard(self, *, today: Optional[date] = None) -> dict[str, object]:
        total_income, total_expenses = self._totals()
        monthly_income, monthly_expenses = self._totals(current_month(today=today))
        return {
            "totalIncome": cents_to_amount(total_income),
            "totalExpenses": cents_to_amount(total_expenses),
            "monthlyIncome": cents_to_amount(monthly_income),
            "monthlyExpenses": cents_to_amount(monthly_expenses),
            "balance": cents_to_amount(total_income - total_expenses),
            "monthlyBalance": cents_to_amount(monthly_income - monthly_expenses),
            "recentTransactions": TransactionService(self.session, self.user_id).recent(),
            "monthlyTrends": self.monthly_trends(today=today),
            "categoryBreakdown": self.category_breakdown(),
        }


class CSVService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def export(self, filters: TransactionFilters, columns: list[str]) -> str:
        transactions = TransactionService(self.session, self.user_id).all_matching(filters)
        return export_transactions(transactions, columns)
