"""Translate list/export parameters into SQLAlchemy filter and sort clauses."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import ColumnElement, Select, func, or_, select

from database import casefold
from errors import ValidationError
from models import Transaction, TransactionCategory, TransactionStatus, TransactionType

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

SORTABLE_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount_cents,
    "name": Transaction.name,
    "email": Transaction.email,
    "type": Transaction.type,
    "category": Transaction.category,
    "status": Transaction.status,
    "createdAt": Transaction.created_at,
    "updatedAt": Transaction.updated_at,
}

SEARCH_COLUMNS = (
    Transaction.name,
    Transaction.email,
    Transaction.description,
    Transaction.reference,
)


@dataclass
class TransactionFilters:
    search: Optional[str] = None
    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    status: Optional[TransactionStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(frozen=True)
class SortSpec:
    field: str = "date"
    direction: str = "desc"

    @classmethod
    def parse(cls, field: Optional[str], direction: Optional[str]) -> SortSpec:
        field = field or "date"
        direction = (direction or "desc").lower()
        if field not in SORTABLE_COLUMNS:
            raise ValidationError(
                f"Cannot sort by '{field}'",
                details=[
                    {
                        "field": "sortBy",
                        "message": "Must be one of: " + ", ".join(SORTABLE_COLUMNS),
                    }
                ],
            )
        if direction not in {"asc", "desc"}:
            raise ValidationError(
                f"Invalid sort order '{direction}'",
                details=[{"field": "sortOrder", "message": "Must be 'asc' or 'desc'"}],
            )
        return cls(field, direction)


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def clamp(cls, page: Optional[int], page_size: Optional[int]) -> PageRequest:
        page = max(1 if page is None else page, 1)
        if page_size is None:
            page_size = DEFAULT_PAGE_SIZE
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        return cls(page, page_size)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


@dataclass
class TransactionPage:
    items: list[Transaction]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


@dataclass
class TransactionQuery:
    where: list[ColumnElement[bool]] = field(default_factory=list)
    order_by: list[ColumnElement] = field(default_factory=list)

    def select_page(self, page: PageRequest) -> Select:
        return (
            select(Transaction)
            .where(*self.where)
            .order_by(*self.order_by)
            .offset(page.offset)
            .limit(page.limit)
        )

    def select_all(self) -> Select:
        return select(Transaction).where(*self.where).order_by(*self.order_by)

    def count(self) -> Select:
        return select(func.count(Transaction.id)).where(*self.where)


def _like_pattern(term: str) -> str:
    escaped = term.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def filter_clauses(user_id: int, filters: TransactionFilters) -> list[ColumnElement[bool]]:
    clauses: list[ColumnElement[bool]] = [Transaction.user_id == user_id]

    term = (filters.search or "").strip()
    if term:
        pattern = _like_pattern(term)
        clauses.append(
            or_(
                *(
                    casefold(func.coalesce(column, "")).like(pattern, escape="\\")
                    for column in SEARCH_COLUMNS
                )
            )
        )
    if filters.type:
        clauses.append(Transaction.type == filters.type)
    if filters.category:
        clauses.append(Transaction.category == filters.category)
    if filters.status:
        clauses.append(Transaction.status == filters.status)
    if filters.start_date:
        clauses.append(Transaction.date >= filters.start_date)
    if filters.end_date:
        clauses.append(Transaction.date <= filters.end_date)
    return clauses


def sort_clauses(sort: SortSpec) -> list[ColumnElement]:
    column = SORTABLE_COLUMNS[sort.field]
    primary = column.asc() if sort.direction == "asc" else column.desc()
    return [primary, Transaction.id.desc()]


def build_query(
    user_id: int, filters: TransactionFilters, sort: Optional[SortSpec] = None
) -> TransactionQuery:
    return TransactionQuery(
        where=filter_clauses(user_id, filters),
        order_by=sort_clauses(sort or SortSpec()),
    )
