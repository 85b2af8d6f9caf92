import csv
from datetime import date, datetime
from enum import Enum
from io import StringIO
from typing import Optional, Sequence

from models import Transaction
from schemas import DEFAULT_EXPORT_COLUMNS

FORMULA_TRIGGERS = ("=", "+", "-", "@", "\t", "\r")

# API column name -> model attribute
COLUMN_ATTRIBUTES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def sanitize_csv_value(value: str) -> str:
    """
    Neutralise spreadsheet formulas by prefixing dangerous leading characters with a tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()
    if value.startswith(FORMULA_TRIGGERS):
        return "\t" + value
    return value


def format_amount(txn: Transaction) -> str:
    return f"{txn.signed_amount_cents / 100:.2f}"


def format_cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return sanitize_csv_value(value)
    return str(value)


def transaction_row(txn: Transaction, columns: Sequence[str]) -> list[str]:
    row = []
    for column in columns:
        if column == "amount":
            row.append(format_amount(txn))
            continue
        attr = COLUMN_ATTRIBUTES.get(column, column)
        row.append(format_cell(getattr(txn, attr, None)))
    return row


def export_transactions(
    transactions: Sequence[Transaction], columns: Optional[Sequence[str]] = None
) -> str:
    columns = list(columns or DEFAULT_EXPORT_COLUMNS)
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(columns)
    for txn in transactions:
        writer.writerow(transaction_row(txn, columns))
    return output.getvalue()
