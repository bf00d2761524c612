"""
Ledger read access for the budget core.

The transaction ledger is owned by a separate subsystem; the budget core
only sums expenses and reacts to ledger events.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, InterfaceError
from sqlalchemy.orm import Session

from lifeledger.application.errors import StorageUnavailableError
from lifeledger.infrastructure.db.models import TransactionRecord
from lifeledger.utils.money import to_decimal


EXPENSE = "EXPENSE"
INCOME = "INCOME"

EXPENSE_WRITTEN = "expense_written"
EXPENSE_DELETED = "expense_deleted"
EXPENSE_UPDATED = "expense_updated"


class LedgerReader(Protocol):

    def sum_expense(self, category_id: str | None, start: datetime, end: datetime) -> Decimal:
        """Sum of EXPENSE amounts in [start, end]; category_id=None sums all categories."""
        ...


@dataclass(frozen=True)
class LedgerEvent:
    """
    A ledger mutation as seen by the budget core.

    For expense_updated, `previous` carries the record as it was before the edit.
    """
    event_type: str
    amount: Decimal
    occurred_at: datetime
    category_id: str | None = None
    transaction_type: str = EXPENSE
    previous: "LedgerEvent | None" = None

    @classmethod
    def from_record(cls, record: TransactionRecord, event_type: str = EXPENSE_WRITTEN) -> "LedgerEvent":
        return cls(
            event_type=event_type,
            amount=to_decimal(record.amount),
            occurred_at=record.occurred_at,
            category_id=record.category_id,
            transaction_type=record.type,
        )


class SqlLedgerReader:
    """LedgerReader over the ledger_transactions read model"""

    def __init__(self, db: Session):
        self.db = db

    def sum_expense(self, category_id: str | None, start: datetime, end: datetime) -> Decimal:
        stmt = select(func.coalesce(func.sum(TransactionRecord.amount), 0)).where(
            TransactionRecord.type == EXPENSE,
            TransactionRecord.occurred_at >= start,
            TransactionRecord.occurred_at <= end,
        )
        if category_id is not None:
            stmt = stmt.where(TransactionRecord.category_id == category_id)

        try:
            total = self.db.execute(stmt).scalar_one()
        except (OperationalError, InterfaceError) as exc:
            self.db.rollback()
            raise StorageUnavailableError("Ledger is unavailable") from exc
        return to_decimal(total)
