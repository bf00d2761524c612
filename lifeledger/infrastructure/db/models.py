"""
SQLAlchemy ORM models (budgets + ledger read model)
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Text, Boolean, Numeric, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from lifeledger.infrastructure.db.session import Base
from lifeledger.infrastructure.db.types import UtcDateTime


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetModel(Base):
    """
    Budget envelope: planned spend limit for a category (or overall) over a period.

    `spent` is a cache of the ledger and is only written through
    BudgetStore.adjust_spent / set_spent / advance_period.
    """
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # NULL = total budget (matches every expense)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    spent: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, server_default="0", default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    period: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # DAILY/WEEKLY/MONTHLY/QUARTERLY/YEARLY
    start_date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)
    end_date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", default=True, index=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", default=True)

    alert_threshold: Mapped[Decimal] = mapped_column(
        Numeric(precision=4, scale=3), nullable=False, server_default="0.8", default=Decimal("0.8")
    )
    is_alert_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", default=True)
    last_alert_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    # "expiring soon" notice already sent for the current window
    expiry_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false", default=False)

    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime, server_default=func.now(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime, server_default=func.now(), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index('ix_budget_active_window', 'is_active', 'start_date', 'end_date'),
    )


class TransactionRecord(Base):
    """
    Read model: ledger transactions (owned by the ledger subsystem, read-only here)
    """
    __tablename__ = "ledger_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # INCOME / EXPENSE
    occurred_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="", default="")

    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime, server_default=func.now(), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index('ix_ledger_type_category_date', 'type', 'category_id', 'occurred_at'),
    )
