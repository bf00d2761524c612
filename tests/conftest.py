"""
Pytest fixtures for testing
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.ledger import EXPENSE, EXPENSE_WRITTEN, LedgerEvent, SqlLedgerReader
from lifeledger.application.spend_sync import SpendSynchronizer
from lifeledger.domain.budget import Budget, BudgetPeriod
from lifeledger.domain.budget_period import TICK
from lifeledger.infrastructure.db.models import TransactionRecord
from lifeledger.infrastructure.db.session import Base, create_session_factory


MARCH_START = datetime(2024, 3, 1, tzinfo=timezone.utc)
MARCH_END = datetime(2024, 4, 1, tzinfo=timezone.utc) - TICK
MID_MARCH = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every thread (TestClient runs sync routes in a worker)"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store(db_session) -> BudgetStore:
    return BudgetStore(db_session)


@pytest.fixture
def synchronizer(db_session, store) -> SpendSynchronizer:
    return SpendSynchronizer(store, SqlLedgerReader(db_session))


@pytest.fixture
def utc():
    return timezone.utc


def make_budget(**overrides) -> Budget:
    """March 2024 monthly total budget of 1000 unless overridden"""
    values = dict(
        name="Groceries",
        amount=Decimal("1000"),
        period=BudgetPeriod.MONTHLY,
        start_date=MARCH_START,
        end_date=MARCH_END,
    )
    values.update(overrides)
    return Budget(**values)


@pytest.fixture
def add_expense(db_session):
    """Write a ledger row and return the matching ledger event"""

    def _add(amount, occurred_at=MID_MARCH, category_id=None, type=EXPENSE) -> LedgerEvent:
        record = TransactionRecord(
            category_id=category_id,
            amount=Decimal(str(amount)),
            type=type,
            occurred_at=occurred_at,
        )
        db_session.add(record)
        db_session.commit()
        return LedgerEvent.from_record(record, EXPENSE_WRITTEN)

    return _add
