"""
BudgetStore: persistence and query surface for Budget records.

Every operation is its own unit of work (commits on success, rolls back on
failure). `spent` is only ever written by adjust_spent / set_spent /
advance_period, each a single UPDATE statement so concurrent writers are
serialized by the database instead of racing in Python.
"""
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from lifeledger.application.errors import (
    BudgetNotFoundError,
    BudgetValidationError,
    StorageUnavailableError,
)
from lifeledger.domain.budget import Budget, BudgetPeriod, BudgetStatus, evaluate
from lifeledger.infrastructure.db.models import BudgetModel, utcnow
from lifeledger.utils.money import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")


@dataclass(frozen=True)
class BudgetOverview:
    total_count: int
    total_amount: Decimal
    total_spent: Decimal
    avg_usage_rate: Decimal
    overspent_count: int

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.total_spent

    @property
    def total_usage_rate(self) -> Decimal:
        if self.total_amount <= 0:
            return ZERO
        return self.total_spent / self.total_amount * Decimal("100")


def _storage_guard(method):
    """
    Translate driver-level errors: constraint violations become
    BudgetValidationError, connectivity errors StorageUnavailableError.
    The session is rolled back either way.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Budget rejected by storage in %s: %s", method.__name__, exc.orig)
            raise BudgetValidationError(f"Invalid budget data: {exc.orig}") from exc
        except (OperationalError, InterfaceError) as exc:
            self.db.rollback()
            logger.warning("Budget storage unavailable in %s: %s", method.__name__, exc)
            raise StorageUnavailableError(str(exc)) from exc

    return wrapper


def validate_budget(budget: Budget) -> None:
    """
    Raises:
        BudgetValidationError: with the first violated rule
    """
    if not budget.name or not budget.name.strip():
        raise BudgetValidationError("Budget name is required")
    if budget.amount is None or budget.amount <= 0:
        raise BudgetValidationError("Budget amount must be greater than zero")
    if budget.spent is not None and budget.spent < 0:
        raise BudgetValidationError("Spent amount cannot be negative")
    if budget.start_date is None or budget.end_date is None:
        raise BudgetValidationError("Budget period dates are required")
    if budget.start_date.tzinfo is None or budget.end_date.tzinfo is None:
        raise BudgetValidationError("Budget period dates must be timezone-aware")
    if budget.end_date <= budget.start_date:
        raise BudgetValidationError("Budget end date must be after start date")
    if budget.alert_threshold is None or not (ZERO < budget.alert_threshold <= ONE):
        raise BudgetValidationError("Alert threshold must be in (0, 1]")
    try:
        BudgetPeriod(budget.period)
    except ValueError:
        raise BudgetValidationError(f"Unknown budget period: {budget.period}")


def _to_domain(row: BudgetModel) -> Budget:
    return Budget(
        id=row.id,
        name=row.name,
        description=row.description,
        category_id=row.category_id,
        amount=to_decimal(row.amount),
        spent=to_decimal(row.spent),
        currency=row.currency,
        period=BudgetPeriod(row.period),
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=row.is_active,
        is_recurring=row.is_recurring,
        alert_threshold=to_decimal(row.alert_threshold),
        is_alert_enabled=row.is_alert_enabled,
        last_alert_date=row.last_alert_date,
        expiry_notified=row.expiry_notified,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _editable_values(budget: Budget) -> dict:
    """
    Columns replaced by update(). spent, last_alert_date and expiry_notified
    have their own targeted writers and are never taken from a snapshot.
    """
    return {
        "name": budget.name.strip(),
        "description": budget.description,
        "category_id": budget.category_id,
        "amount": budget.amount,
        "currency": budget.currency,
        "period": BudgetPeriod(budget.period).value,
        "start_date": budget.start_date,
        "end_date": budget.end_date,
        "is_active": budget.is_active,
        "is_recurring": budget.is_recurring,
        "alert_threshold": budget.alert_threshold,
        "is_alert_enabled": budget.is_alert_enabled,
        "updated_at": utcnow(),
    }


class BudgetStore:

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @_storage_guard
    def create(self, budget: Budget) -> Budget:
        validate_budget(budget)
        row = BudgetModel(
            spent=budget.spent or ZERO,
            last_alert_date=budget.last_alert_date,
            expiry_notified=bool(budget.expiry_notified),
            **_editable_values(budget),
        )
        if budget.id:
            row.id = budget.id
        self.db.add(row)
        self.db.commit()
        logger.info("Budget created: id=%s name=%r category=%s", row.id, row.name, row.category_id)
        return self.get(row.id)

    @_storage_guard
    def get(self, budget_id: str) -> Budget:
        row = self.db.execute(
            select(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise BudgetNotFoundError(budget_id)
        budget = _to_domain(row)
        self.db.commit()
        return budget

    @_storage_guard
    def update(self, budget: Budget, rearm_expiry_notice: bool = False) -> Budget:
        """
        Replace the editable fields of a stored budget.

        rearm_expiry_notice clears the "expiring soon" flag in the same
        statement (used when the window moves).
        """
        if not budget.id:
            raise BudgetValidationError("Budget id is required for update")
        validate_budget(budget)
        values = _editable_values(budget)
        if rearm_expiry_notice:
            values["expiry_notified"] = False
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise BudgetNotFoundError(budget.id)
        self.db.commit()
        return self.get(budget.id)

    @_storage_guard
    def delete(self, budget_id: str) -> None:
        self.db.execute(
            delete(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Spend cache
    # ------------------------------------------------------------------

    @_storage_guard
    def adjust_spent(self, budget_id: str, delta: Decimal) -> Decimal:
        """Atomically add `delta` to spent (clamped at 0). Returns the new value."""
        new_spent = case(
            (BudgetModel.spent + delta < 0, 0),
            else_=BudgetModel.spent + delta,
        )
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .values(spent=new_spent, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise BudgetNotFoundError(budget_id)
        # same transaction: the row stays locked until commit
        spent = self.db.execute(
            select(BudgetModel.spent).where(BudgetModel.id == budget_id)
        ).scalar_one()
        self.db.commit()
        return to_decimal(spent)

    @_storage_guard
    def set_spent(self, budget_id: str, value: Decimal) -> Decimal:
        if value < 0:
            raise BudgetValidationError("Spent amount cannot be negative")
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .values(spent=value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise BudgetNotFoundError(budget_id)
        self.db.commit()
        return value

    # ------------------------------------------------------------------
    # Lifecycle writes
    # ------------------------------------------------------------------

    @_storage_guard
    def mark_alerted(self, budget_id: str, at: datetime) -> None:
        self._update_one(budget_id, last_alert_date=at)

    @_storage_guard
    def mark_expiry_notified(self, budget_id: str) -> None:
        self._update_one(budget_id, expiry_notified=True)

    @_storage_guard
    def advance_period(
        self,
        budget_id: str,
        expected_end: datetime,
        new_start: datetime,
        new_end: datetime,
    ) -> bool:
        """
        Commit a new period window with reset spend in one statement.

        Guarded by the current end_date: returns False (and changes nothing)
        if the budget was already moved by another writer.
        """
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget_id, BudgetModel.end_date == expected_end)
            .values(
                start_date=new_start,
                end_date=new_end,
                spent=ZERO,
                last_alert_date=None,
                expiry_notified=False,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    @_storage_guard
    def set_active(self, budget_ids: Iterable[str], is_active: bool) -> int:
        ids = list(budget_ids)
        if not ids:
            return 0
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id.in_(ids))
            .values(is_active=is_active, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    @_storage_guard
    def archive_expired(self, now: datetime) -> int:
        """Deactivate non-recurring budgets whose window has ended."""
        result = self.db.execute(
            update(BudgetModel)
            .where(
                BudgetModel.is_recurring == False,  # noqa: E712
                BudgetModel.is_active == True,  # noqa: E712
                BudgetModel.end_date < now,
            )
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    @_storage_guard
    def purge_expired(self, cutoff: datetime) -> int:
        """Delete inactive non-recurring budgets that ended before `cutoff`."""
        result = self.db.execute(
            delete(BudgetModel)
            .where(
                BudgetModel.is_recurring == False,  # noqa: E712
                BudgetModel.is_active == False,  # noqa: E712
                BudgetModel.end_date < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    def _update_one(self, budget_id: str, **values) -> None:
        values["updated_at"] = utcnow()
        result = self.db.execute(
            update(BudgetModel)
            .where(BudgetModel.id == budget_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise BudgetNotFoundError(budget_id)
        self.db.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _list(self, *criteria, order_by=None) -> list[Budget]:
        stmt = select(BudgetModel).where(*criteria).execution_options(populate_existing=True)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        rows = self.db.execute(stmt).scalars().all()
        # end the read transaction so SQLite does not hold a shared lock
        self.db.commit()
        return [_to_domain(r) for r in rows]

    @_storage_guard
    def list_all(self) -> list[Budget]:
        return self._list(order_by=BudgetModel.start_date.desc())

    @_storage_guard
    def list_active(self) -> list[Budget]:
        return self._list(BudgetModel.is_active == True, order_by=BudgetModel.start_date.desc())  # noqa: E712

    @_storage_guard
    def list_active_current(self, now: datetime) -> list[Budget]:
        return self._list(
            BudgetModel.is_active == True,  # noqa: E712
            BudgetModel.start_date <= now,
            BudgetModel.end_date >= now,
            order_by=BudgetModel.start_date.desc(),
        )

    @_storage_guard
    def list_expired_recurring(self, now: datetime) -> list[Budget]:
        return self._list(
            BudgetModel.is_recurring == True,  # noqa: E712
            BudgetModel.end_date < now,
            order_by=BudgetModel.end_date.asc(),
        )

    def list_overspent(self, now: datetime) -> list[Budget]:
        budgets = [b for b in self.list_active() if evaluate(b, now) == BudgetStatus.EXCEEDED]
        return sorted(budgets, key=lambda b: b.spent - b.amount, reverse=True)

    def list_near_limit(self, now: datetime) -> list[Budget]:
        budgets = [b for b in self.list_active() if evaluate(b, now) == BudgetStatus.WARNING]
        return sorted(budgets, key=lambda b: b.spent / b.amount, reverse=True)

    @_storage_guard
    def list_expiring_soon(self, now: datetime, days: int = 3) -> list[Budget]:
        return self._list(
            BudgetModel.is_active == True,  # noqa: E712
            BudgetModel.end_date >= now,
            BudgetModel.end_date <= now + timedelta(days=days),
            order_by=BudgetModel.end_date.asc(),
        )

    @_storage_guard
    def list_by_category(self, category_id: str | None) -> list[Budget]:
        if category_id is None:
            criterion = BudgetModel.category_id.is_(None)
        else:
            criterion = BudgetModel.category_id == category_id
        return self._list(criterion, order_by=BudgetModel.start_date.desc())

    @_storage_guard
    def list_by_period(self, period: BudgetPeriod | str, active_only: bool = False) -> list[Budget]:
        criteria = [BudgetModel.period == BudgetPeriod(period).value]
        if active_only:
            criteria.append(BudgetModel.is_active == True)  # noqa: E712
        return self._list(*criteria, order_by=BudgetModel.start_date.desc())

    @_storage_guard
    def list_overlapping(self, start: datetime, end: datetime) -> list[Budget]:
        """Budgets whose window intersects [start, end], both ends inclusive."""
        return self._list(
            BudgetModel.start_date <= end,
            BudgetModel.end_date >= start,
            order_by=BudgetModel.start_date.desc(),
        )

    @_storage_guard
    def count(
        self,
        active_only: bool = False,
        period: BudgetPeriod | str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Number of budgets; `now` restricts to windows containing it."""
        stmt = select(func.count()).select_from(BudgetModel)
        if active_only:
            stmt = stmt.where(BudgetModel.is_active == True)  # noqa: E712
        if period is not None:
            stmt = stmt.where(BudgetModel.period == BudgetPeriod(period).value)
        if now is not None:
            stmt = stmt.where(BudgetModel.start_date <= now, BudgetModel.end_date >= now)
        total = self.db.execute(stmt).scalar_one()
        self.db.commit()
        return total

    @_storage_guard
    def find_matching(self, category_id: str | None, occurred_at: datetime) -> list[Budget]:
        """
        Budgets affected by an expense: window contains `occurred_at` and the
        category matches, plus every total budget.
        """
        category_match = [BudgetModel.category_id.is_(None)]
        if category_id is not None:
            category_match.append(BudgetModel.category_id == category_id)
        return self._list(
            BudgetModel.start_date <= occurred_at,
            BudgetModel.end_date >= occurred_at,
            or_(*category_match),
        )

    def get_current_for_category(self, category_id: str, now: datetime) -> Budget | None:
        for budget in self.list_active_current(now):
            if budget.category_id == category_id:
                return budget
        return None

    def get_current_total(self, now: datetime) -> Budget | None:
        for budget in self.list_active_current(now):
            if budget.category_id is None:
                return budget
        return None

    @_storage_guard
    def search(self, query: str) -> list[Budget]:
        pattern = f"%{query.strip()}%"
        return self._list(
            or_(BudgetModel.name.ilike(pattern), BudgetModel.description.ilike(pattern)),
            order_by=BudgetModel.start_date.desc(),
        )

    def overview(self, now: datetime) -> BudgetOverview:
        budgets = self.list_active_current(now)
        if not budgets:
            return BudgetOverview(0, ZERO, ZERO, ZERO, 0)

        usage = [b.spent / b.amount * Decimal("100") for b in budgets]
        return BudgetOverview(
            total_count=len(budgets),
            total_amount=sum((b.amount for b in budgets), ZERO),
            total_spent=sum((b.spent for b in budgets), ZERO),
            avg_usage_rate=sum(usage, ZERO) / len(usage),
            overspent_count=sum(1 for b in budgets if b.spent > b.amount),
        )
