"""
Budget use cases.

Each use case owns one user-facing operation and leaves `spent` consistent
with the ledger when it returns: whenever the matching set of expenses may
have changed (new budget, new category, new window, reactivation) the
budget is recomputed from the ledger.
"""
import dataclasses
import logging
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.errors import BudgetNotFoundError, BudgetValidationError
from lifeledger.application.ledger import SqlLedgerReader
from lifeledger.application.rollover import PeriodRolloverEngine
from lifeledger.application.spend_sync import SpendSynchronizer
from lifeledger.domain.budget import Budget, BudgetPeriod
from lifeledger.domain.budget_period import current_window, period_end

logger = logging.getLogger(__name__)

# Fields a caller may change through UpdateBudgetUseCase
UPDATABLE_FIELDS = {
    "name",
    "description",
    "category_id",
    "amount",
    "currency",
    "period",
    "start_date",
    "end_date",
    "is_active",
    "is_recurring",
    "alert_threshold",
    "is_alert_enabled",
}
# Of those, the ones that may be cleared
NULLABLE_FIELDS = {"description", "category_id"}


def _parse_period(period) -> BudgetPeriod:
    try:
        return BudgetPeriod(period)
    except ValueError:
        raise BudgetValidationError(f"Unknown budget period: {period}")


class _BudgetUseCase:

    def __init__(self, db: Session, tz: tzinfo = timezone.utc):
        self.db = db
        self.tz = tz
        self.store = BudgetStore(db)
        self.synchronizer = SpendSynchronizer(self.store, SqlLedgerReader(db))


class CreateBudgetUseCase(_BudgetUseCase):
    """
    Create a budget.

    Without explicit dates the budget covers the current local window of its
    period (this month for MONTHLY, this week for WEEKLY, ...). With only a
    start date the end is one period later. Expenses already in the ledger
    for that window are counted immediately.
    """

    def execute(
        self,
        name: str,
        amount: Decimal,
        period: BudgetPeriod | str = BudgetPeriod.MONTHLY,
        category_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        currency: str = "CNY",
        description: str | None = None,
        is_recurring: bool = True,
        alert_threshold: Decimal = Decimal("0.8"),
        is_alert_enabled: bool = True,
        now: datetime | None = None,
    ) -> Budget:
        period = _parse_period(period)
        now = now or datetime.now(timezone.utc)

        if start_date is None:
            if end_date is not None:
                raise BudgetValidationError("Budget start date is required when an end date is given")
            start_date, end_date = current_window(period, now, self.tz)
        elif end_date is None:
            end_date = period_end(period, start_date, self.tz)

        budget = self.store.create(Budget(
            name=name,
            amount=amount,
            period=period,
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
            currency=currency,
            description=description,
            is_recurring=is_recurring,
            alert_threshold=alert_threshold,
            is_alert_enabled=is_alert_enabled,
        ))

        self.synchronizer.recompute_budget(budget)
        return self.store.get(budget.id)


class UpdateBudgetUseCase(_BudgetUseCase):
    """
    Change editable fields of a budget. `spent` cannot be set here.

    A new window clears the "expiring soon" flag; a new window or category
    triggers a recompute.
    """

    def execute(self, budget_id: str, **changes) -> Budget:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise BudgetValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        cleared = {k for k, v in changes.items() if v is None} - NULLABLE_FIELDS
        if cleared:
            raise BudgetValidationError(f"Fields cannot be empty: {', '.join(sorted(cleared))}")

        current = self.store.get(budget_id)

        if "period" in changes:
            changes["period"] = _parse_period(changes["period"])
        # moving the start without an explicit end keeps the window one period long
        if "start_date" in changes and "end_date" not in changes:
            period = changes.get("period", current.period)
            changes["end_date"] = period_end(period, changes["start_date"], self.tz)

        updated = dataclasses.replace(current, **changes)

        window_changed = (
            updated.start_date != current.start_date or updated.end_date != current.end_date
        )
        budget = self.store.update(updated, rearm_expiry_notice=window_changed)

        if window_changed or updated.category_id != current.category_id:
            self.synchronizer.recompute_budget(budget)
            budget = self.store.get(budget_id)
        return budget


class DeleteBudgetUseCase(_BudgetUseCase):

    def execute(self, budget_id: str) -> None:
        self.store.delete(budget_id)
        logger.info("Budget deleted: id=%s", budget_id)


class SetBudgetsActiveUseCase(_BudgetUseCase):
    """
    Bulk activate / deactivate. Reactivated budgets are recomputed, since
    their spend is not tracked by the periodic pass while inactive.
    """

    def execute(self, budget_ids: Iterable[str], is_active: bool) -> int:
        ids = list(budget_ids)
        changed = self.store.set_active(ids, is_active)

        if is_active:
            for budget_id in ids:
                try:
                    self.synchronizer.recompute(budget_id)
                except BudgetNotFoundError:
                    logger.warning("Reactivated budget %s no longer exists", budget_id)
        return changed


class ResetBudgetPeriodUseCase(_BudgetUseCase):
    """Start the window containing `now` and count the expenses already in it."""

    def execute(self, budget_id: str, now: datetime | None = None) -> Budget:
        now = now or datetime.now(timezone.utc)
        budget = PeriodRolloverEngine(self.store, self.tz).reset(budget_id, now)
        self.synchronizer.recompute_budget(budget)
        return self.store.get(budget_id)


class TriggerRecomputeUseCase(_BudgetUseCase):

    def execute(self, budget_id: str) -> Budget:
        self.synchronizer.recompute(budget_id)
        return self.store.get(budget_id)
