"""
PeriodRolloverEngine: moves recurring budgets into their next period.

The new window, spent=0, last_alert_date=None and the expiry flag are
committed by a single guarded UPDATE (BudgetStore.advance_period), so a
half-rolled budget is never observable.
"""
import logging
from datetime import datetime, tzinfo

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.errors import StorageUnavailableError
from lifeledger.domain.budget import Budget, is_expired
from lifeledger.domain.budget_period import current_window, next_window

logger = logging.getLogger(__name__)


class PeriodRolloverEngine:

    def __init__(self, store: BudgetStore, tz: tzinfo):
        self.store = store
        self.tz = tz

    def rollover(self, budget: Budget, now: datetime) -> Budget | None:
        """
        Roll an expired recurring budget forward until its window contains `now`.

        Returns the updated budget, or None if the budget is not eligible or
        another writer already rolled it.
        """
        if not budget.is_recurring or not is_expired(budget, now):
            return None

        new_start, new_end = next_window(budget.period, budget.end_date, self.tz)
        skipped = 0
        # catch up after downtime: intermediate periods are skipped, not replayed
        while new_end < now:
            new_start, new_end = next_window(budget.period, new_end, self.tz)
            skipped += 1

        if not self.store.advance_period(budget.id, budget.end_date, new_start, new_end):
            logger.info("Budget %s already rolled over by another writer", budget.id)
            return None

        logger.info(
            "Budget %s rolled over: %s .. %s (skipped %d periods)",
            budget.id, new_start.isoformat(), new_end.isoformat(), skipped,
        )
        return self.store.get(budget.id)

    def reset(self, budget_id: str, now: datetime) -> Budget:
        """
        Explicit user reset: start the window containing `now` with zero spend,
        regardless of the recurring flag.
        """
        budget = self.store.get(budget_id)
        new_start, new_end = current_window(budget.period, now, self.tz)
        if not self.store.advance_period(budget.id, budget.end_date, new_start, new_end):
            # concurrent rollover moved end_date; retry against the fresh row once
            budget = self.store.get(budget_id)
            if not self.store.advance_period(budget.id, budget.end_date, new_start, new_end):
                logger.warning("Budget %s reset lost to concurrent writers twice", budget_id)
                raise StorageUnavailableError(f"Budget {budget_id} is being modified concurrently")
        logger.info("Budget %s reset to %s .. %s", budget_id, new_start.isoformat(), new_end.isoformat())
        return self.store.get(budget_id)
