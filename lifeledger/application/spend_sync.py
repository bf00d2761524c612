"""
SpendSynchronizer: keeps Budget.spent equal to the ledger expenses in each window.

Two modes:
- incremental: on expense insert/delete, adjust every matching budget by
  +/- amount (O(matching budgets), the default path)
- recompute: re-derive spent from LedgerReader.sum_expense (after ambiguous
  edits, after rollover, and as a periodic self-healing pass)

A failed incremental adjust is logged and skipped; the next recompute pass
restores the figure.
"""
import logging
from datetime import datetime
from decimal import Decimal

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.errors import BudgetNotFoundError, StorageUnavailableError
from lifeledger.application.ledger import (
    EXPENSE,
    EXPENSE_DELETED,
    EXPENSE_UPDATED,
    EXPENSE_WRITTEN,
    LedgerEvent,
    LedgerReader,
)
from lifeledger.domain.budget import Budget

logger = logging.getLogger(__name__)


class SpendSynchronizer:

    def __init__(self, store: BudgetStore, ledger: LedgerReader):
        self.store = store
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    def handle(self, event: LedgerEvent) -> list[str]:
        """Apply one ledger event. Returns ids of the budgets touched."""
        if event.event_type == EXPENSE_UPDATED:
            # type may have changed INCOME <-> EXPENSE, both sides are checked
            return self.on_expense_updated(event.previous, event)

        if event.transaction_type != EXPENSE:
            return []

        if event.event_type == EXPENSE_WRITTEN:
            return self.on_expense_written(event.category_id, event.amount, event.occurred_at)
        elif event.event_type == EXPENSE_DELETED:
            return self.on_expense_deleted(event.category_id, event.amount, event.occurred_at)

        logger.warning("Unknown ledger event type: %s", event.event_type)
        return []

    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------

    def on_expense_written(self, category_id: str | None, amount: Decimal, occurred_at: datetime) -> list[str]:
        return self._apply_delta(category_id, amount, occurred_at)

    def on_expense_deleted(self, category_id: str | None, amount: Decimal, occurred_at: datetime) -> list[str]:
        return self._apply_delta(category_id, -amount, occurred_at)

    def _apply_delta(self, category_id: str | None, delta: Decimal, occurred_at: datetime) -> list[str]:
        try:
            budgets = self.store.find_matching(category_id, occurred_at)
        except StorageUnavailableError:
            logger.exception(
                "Incremental budget sync skipped: category=%s delta=%s at=%s",
                category_id, delta, occurred_at.isoformat(),
            )
            return []

        touched = []
        for budget in budgets:
            try:
                new_spent = self.store.adjust_spent(budget.id, delta)
            except (StorageUnavailableError, BudgetNotFoundError):
                logger.exception("Incremental adjust failed for budget_id=%s delta=%s", budget.id, delta)
                continue
            logger.debug("Budget %s spent -> %s (delta %s)", budget.id, new_spent, delta)
            touched.append(budget.id)
        return touched

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def on_expense_updated(self, previous: LedgerEvent | None, current: LedgerEvent) -> list[str]:
        """
        An edit may move an expense between categories or windows, so every
        budget matching either the old or the new record is recomputed.
        """
        affected: dict[str, Budget] = {}
        for ev in (previous, current):
            if ev is None or ev.transaction_type != EXPENSE:
                continue
            for budget in self.store.find_matching(ev.category_id, ev.occurred_at):
                affected[budget.id] = budget

        for budget in affected.values():
            self.recompute_budget(budget)
        return list(affected)

    def recompute(self, budget_id: str) -> Decimal:
        """Re-derive spent for one budget from the ledger."""
        return self.recompute_budget(self.store.get(budget_id))

    trigger_recompute = recompute

    def recompute_budget(self, budget: Budget) -> Decimal:
        total = self.ledger.sum_expense(budget.category_id, budget.start_date, budget.end_date)
        self.store.set_spent(budget.id, total)
        if total != budget.spent:
            logger.info("Budget %s spent recomputed: %s -> %s", budget.id, budget.spent, total)
        return total

    def recompute_all(self, now: datetime) -> int:
        """Self-healing pass over every active current budget. Returns the number recomputed."""
        count = 0
        for budget in self.store.list_active_current(now):
            try:
                self.recompute_budget(budget)
                count += 1
            except Exception:
                logger.exception("Recompute failed for budget_id=%s", budget.id)
        return count
