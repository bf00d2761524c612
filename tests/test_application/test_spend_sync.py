"""
Tests for SpendSynchronizer.

Covers:
  - incremental insert / delete on category and total budgets
  - expenses outside the window or of type INCOME are ignored
  - recompute is idempotent and agrees with the incremental path
  - edits move spend between budgets (recompute of old + new matches)
  - storage failures on the incremental path are logged, not raised
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from conftest import MARCH_END, MID_MARCH, make_budget
from lifeledger.application.errors import StorageUnavailableError
from lifeledger.application.ledger import (
    EXPENSE_DELETED,
    EXPENSE_UPDATED,
    EXPENSE_WRITTEN,
    INCOME,
    LedgerEvent,
)
from lifeledger.infrastructure.db.models import TransactionRecord


def _event(event_type, amount, category_id=None, occurred_at=MID_MARCH, **kwargs) -> LedgerEvent:
    return LedgerEvent(
        event_type=event_type,
        amount=Decimal(str(amount)),
        occurred_at=occurred_at,
        category_id=category_id,
        **kwargs,
    )


class TestIncremental:

    def test_expense_updates_category_and_total_budgets(self, store, synchronizer):
        food = store.create(make_budget(name="Food", category_id="food"))
        total = store.create(make_budget(name="Total"))
        transport = store.create(make_budget(name="Transport", category_id="transport"))

        touched = synchronizer.on_expense_written("food", Decimal("42.50"), MID_MARCH)

        assert set(touched) == {food.id, total.id}
        assert store.get(food.id).spent == Decimal("42.50")
        assert store.get(total.id).spent == Decimal("42.50")
        assert store.get(transport.id).spent == Decimal("0")

    def test_expense_outside_window_is_ignored(self, store, synchronizer):
        budget = store.create(make_budget())
        touched = synchronizer.on_expense_written(None, Decimal("10"), MARCH_END + timedelta(days=1))
        assert touched == []
        assert store.get(budget.id).spent == Decimal("0")

    def test_delete_subtracts(self, store, synchronizer):
        budget = store.create(make_budget())
        synchronizer.on_expense_written(None, Decimal("100"), MID_MARCH)
        synchronizer.on_expense_deleted(None, Decimal("30"), MID_MARCH)
        assert store.get(budget.id).spent == Decimal("70")

    def test_delete_never_goes_below_zero(self, store, synchronizer):
        budget = store.create(make_budget())
        synchronizer.on_expense_deleted(None, Decimal("30"), MID_MARCH)
        assert store.get(budget.id).spent == Decimal("0")

    def test_handle_dispatches_written_and_deleted(self, store, synchronizer):
        budget = store.create(make_budget(category_id="food"))
        synchronizer.handle(_event(EXPENSE_WRITTEN, "20", "food"))
        synchronizer.handle(_event(EXPENSE_DELETED, "5", "food"))
        assert store.get(budget.id).spent == Decimal("15")

    def test_handle_ignores_income(self, store, synchronizer):
        budget = store.create(make_budget())
        assert synchronizer.handle(_event(EXPENSE_WRITTEN, "500", transaction_type=INCOME)) == []
        assert store.get(budget.id).spent == Decimal("0")

    def test_handle_unknown_event_type(self, store, synchronizer, caplog):
        store.create(make_budget())
        with caplog.at_level(logging.WARNING):
            assert synchronizer.handle(_event("expense_archived", "5")) == []
        assert "Unknown ledger event type" in caplog.text

    def test_storage_failure_is_logged_not_raised(self, store, synchronizer, caplog):
        store.create(make_budget())
        with patch.object(store, "find_matching", side_effect=StorageUnavailableError("down")):
            with caplog.at_level(logging.ERROR):
                touched = synchronizer.on_expense_written(None, Decimal("10"), MID_MARCH)
        assert touched == []
        assert "Incremental budget sync skipped" in caplog.text

    def test_adjust_failure_skips_only_that_budget(self, store, synchronizer):
        first = store.create(make_budget(name="First"))
        second = store.create(make_budget(name="Second"))
        real_adjust = store.adjust_spent

        def flaky(budget_id, delta):
            if budget_id == first.id:
                raise StorageUnavailableError("locked")
            return real_adjust(budget_id, delta)

        with patch.object(store, "adjust_spent", side_effect=flaky):
            touched = synchronizer.on_expense_written(None, Decimal("10"), MID_MARCH)

        assert touched == [second.id]
        assert store.get(second.id).spent == Decimal("10")


class TestRecompute:

    def test_recompute_sums_ledger_window(self, store, synchronizer, add_expense):
        budget = store.create(make_budget(category_id="food"))
        add_expense("10.25", category_id="food")
        add_expense("4.75", category_id="food", occurred_at=MARCH_END)
        add_expense("99", category_id="transport")
        add_expense("1000", category_id="food", occurred_at=MARCH_END + timedelta(seconds=1))
        add_expense("70", category_id="food", type=INCOME)

        assert synchronizer.recompute(budget.id) == Decimal("15.00")
        assert store.get(budget.id).spent == Decimal("15.00")

    def test_recompute_total_budget_sums_every_category(self, store, synchronizer, add_expense):
        budget = store.create(make_budget())
        add_expense("10", category_id="food")
        add_expense("20", category_id="transport")
        add_expense("5")

        assert synchronizer.recompute(budget.id) == Decimal("35")

    def test_recompute_is_idempotent(self, store, synchronizer, add_expense):
        budget = store.create(make_budget())
        add_expense("12.34")

        first = synchronizer.recompute(budget.id)
        second = synchronizer.trigger_recompute(budget.id)

        assert first == second == Decimal("12.34")
        assert store.get(budget.id).spent == Decimal("12.34")

    def test_recompute_repairs_drift(self, store, synchronizer, add_expense):
        budget = store.create(make_budget())
        add_expense("50")
        store.set_spent(budget.id, Decimal("999"))

        synchronizer.recompute(budget.id)
        assert store.get(budget.id).spent == Decimal("50")

    def test_incremental_agrees_with_recompute(self, store, synchronizer, add_expense):
        food = store.create(make_budget(name="Food", category_id="food"))
        total = store.create(make_budget(name="Total"))

        written = [
            add_expense("12.10", category_id="food"),
            add_expense("3.90", category_id="food", occurred_at=MID_MARCH + timedelta(days=3)),
            add_expense("25", category_id="rent"),
            add_expense("8", occurred_at=MARCH_END + timedelta(days=2)),
        ]
        for event in written:
            synchronizer.handle(event)

        incremental = {b_id: store.get(b_id).spent for b_id in (food.id, total.id)}
        synchronizer.recompute(food.id)
        synchronizer.recompute(total.id)

        assert incremental[food.id] == store.get(food.id).spent == Decimal("16.00")
        assert incremental[total.id] == store.get(total.id).spent == Decimal("41.00")

    def test_recompute_all_counts_active_current(self, store, synchronizer, add_expense):
        store.create(make_budget(name="A"))
        store.create(make_budget(name="B", category_id="food"))
        store.create(make_budget(name="Off", is_active=False))
        add_expense("5", category_id="food")

        assert synchronizer.recompute_all(MID_MARCH) == 2


class TestExpenseUpdated:

    def test_edit_moves_spend_between_categories(self, store, synchronizer, add_expense, db_session):
        food = store.create(make_budget(name="Food", category_id="food"))
        transport = store.create(make_budget(name="Transport", category_id="transport"))
        total = store.create(make_budget(name="Total"))

        event = add_expense("40", category_id="food")
        synchronizer.handle(event)

        # the ledger subsystem edits the row, then reports old + new
        record = db_session.query(TransactionRecord).one()
        record.category_id = "transport"
        db_session.commit()

        touched = synchronizer.handle(_event(
            EXPENSE_UPDATED, "40", "transport", previous=event,
        ))

        assert set(touched) == {food.id, transport.id, total.id}
        assert store.get(food.id).spent == Decimal("0")
        assert store.get(transport.id).spent == Decimal("40")
        assert store.get(total.id).spent == Decimal("40")

    def test_edit_from_income_to_expense(self, store, synchronizer, add_expense, db_session):
        budget = store.create(make_budget())
        before = add_expense("60", type=INCOME)

        record = db_session.query(TransactionRecord).one()
        record.type = "EXPENSE"
        db_session.commit()

        synchronizer.handle(_event(EXPENSE_UPDATED, "60", previous=before))
        assert store.get(budget.id).spent == Decimal("60")


def test_expense_on_new_budget_window_boundary(store, synchronizer):
    """An expense at the first tick of a window belongs to that window only"""
    march = store.create(make_budget(name="March"))
    april = store.create(make_budget(
        name="April",
        start_date=datetime(2024, 4, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 5, 1, tzinfo=timezone.utc) - timedelta(microseconds=1),
    ))

    synchronizer.on_expense_written(None, Decimal("10"), datetime(2024, 4, 1, tzinfo=timezone.utc))

    assert store.get(march.id).spent == Decimal("0")
    assert store.get(april.id).spent == Decimal("10")
