"""
Tests for the budget alert engine (one reconciliation pass).

Covers:
  - WARNING / EXCEEDED alerts, at most one per budget per local day
  - delivery failure on one budget does not stop the pass
  - rollover of expired recurring budgets inside the pass
  - "expiring soon" notice once per window
  - the full January scenario: warning, exceeded, back to warning, rollover
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock
from zoneinfo import ZoneInfo

import pytest

from conftest import make_budget
from lifeledger.application.budget_alerts import BudgetAlertEngine, render
from lifeledger.application.errors import NotifyFailure
from lifeledger.application.ledger import EXPENSE_DELETED, LedgerEvent
from lifeledger.application.rollover import PeriodRolloverEngine
from lifeledger.domain.budget import BudgetPeriod, BudgetStatus, evaluate
from lifeledger.domain.budget_period import TICK
from lifeledger.infrastructure.db.models import TransactionRecord

UTC = timezone.utc
MSK = ZoneInfo("Europe/Moscow")


@pytest.fixture
def notifier():
    return Mock()


def _engine(store, synchronizer, notifier, tz=UTC) -> BudgetAlertEngine:
    return BudgetAlertEngine(
        store=store,
        synchronizer=synchronizer,
        rollover=PeriodRolloverEngine(store, tz),
        notifier=notifier,
        tz=tz,
        expiring_soon_days=3,
    )


@pytest.fixture
def engine(store, synchronizer, notifier):
    return _engine(store, synchronizer, notifier)


def _sent_titles(notifier) -> list[str]:
    return [c.args[1] for c in notifier.send.call_args_list]


class TestThresholdAlerts:

    def test_warning_alert_sent_and_recorded(self, store, engine, notifier):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("850"))
        now = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)

        result = engine.run(now)

        assert result.alerts_sent == 1
        budget_id, title, body, severity = notifier.send.call_args.args
        assert budget_id == budget.id
        assert title == "Budget warning"
        assert "85.0%" in body
        assert severity == "warn"
        assert store.get(budget.id).last_alert_date == now

    def test_exceeded_alert(self, store, engine, notifier):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("1200"))

        engine.run(datetime(2024, 3, 15, tzinfo=UTC))

        _, title, body, severity = notifier.send.call_args.args
        assert title == "Budget exceeded"
        assert "200.00" in body
        assert severity == "danger"

    def test_safe_budget_is_silent(self, store, engine, notifier):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("100"))

        assert engine.run(datetime(2024, 3, 15, tzinfo=UTC)).alerts_sent == 0
        notifier.send.assert_not_called()

    def test_disabled_and_inactive_budgets_are_silent(self, store, engine, notifier):
        muted = store.create(make_budget(name="Muted", is_alert_enabled=False))
        paused = store.create(make_budget(name="Paused", is_active=False))
        for b in (muted, paused):
            store.adjust_spent(b.id, Decimal("2000"))

        engine.run(datetime(2024, 3, 15, tzinfo=UTC))
        notifier.send.assert_not_called()

    def test_one_alert_per_local_day(self, store, synchronizer, notifier):
        engine = _engine(store, synchronizer, notifier, tz=MSK)
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("900"))

        engine.run(datetime(2024, 3, 15, 5, 0, tzinfo=UTC))    # 08:00 MSK
        engine.run(datetime(2024, 3, 15, 17, 0, tzinfo=UTC))   # 20:00 MSK, same day
        assert notifier.send.call_count == 1

        engine.run(datetime(2024, 3, 15, 21, 30, tzinfo=UTC))  # 00:30 MSK next day
        assert notifier.send.call_count == 2

    def test_edit_from_stale_snapshot_does_not_repeat_alert(self, store, engine, notifier):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("900"))
        snapshot = store.get(budget.id)

        engine.run(datetime(2024, 3, 15, 9, 0, tzinfo=UTC))
        store.update(replace(snapshot, name="Food"))
        engine.run(datetime(2024, 3, 15, 10, 0, tzinfo=UTC))

        assert notifier.send.call_count == 1
        assert store.get(budget.id).last_alert_date == datetime(2024, 3, 15, 9, 0, tzinfo=UTC)

    def test_failed_delivery_is_retried_next_tick(self, store, engine, notifier):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("900"))
        notifier.send.side_effect = NotifyFailure("telegram down")

        result = engine.run(datetime(2024, 3, 15, 10, 0, tzinfo=UTC))
        assert result.failures == 1
        assert store.get(budget.id).last_alert_date is None

        notifier.send.side_effect = None
        assert engine.run(datetime(2024, 3, 15, 11, 0, tzinfo=UTC)).alerts_sent == 1

    def test_failure_on_one_budget_does_not_stop_others(self, store, engine, notifier):
        broken = store.create(make_budget(name="Broken"))
        healthy = store.create(make_budget(name="Healthy"))
        for b in (broken, healthy):
            store.adjust_spent(b.id, Decimal("900"))

        def send(budget_id, title, body, severity):
            if budget_id == broken.id:
                raise RuntimeError("boom")

        notifier.send.side_effect = send
        result = engine.run(datetime(2024, 3, 15, tzinfo=UTC))

        assert result.alerts_sent == 1
        assert result.failures == 1
        assert store.get(healthy.id).last_alert_date is not None
        assert store.get(broken.id).last_alert_date is None


class TestRolloverInPass:

    def test_expired_recurring_budget_rolls_and_recomputes(self, store, engine, add_expense):
        budget = store.create(make_budget())
        store.adjust_spent(budget.id, Decimal("990"))
        add_expense("30", occurred_at=datetime(2024, 4, 1, 8, 0, tzinfo=UTC))

        result = engine.run(datetime(2024, 4, 1, 12, 0, tzinfo=UTC))

        rolled = store.get(budget.id)
        assert result.rolled_over == 1
        assert rolled.start_date == datetime(2024, 4, 1, tzinfo=UTC)
        assert rolled.spent == Decimal("30")

    def test_expired_one_off_budget_stays(self, store, engine):
        budget = store.create(make_budget(is_recurring=False))
        result = engine.run(datetime(2024, 4, 2, tzinfo=UTC))
        assert result.rolled_over == 0
        assert evaluate(store.get(budget.id), datetime(2024, 4, 2, tzinfo=UTC)) == BudgetStatus.EXPIRED


class TestExpiryNotices:

    def test_notice_sent_once_per_window(self, store, engine, notifier):
        budget = store.create(make_budget())
        near_end = datetime(2024, 3, 29, 12, 0, tzinfo=UTC)

        assert engine.run(near_end).notices_sent == 1
        assert engine.run(near_end + timedelta(days=1)).notices_sent == 0
        assert _sent_titles(notifier) == ["Budget expiring soon"]
        assert store.get(budget.id).expiry_notified is True

    def test_notice_not_sent_early(self, store, engine, notifier):
        store.create(make_budget())
        assert engine.run(datetime(2024, 3, 20, tzinfo=UTC)).notices_sent == 0
        notifier.send.assert_not_called()

    def test_daily_budget_gets_no_notice(self, store, engine, notifier):
        store.create(make_budget(
            period=BudgetPeriod.DAILY,
            start_date=datetime(2024, 3, 15, tzinfo=UTC),
            end_date=datetime(2024, 3, 16, tzinfo=UTC) - TICK,
        ))
        engine.run(datetime(2024, 3, 15, 12, 0, tzinfo=UTC))
        notifier.send.assert_not_called()

    def test_rollover_rearms_notice(self, store, engine):
        budget = store.create(make_budget())
        engine.run(datetime(2024, 3, 30, tzinfo=UTC))
        engine.run(datetime(2024, 4, 1, 1, 0, tzinfo=UTC))
        assert store.get(budget.id).expiry_notified is False


def test_render_uses_currency_and_local_date():
    budget = make_budget(spent=Decimal("850"))
    title, body, severity = render("BUDGET_EXPIRING", budget, datetime(2024, 3, 29, tzinfo=UTC), MSK)
    assert title == "Budget expiring soon"
    assert "01.04.2024" in body  # 23:59 UTC on Mar 31 is already April 1 in Moscow
    assert severity == "info"

    _, body, _ = render("BUDGET_WARNING", budget, datetime(2024, 3, 15, tzinfo=UTC), UTC)
    assert body == "«Groceries» has used 85.0% of 1 000.00 ¥."


def test_january_scenario(store, synchronizer, engine, notifier, add_expense, db_session):
    budget = store.create(make_budget(
        start_date=datetime(2024, 1, 1, tzinfo=UTC),
        end_date=datetime(2024, 2, 1, tzinfo=UTC) - TICK,
    ))
    jan_15 = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    synchronizer.handle(add_expense("850", occurred_at=jan_15))
    current = store.get(budget.id)
    assert current.spent == Decimal("850")
    assert evaluate(current, jan_15) == BudgetStatus.WARNING

    extra = add_expense("200", occurred_at=jan_15 + timedelta(hours=1))
    synchronizer.handle(extra)
    current = store.get(budget.id)
    assert current.spent == Decimal("1050")
    assert evaluate(current, jan_15) == BudgetStatus.EXCEEDED

    db_session.query(TransactionRecord).filter_by(amount=Decimal("200")).delete()
    db_session.commit()
    synchronizer.handle(LedgerEvent(EXPENSE_DELETED, extra.amount, extra.occurred_at, extra.category_id))
    current = store.get(budget.id)
    assert current.spent == Decimal("850")
    assert evaluate(current, jan_15) == BudgetStatus.WARNING

    engine.run(datetime(2024, 2, 1, 9, 0, tzinfo=UTC))

    rolled = store.get(budget.id)
    assert rolled.start_date == datetime(2024, 2, 1, tzinfo=UTC)
    assert rolled.end_date == datetime(2024, 2, 29, 23, 59, 59, 999999, tzinfo=UTC)
    assert rolled.spent == Decimal("0")
    assert evaluate(rolled, datetime(2024, 2, 1, 9, 0, tzinfo=UTC)) == BudgetStatus.SAFE
