"""
Budget alert engine: one reconciliation pass over all budgets.

Pass steps:
  1. threshold alerts for active current budgets in WARNING / EXCEEDED,
     at most one per budget per local calendar day (last_alert_date)
  2. rollover of expired recurring budgets, followed by a recompute
  3. "expiring soon" notices, once per window (expiry_notified)

A failure on one budget is logged and counted; the pass continues with the
rest. Anything not delivered is picked up again by the next tick.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.errors import NotifyFailure
from lifeledger.application.notifier import (
    Notifier,
    SEVERITY_DANGER,
    SEVERITY_INFO,
    SEVERITY_WARN,
)
from lifeledger.application.rollover import PeriodRolloverEngine
from lifeledger.application.spend_sync import SpendSynchronizer
from lifeledger.domain.budget import (
    Budget,
    BudgetPeriod,
    BudgetStatus,
    evaluate,
    is_expiring_soon,
    needs_alert,
    remaining_days,
    spent_percentage,
)
from lifeledger.utils.money import format_money

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

_TEMPLATES: dict[str, dict] = {
    "BUDGET_EXCEEDED": {
        "severity": SEVERITY_DANGER,
        "title": "Budget exceeded",
        "body": "«{name}» is over budget by {over} ({spent} of {amount}).",
    },
    "BUDGET_WARNING": {
        "severity": SEVERITY_WARN,
        "title": "Budget warning",
        "body": "«{name}» has used {percent}% of {amount}.",
    },
    "BUDGET_EXPIRING": {
        "severity": SEVERITY_INFO,
        "title": "Budget expiring soon",
        "body": "«{name}» ends in {days} days ({date}).",
    },
}


@dataclass
class AlertRunResult:
    alerts_sent: int = 0
    notices_sent: int = 0
    rolled_over: int = 0
    failures: int = 0


def render(rule_code: str, budget: Budget, now: datetime, tz: tzinfo) -> tuple[str, str, str]:
    """Return (title, body, severity) for a budget notification."""
    tmpl = _TEMPLATES[rule_code]
    ctx = {
        "name": budget.name,
        "amount": format_money(budget.amount, budget.currency),
        "spent": format_money(budget.spent, budget.currency),
        "over": format_money(budget.spent - budget.amount, budget.currency),
        "percent": f"{spent_percentage(budget):.1f}",
        "days": remaining_days(budget, now),
        "date": budget.end_date.astimezone(tz).strftime("%d.%m.%Y"),
    }
    return tmpl["title"], tmpl["body"].format(**ctx), tmpl["severity"]


class BudgetAlertEngine:

    def __init__(
        self,
        store: BudgetStore,
        synchronizer: SpendSynchronizer,
        rollover: PeriodRolloverEngine,
        notifier: Notifier,
        tz: tzinfo,
        expiring_soon_days: int = 3,
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.rollover = rollover
        self.notifier = notifier
        self.tz = tz
        self.expiring_soon_days = expiring_soon_days

    def run(self, now: datetime | None = None) -> AlertRunResult:
        """Run one reconciliation pass at `now`."""
        now = now or datetime.now(timezone.utc)
        result = AlertRunResult()

        self._send_threshold_alerts(now, result)
        self._rollover_expired(now, result)
        self._send_expiry_notices(now, result)

        logger.info(
            "Budget pass done: alerts=%d notices=%d rolled_over=%d failures=%d",
            result.alerts_sent, result.notices_sent, result.rolled_over, result.failures,
        )
        return result

    def _notify(self, rule_code: str, budget: Budget, now: datetime) -> None:
        title, body, severity = render(rule_code, budget, now, self.tz)
        self.notifier.send(budget.id, title, body, severity)

    def _send_threshold_alerts(self, now: datetime, result: AlertRunResult) -> None:
        for budget in self.store.list_active_current(now):
            if not needs_alert(budget, now, self.tz):
                continue
            status = evaluate(budget, now)
            rule_code = "BUDGET_EXCEEDED" if status == BudgetStatus.EXCEEDED else "BUDGET_WARNING"
            try:
                self._notify(rule_code, budget, now)
                self.store.mark_alerted(budget.id, now)
                result.alerts_sent += 1
            except NotifyFailure as exc:
                logger.warning("Budget alert not delivered for budget_id=%s: %s", budget.id, exc)
                result.failures += 1
            except Exception:
                logger.exception("Budget alert failed for budget_id=%s", budget.id)
                result.failures += 1

    def _rollover_expired(self, now: datetime, result: AlertRunResult) -> None:
        for budget in self.store.list_expired_recurring(now):
            try:
                rolled = self.rollover.rollover(budget, now)
                if rolled is None:
                    continue
                # ledger entries may already exist inside the new window
                self.synchronizer.recompute_budget(rolled)
                result.rolled_over += 1
            except Exception:
                logger.exception("Budget rollover failed for budget_id=%s", budget.id)
                result.failures += 1

    def _send_expiry_notices(self, now: datetime, result: AlertRunResult) -> None:
        for budget in self.store.list_expiring_soon(now, self.expiring_soon_days):
            if budget.expiry_notified or not budget.is_alert_enabled:
                continue
            # a daily window is always inside the notice horizon
            if budget.period == BudgetPeriod.DAILY:
                continue
            if not is_expiring_soon(budget, now, self.expiring_soon_days):
                continue
            try:
                self._notify("BUDGET_EXPIRING", budget, now)
                self.store.mark_expiry_notified(budget.id)
                result.notices_sent += 1
            except NotifyFailure as exc:
                logger.warning("Expiry notice not delivered for budget_id=%s: %s", budget.id, exc)
                result.failures += 1
            except Exception:
                logger.exception("Expiry notice failed for budget_id=%s", budget.id)
                result.failures += 1
