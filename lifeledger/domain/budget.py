"""
Budget domain value and status rules.

Status is derived from a Budget snapshot plus "now" and is never stored.
Precedence (first match wins): EXPIRED > EXCEEDED > WARNING > SAFE.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal
from enum import Enum


DAY = timedelta(days=1)
HUNDRED = Decimal("100")


class BudgetPeriod(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class BudgetStatus(str, Enum):
    SAFE = "SAFE"
    WARNING = "WARNING"
    EXCEEDED = "EXCEEDED"
    EXPIRED = "EXPIRED"


STATUS_LABELS = {
    BudgetStatus.SAFE: "Budget Sufficient",
    BudgetStatus.WARNING: "Near Limit",
    BudgetStatus.EXCEEDED: "Over Budget",
    BudgetStatus.EXPIRED: "Expired",
}

STATUS_COLORS = {
    BudgetStatus.SAFE: "#4CAF50",
    BudgetStatus.WARNING: "#FF9800",
    BudgetStatus.EXCEEDED: "#F44336",
    BudgetStatus.EXPIRED: "#9E9E9E",
}


@dataclass(frozen=True)
class Budget:
    name: str
    amount: Decimal
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime
    category_id: str | None = None  # None = total budget
    id: str | None = None
    spent: Decimal = Decimal("0")
    currency: str = "CNY"
    description: str | None = None
    is_active: bool = True
    is_recurring: bool = True
    alert_threshold: Decimal = Decimal("0.8")
    is_alert_enabled: bool = True
    last_alert_date: datetime | None = None
    expiry_notified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_total(self) -> bool:
        return self.category_id is None


def is_expired(budget: Budget, now: datetime) -> bool:
    return now > budget.end_date


def spent_percentage(budget: Budget) -> Decimal:
    """Spent share of the limit in percent, capped at 100."""
    if budget.amount <= 0:
        return Decimal("0")
    return min(HUNDRED, budget.spent / budget.amount * HUNDRED)


def evaluate(budget: Budget, now: datetime) -> BudgetStatus:
    """Derive the budget status at `now`."""
    if is_expired(budget, now):
        return BudgetStatus.EXPIRED
    if budget.spent > budget.amount:
        return BudgetStatus.EXCEEDED
    if spent_percentage(budget) >= budget.alert_threshold * HUNDRED:
        return BudgetStatus.WARNING
    return BudgetStatus.SAFE


def remaining_amount(budget: Budget) -> Decimal:
    return budget.amount - budget.spent


def remaining_days(budget: Budget, now: datetime) -> int:
    """Whole days left until end_date (0 once past)."""
    remaining = budget.end_date - now
    if remaining <= timedelta(0):
        return 0
    return remaining // DAY


def daily_allowance(budget: Budget, now: datetime) -> Decimal:
    days = remaining_days(budget, now)
    if days <= 0:
        return Decimal("0")
    return remaining_amount(budget) / days


def is_expiring_soon(budget: Budget, now: datetime, days: int = 3) -> bool:
    return now + timedelta(days=days) >= budget.end_date


def start_of_day(now: datetime, tz: tzinfo) -> datetime:
    """Midnight of `now`'s calendar day in the user's time zone."""
    local = now.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def needs_alert(budget: Budget, now: datetime, tz: tzinfo) -> bool:
    """
    At most one threshold alert per budget per local calendar day.

    Eligible when alerts are enabled, the budget is active, the status is
    WARNING or EXCEEDED, and no alert was recorded since local midnight.
    """
    if not budget.is_alert_enabled or not budget.is_active:
        return False
    if evaluate(budget, now) not in (BudgetStatus.WARNING, BudgetStatus.EXCEEDED):
        return False
    if budget.last_alert_date is not None and budget.last_alert_date >= start_of_day(now, tz):
        return False
    return True


def status_label(status: BudgetStatus) -> str:
    return STATUS_LABELS[status]


def status_color(status: BudgetStatus) -> str:
    return STATUS_COLORS[status]
