"""
Budget API endpoints
"""
from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from lifeledger.api.deps import get_app_settings, get_db, get_timezone
from lifeledger.application.budget_store import BudgetStore, BudgetOverview
from lifeledger.application.budgets import (
    CreateBudgetUseCase,
    DeleteBudgetUseCase,
    ResetBudgetPeriodUseCase,
    SetBudgetsActiveUseCase,
    TriggerRecomputeUseCase,
    UpdateBudgetUseCase,
)
from lifeledger.config import Settings
from lifeledger.domain.budget import (
    Budget,
    BudgetPeriod,
    daily_allowance,
    evaluate,
    remaining_amount,
    remaining_days,
    spent_percentage,
    status_color,
    status_label,
)
from lifeledger.utils.validation import parse_amount, parse_threshold


router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])

LIST_FILTERS = ("overspent", "near_limit", "current", "expiring")


# === Request/Response models ===

class CreateBudgetRequest(BaseModel):
    name: str
    amount: Decimal  # "1000", "1000,50" or a JSON number
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    category_id: str | None = None  # None = total budget
    start_date: datetime | None = None  # None = current window of the period
    end_date: datetime | None = None
    currency: str | None = None  # None = DEFAULT_CURRENCY
    description: str | None = None
    is_recurring: bool = True
    alert_threshold: Decimal = Decimal("0.8")  # 0.8 or "80%"
    is_alert_enabled: bool = True

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v) -> Decimal:
        return parse_amount(str(v))

    @field_validator("alert_threshold", mode="before")
    @classmethod
    def validate_threshold(cls, v) -> Decimal:
        return parse_threshold(str(v))


class UpdateBudgetRequest(BaseModel):
    """Only the fields present in the request body are changed"""
    name: str | None = None
    amount: Decimal | None = None
    period: BudgetPeriod | None = None
    category_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    currency: str | None = None
    description: str | None = None
    is_active: bool | None = None
    is_recurring: bool | None = None
    alert_threshold: Decimal | None = None
    is_alert_enabled: bool | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v):
        return None if v is None else parse_amount(str(v))

    @field_validator("alert_threshold", mode="before")
    @classmethod
    def validate_threshold(cls, v):
        return None if v is None else parse_threshold(str(v))


class SetActiveRequest(BaseModel):
    budget_ids: list[str]
    is_active: bool


class BudgetResponse(BaseModel):
    id: str
    name: str
    description: str | None
    category_id: str | None
    amount: str  # Decimal as string
    spent: str
    currency: str
    period: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    is_recurring: bool
    alert_threshold: str
    is_alert_enabled: bool
    last_alert_date: datetime | None
    status: str
    status_label: str
    status_color: str
    spent_percentage: str
    remaining_amount: str
    remaining_days: int
    daily_allowance: str

    @classmethod
    def from_domain(cls, budget: Budget, now: datetime) -> "BudgetResponse":
        status = evaluate(budget, now)
        return cls(
            id=budget.id,
            name=budget.name,
            description=budget.description,
            category_id=budget.category_id,
            amount=str(budget.amount),
            spent=str(budget.spent),
            currency=budget.currency,
            period=budget.period.value,
            start_date=budget.start_date,
            end_date=budget.end_date,
            is_active=budget.is_active,
            is_recurring=budget.is_recurring,
            alert_threshold=str(budget.alert_threshold),
            is_alert_enabled=budget.is_alert_enabled,
            last_alert_date=budget.last_alert_date,
            status=status.value,
            status_label=status_label(status),
            status_color=status_color(status),
            spent_percentage=f"{spent_percentage(budget):.1f}",
            remaining_amount=str(remaining_amount(budget)),
            remaining_days=remaining_days(budget, now),
            daily_allowance=f"{daily_allowance(budget, now):.2f}",
        )


class OverviewResponse(BaseModel):
    total_count: int
    total_amount: str
    total_spent: str
    remaining_amount: str
    avg_usage_rate: str
    total_usage_rate: str
    overspent_count: int

    @classmethod
    def from_overview(cls, overview: BudgetOverview) -> "OverviewResponse":
        return cls(
            total_count=overview.total_count,
            total_amount=str(overview.total_amount),
            total_spent=str(overview.total_spent),
            remaining_amount=str(overview.remaining_amount),
            avg_usage_rate=f"{overview.avg_usage_rate:.1f}",
            total_usage_rate=f"{overview.total_usage_rate:.1f}",
            overspent_count=overview.overspent_count,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


# === Endpoints ===

@router.post("/", response_model=BudgetResponse)
def create_budget(
    req: CreateBudgetRequest,
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
    settings: Settings = Depends(get_app_settings),
):
    """Создать бюджет (без дат: текущее окно периода)"""
    now = _now()
    values = req.model_dump()
    values["currency"] = values["currency"] or settings.DEFAULT_CURRENCY
    budget = CreateBudgetUseCase(db, tz).execute(**values, now=now)
    return BudgetResponse.from_domain(budget, now)


@router.get("/", response_model=list[BudgetResponse])
def list_budgets(
    db: Session = Depends(get_db),
    status: str | None = None,
    category_id: str | None = None,
    include_inactive: bool = False,
    days: int = 3,
    period: BudgetPeriod | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
):
    """
    Список бюджетов

    status:
        overspent  - active, over the limit (largest overrun first)
        near_limit - active, at or past the alert threshold
        current    - active, window contains now
        expiring   - active, window ends within `days`

    from_date / to_date: only budgets whose window overlaps the range
    """
    now = _now()
    store = BudgetStore(db)

    if status is not None and status not in LIST_FILTERS:
        raise HTTPException(
            status_code=422,
            detail=f"status должен быть одним из {', '.join(LIST_FILTERS)}, получено: {status}",
        )
    if (from_date is None) != (to_date is None):
        raise HTTPException(status_code=422, detail="from_date и to_date задаются вместе")
    for value in (from_date, to_date):
        if value is not None and value.tzinfo is None:
            raise HTTPException(status_code=422, detail="from_date / to_date должны содержать часовой пояс")

    if status == "overspent":
        budgets = store.list_overspent(now)
    elif status == "near_limit":
        budgets = store.list_near_limit(now)
    elif status == "current":
        budgets = store.list_active_current(now)
    elif status == "expiring":
        budgets = store.list_expiring_soon(now, days)
    elif from_date is not None and to_date is not None:
        budgets = store.list_overlapping(from_date, to_date)
    elif period is not None:
        budgets = store.list_by_period(period)
    elif category_id is not None:
        budgets = store.list_by_category(category_id)
    elif include_inactive:
        budgets = store.list_all()
    else:
        budgets = store.list_active()

    if category_id is not None:
        budgets = [b for b in budgets if b.category_id == category_id]
    if period is not None:
        budgets = [b for b in budgets if b.period == period]
    if not include_inactive:
        budgets = [b for b in budgets if b.is_active]

    return [BudgetResponse.from_domain(b, now) for b in budgets]


@router.get("/search", response_model=list[BudgetResponse])
def search_budgets(q: str, db: Session = Depends(get_db)):
    """Поиск по названию и описанию"""
    now = _now()
    return [BudgetResponse.from_domain(b, now) for b in BudgetStore(db).search(q)]


@router.get("/overview", response_model=OverviewResponse)
def budget_overview(db: Session = Depends(get_db)):
    """Сводка по активным бюджетам текущего периода"""
    return OverviewResponse.from_overview(BudgetStore(db).overview(_now()))


@router.get("/count")
def count_budgets(
    db: Session = Depends(get_db),
    active_only: bool = False,
    period: BudgetPeriod | None = None,
    current: bool = False,
):
    """Количество бюджетов (current: окно содержит текущий момент)"""
    total = BudgetStore(db).count(active_only=active_only, period=period, now=_now() if current else None)
    return {"count": total}


@router.post("/active")
def set_budgets_active(
    req: SetActiveRequest,
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    """Включить / выключить несколько бюджетов"""
    changed = SetBudgetsActiveUseCase(db, tz).execute(req.budget_ids, req.is_active)
    return {"updated": changed}


@router.get("/{budget_id}", response_model=BudgetResponse)
def get_budget(budget_id: str, db: Session = Depends(get_db)):
    return BudgetResponse.from_domain(BudgetStore(db).get(budget_id), _now())


@router.patch("/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: str,
    req: UpdateBudgetRequest,
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    """Изменить бюджет (spent не редактируется)"""
    budget = UpdateBudgetUseCase(db, tz).execute(budget_id, **req.model_dump(exclude_unset=True))
    return BudgetResponse.from_domain(budget, _now())


@router.delete("/{budget_id}")
def delete_budget(budget_id: str, db: Session = Depends(get_db)):
    DeleteBudgetUseCase(db).execute(budget_id)
    return {"status": "deleted"}


@router.post("/{budget_id}/reset", response_model=BudgetResponse)
def reset_budget_period(
    budget_id: str,
    db: Session = Depends(get_db),
    tz: ZoneInfo = Depends(get_timezone),
):
    """Начать текущий период заново"""
    now = _now()
    budget = ResetBudgetPeriodUseCase(db, tz).execute(budget_id, now=now)
    return BudgetResponse.from_domain(budget, now)


@router.post("/{budget_id}/recompute", response_model=BudgetResponse)
def recompute_budget(budget_id: str, db: Session = Depends(get_db)):
    """Пересчитать spent по журналу операций"""
    budget = TriggerRecomputeUseCase(db).execute(budget_id)
    return BudgetResponse.from_domain(budget, _now())
