"""
Run one budget pass by hand for diagnostics (recompute + alerts + rollover)

Uses DATABASE_URL / TIMEZONE from the environment or .env.
"""
import logging
import traceback
from datetime import datetime, timezone

from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.notifier import LoggingNotifier
from lifeledger.application.scheduler import BudgetScheduler
from lifeledger.config import get_settings
from lifeledger.domain.budget import evaluate
from lifeledger.infrastructure.db.session import create_db_engine, create_session_factory

logging.basicConfig(level=logging.INFO)

settings = get_settings()
engine = create_db_engine(settings)
session_factory = create_session_factory(engine)

try:
    # log only: never message the real chat from a diagnostics run
    scheduler = BudgetScheduler(session_factory, LoggingNotifier(), settings)

    print("Recompute...")
    print(f"✓ Пересчитано бюджетов: {scheduler.run_recompute()}")

    print("Alert pass...")
    result = scheduler.run_alert_pass()
    print(f"✓ {result}")

    db = session_factory()
    try:
        now = datetime.now(timezone.utc)
        for b in BudgetStore(db).list_active():
            print(f"  - {b.name} [{b.period.value}] {b.spent}/{b.amount} {b.currency}: {evaluate(b, now).value}")
    finally:
        db.close()

except Exception as e:
    print(f"✗ ОШИБКА: {e}")
    traceback.print_exc()

finally:
    engine.dispose()
