"""
Background scheduler: runs the periodic budget jobs inside the app process.

Jobs:
  - Budget alerts (every BUDGET_CHECK_INTERVAL_MINUTES, default hourly)
  - Budget recompute, self-healing drift from missed incremental updates
    (every BUDGET_RECOMPUTE_INTERVAL_MINUTES)
  - Budget housekeeping (daily, BUDGET_HOUSEKEEPING_HOUR UTC)

Each job opens its own session and never overlaps with itself. stop()
waits for a running job to finish; a tick is never cut in half.
"""
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session, sessionmaker

from lifeledger.application.budget_alerts import AlertRunResult, BudgetAlertEngine
from lifeledger.application.budget_store import BudgetStore
from lifeledger.application.ledger import SqlLedgerReader
from lifeledger.application.notifier import Notifier
from lifeledger.application.rollover import PeriodRolloverEngine
from lifeledger.application.spend_sync import SpendSynchronizer
from lifeledger.config import Settings

logger = logging.getLogger(__name__)


def build_alert_engine(db: Session, notifier: Notifier, settings: Settings) -> BudgetAlertEngine:
    """Wire one reconciliation pass over the given session."""
    tz = ZoneInfo(settings.TIMEZONE)
    store = BudgetStore(db)
    synchronizer = SpendSynchronizer(store, SqlLedgerReader(db))
    return BudgetAlertEngine(
        store=store,
        synchronizer=synchronizer,
        rollover=PeriodRolloverEngine(store, tz),
        notifier=notifier,
        tz=tz,
        expiring_soon_days=settings.BUDGET_EXPIRING_SOON_DAYS,
    )


class BudgetScheduler:

    def __init__(self, session_factory: sessionmaker, notifier: Notifier, settings: Settings):
        self.session_factory = session_factory
        self.notifier = notifier
        self.settings = settings
        self.scheduler = BackgroundScheduler(daemon=True, timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def run_alert_pass(self, now: datetime | None = None) -> AlertRunResult | None:
        db = self.session_factory()
        try:
            return build_alert_engine(db, self.notifier, self.settings).run(now)
        except Exception:
            logger.exception("Budget alert job failed")
            return None
        finally:
            db.close()

    def run_recompute(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            store = BudgetStore(db)
            return SpendSynchronizer(store, SqlLedgerReader(db)).recompute_all(now)
        except Exception:
            logger.exception("Budget recompute job failed")
            return 0
        finally:
            db.close()

    def run_housekeeping(self, now: datetime | None = None) -> tuple[int, int]:
        """Archive expired one-off budgets, then purge those past the retention window."""
        now = now or datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            store = BudgetStore(db)
            archived = store.archive_expired(now)
            purged = store.purge_expired(now - timedelta(days=self.settings.BUDGET_RETENTION_DAYS))
            logger.info("Budget housekeeping: archived=%d purged=%d", archived, purged)
            return archived, purged
        except Exception:
            logger.exception("Budget housekeeping job failed")
            return 0, 0
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, interval_minutes: int | None = None) -> None:
        """Start the background scheduler with all periodic budget jobs."""
        interval = interval_minutes or self.settings.BUDGET_CHECK_INTERVAL_MINUTES

        self.scheduler.add_job(
            self.run_alert_pass,
            "interval",
            minutes=interval,
            id="budget_alerts",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.run_recompute,
            "interval",
            minutes=self.settings.BUDGET_RECOMPUTE_INTERVAL_MINUTES,
            id="budget_recompute",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.run_housekeeping,
            CronTrigger(hour=self.settings.BUDGET_HOUSEKEEPING_HOUR, minute=0, timezone=timezone.utc),
            id="budget_housekeeping",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started: budget_alerts (every %d min), budget_recompute (every %d min), "
            "budget_housekeeping (%02d:00 UTC)",
            interval,
            self.settings.BUDGET_RECOMPUTE_INTERVAL_MINUTES,
            self.settings.BUDGET_HOUSEKEEPING_HOUR,
        )

    def stop(self) -> None:
        """Stop between ticks: a job already running completes first."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
