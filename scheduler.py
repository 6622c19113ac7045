import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import sessionmaker

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from periods import MonthPeriod
from recurrence import local_today
from services import BalancePropagator


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def refresh_rolling_horizon(
    today: Optional[date] = None, session_factory: Optional[sessionmaker] = None
) -> int:
    """Re-propagate every user from the current month so the horizon keeps up."""
    anchor = MonthPeriod.of(today or local_today())
    with session_scope(session_factory) as session:
        return BalancePropagator(session).refresh_users(anchor)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        count = refresh_rolling_horizon()
        logger.info(f"scheduler_run: source={source} users_refreshed={count}")

    def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled by configuration")
            return

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="balance_refresh_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 balance refresh")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
