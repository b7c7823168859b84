import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from services import CoverageService, local_today


logger = logging.getLogger(__name__)


def run_coverage_sweep(session: Session, today: Optional[date] = None) -> int:
    """Log every active account whose coverage has gaps; return how many."""
    today = today or local_today()
    reports = CoverageService(session).gaps_by_account(today)
    for account_id, report in reports.items():
        latest = report.gaps[-1]
        logger.warning(
            f"coverage_gap: account_id={account_id} name={report.entity.name!r} "
            f"gaps={len(report.gaps)} threshold={report.threshold} "
            f"latest_gap={latest.start.isoformat()}..{latest.end.isoformat()} "
            f"latest_gap_days={latest.days}"
        )
    return len(reports)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.sweep_hour = settings.coverage_sweep_hour
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"coverage_sweep: source={source}")
        try:
            with session_scope() as session:
                count = run_coverage_sweep(session)
        except Exception:
            logger.exception(f"coverage_sweep: source={source} failed")
            return
        logger.info(f"coverage_sweep: source={source} accounts_with_gaps={count}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=self.sweep_hour, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily"],
            id="coverage_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with daily coverage sweep at {self.sweep_hour:02d}:00")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
