import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from recurrence import ExecutionResult
from services import RecurringSeriesService

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Posts due recurring series at startup, once a day, and on a short interval.

    Execution is idempotent per occurrence, so overlapping triggers only
    post what is still pending.
    """

    def __init__(self) -> None:
        settings = get_settings()
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_recurring(self, source: str = "manual") -> ExecutionResult:
        with session_scope() as session:
            result = RecurringSeriesService(session).execute_due()
        logger.info(
            f"recurring_job: source={source} processed={result.total_processed} "
            f"executed={result.successful} failed={result.failed_count} "
            f"amount_cents={result.total_amount}"
        )
        for failure in result.failed:
            logger.warning(
                f"recurring_job_failure: source={source} series={failure.series_id} "
                f"error={failure.error}"
            )
        return result

    def start(self) -> None:
        self.run_recurring("startup")

        hour, minute = self.settings.recurring_run_at
        self.scheduler.add_job(
            self.run_recurring,
            CronTrigger(hour=hour, minute=minute),
            args=["daily"],
            id="recurring_series_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        interval = self.settings.recurring_interval_minutes
        if interval > 0:
            self.scheduler.add_job(
                self.run_recurring,
                IntervalTrigger(minutes=interval),
                args=["interval"],
                id="recurring_series_interval",
                replace_existing=True,
                misfire_grace_time=300,
            )

        self.scheduler.start()
        logger.info(
            f"scheduler_started: daily_at={hour:02d}:{minute:02d} "
            f"interval_minutes={interval} timezone={self.settings.timezone}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
