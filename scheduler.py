import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from alerts import process_alert_notifications
from config import get_settings
from database import session_scope
from forecast import ForecastEngine
from models import AlertEvent
from recurrence import local_today


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def log_alert(event: AlertEvent) -> None:
    logger.info(
        f"alert_notify: id={event.id} scenario={event.scenario_id} "
        f"fire_at={event.fire_at.isoformat()} message={event.message}"
    )


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            refreshed = ForecastEngine(session).refresh_stale()
            notified = process_alert_notifications(session, local_today(), log_alert)
            logger.info(
                f"scheduler_run: source={source} scenarios_refreshed={len(refreshed)} "
                f"alerts_notified={notified}"
            )

    def start(self) -> None:
        self._run_job("startup")

        hour = self.settings.scheduler_hour
        minute = self.settings.scheduler_minute
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id="vendorspend_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="vendorspend_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily {hour:02d}:{minute:02d} and hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
