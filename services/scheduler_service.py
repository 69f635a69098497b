"""
Background scheduler for the reminder sweep
Uses APScheduler for reliable background job execution
"""
import logging

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.config import Settings
from services.error_monitoring import capture_exception
from services.reminder_service import ReminderScheduler

logger = logging.getLogger(__name__)

# A slow sweep must never run alongside the next tick
JOB_DEFAULTS = {
    'coalesce': True,
    'max_instances': 1,
    'misfire_grace_time': 300  # 5 minutes
}


class ReminderJobRunner:
    """Runs ReminderScheduler.sweep on an interval plus a daily safety-net run."""

    def __init__(self, reminders: ReminderScheduler, settings: Settings):
        self._reminders = reminders
        self._settings = settings
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            job_defaults=JOB_DEFAULTS,
            timezone=settings.SCHEDULER_TIMEZONE,
        )

    def start(self):
        """Start the scheduler"""
        try:
            if not self.scheduler.running:
                self.add_scheduled_jobs()
                self.scheduler.start()
                logger.info("✅ Background scheduler started")
            else:
                logger.info("ℹ️ Scheduler already running")
        except Exception as e:
            logger.error(f"❌ Failed to start scheduler: {e}")
            capture_exception(e)

    def shutdown(self):
        """Shutdown the scheduler gracefully"""
        try:
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
                logger.info("✅ Background scheduler stopped")
        except Exception as e:
            logger.error(f"❌ Error shutting down scheduler: {e}")
            capture_exception(e)

    def add_scheduled_jobs(self):
        self.scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(minutes=self._settings.REMINDER_SWEEP_INTERVAL_MINUTES),
            id='reminder_sweep',
            name='Send due appointment reminders',
            replace_existing=True
        )

        self.scheduler.add_job(
            self.run_sweep,
            trigger=CronTrigger(hour=self._settings.REMINDER_DAILY_SWEEP_HOUR, minute=0),
            id='daily_reminder_sweep',
            name='Daily reminder safety-net sweep',
            replace_existing=True
        )

        logger.info(
            f"✅ Reminder jobs added: every {self._settings.REMINDER_SWEEP_INTERVAL_MINUTES} min "
            f"and daily at {self._settings.REMINDER_DAILY_SWEEP_HOUR:02d}:00"
        )

    async def run_sweep(self):
        """Job entry point; a failed sweep is logged and the next tick tries again"""
        try:
            summary = await self._reminders.sweep()
            if summary.get("due"):
                logger.info(f"Reminder sweep summary: {summary}")
        except Exception as e:
            logger.error(f"❌ Error in reminder sweep: {e}")
            capture_exception(e, {"job": "reminder_sweep"})
