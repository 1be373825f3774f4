"""Background scheduling for appointment reminders.

APScheduler-based async scheduler running inside the API process:
- every hour on the hour: reminder scan (24h and 1h lead times)
- daily at 03:00: purge of notifications past the retention window
"""
from typing import Any, Dict, List, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..services.reminder_service import ReminderService

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Owns the APScheduler instance that drives :class:`ReminderService`."""

    def __init__(
        self,
        reminder_service: ReminderService,
        timezone_name: str = "UTC",
        enabled: bool = True,
    ):
        self.reminder_service = reminder_service
        self.timezone_name = timezone_name
        self.enabled = enabled

        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start the scheduler. Must be called from within a running event loop."""
        if not self.enabled:
            logger.info("ReminderScheduler is disabled, skipping start")
            return

        if self.is_running:
            logger.warning("ReminderScheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.timezone_name)

        scheduler.add_job(
            self._run_reminder_scan,
            CronTrigger(minute=0, timezone=self.timezone_name),
            id="appointment_reminders",
            name="Appointment Reminders",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        scheduler.add_job(
            self._run_notification_purge,
            CronTrigger(hour=3, minute=0, timezone=self.timezone_name),
            id="notification_purge",
            name="Notification Retention Purge",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info("ReminderScheduler started (timezone=%s, scan=hourly, purge=03:00)", self.timezone_name)

    def stop(self) -> None:
        """Stop the scheduler; a scan in progress is abandoned between appointments."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("ReminderScheduler stopped")
        self._scheduler = None

    async def _run_reminder_scan(self) -> None:
        logger.info("Starting reminder scan job")
        try:
            await self.reminder_service.run_scan()
        except Exception as e:
            logger.error("Reminder scan job failed: %s", e, exc_info=True)

    async def _run_notification_purge(self) -> None:
        logger.info("Starting notification purge job")
        try:
            await self.reminder_service.purge_old_notifications()
        except Exception as e:
            logger.error("Notification purge job failed: %s", e, exc_info=True)

    def get_jobs_info(self) -> List[Dict[str, Any]]:
        """Information about scheduled jobs."""
        if not self._scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "nextRun": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]
