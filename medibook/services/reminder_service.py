"""Appointment reminders at fixed lead times before the start.

Each run looks, for every lead time L, at confirmed appointments starting
within ``now + L ± window`` that have no ``reminder_dispatches`` row for L.
Every appointment is handled in its own transaction: the sent-marker is
inserted first (the unique key makes a parallel scan skip it), the reminder
is stored and delivered, then the transaction commits. A failed delivery
rolls the marker back so the next run retries while the appointment is
still in the window. If the commit itself fails after delivery, the reminder
may go out once more on the next run; that case is logged.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.clock import utcnow
from ..core.config import settings
from ..models.appointment import Appointment, AppointmentStatus, ReminderDispatch
from ..models.notification import NotificationPriority, NotificationType
from ..models.user import User
from .notification_service import NotificationDispatcher, NotificationService

logger = logging.getLogger(__name__)


def describe_lead_time(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"


@dataclass
class ReminderScanResult:
    sent: Dict[int, int] = field(default_factory=dict)
    skipped: int = 0
    failed: int = 0

    @property
    def total_sent(self) -> int:
        return sum(self.sent.values())


class ReminderService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: NotificationDispatcher,
        lead_times_minutes: Optional[Sequence[int]] = None,
        window_minutes: Optional[int] = None,
        retention_days: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.lead_times_minutes = list(
            lead_times_minutes
            if lead_times_minutes is not None
            else [hours * 60 for hours in settings.REMINDER_LEAD_TIMES_HOURS]
        )
        self.window = timedelta(
            minutes=window_minutes if window_minutes is not None else settings.REMINDER_WINDOW_MINUTES
        )
        self.retention_days = (
            retention_days if retention_days is not None else settings.NOTIFICATION_RETENTION_DAYS
        )

    async def run_scan(self, now: Optional[datetime] = None) -> ReminderScanResult:
        """Send every reminder that is due at ``now``."""
        now = now or utcnow()
        result = ReminderScanResult()

        for lead in self.lead_times_minutes:
            result.sent[lead] = 0
            try:
                due = await self.find_due(now, lead)
            except SQLAlchemyError as e:
                logger.error("Reminder query failed for lead time %s min: %s", lead, e, exc_info=True)
                result.failed += 1
                continue

            for appointment_id in due:
                try:
                    if await self.dispatch_one(appointment_id, lead):
                        result.sent[lead] += 1
                    else:
                        result.skipped += 1
                except Exception as e:
                    # One failure must not stop the rest of the scan
                    result.failed += 1
                    logger.error(
                        "Reminder (%s min) for appointment %s failed: %s",
                        lead, appointment_id, e, exc_info=True
                    )

        logger.info(
            "Reminder scan at %s: sent=%s skipped=%d failed=%d",
            now.isoformat(timespec="minutes"), result.sent, result.skipped, result.failed
        )
        return result

    async def find_due(self, now: datetime, lead_minutes: int) -> List[int]:
        """Ids of confirmed appointments in the window that still need this reminder."""
        target = now + timedelta(minutes=lead_minutes)
        already_sent = (
            select(ReminderDispatch.id)
            .where(
                and_(
                    ReminderDispatch.appointment_id == Appointment.id,
                    ReminderDispatch.lead_time_minutes == lead_minutes,
                )
            )
            .exists()
        )
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Appointment.id)
                .where(
                    Appointment.status == AppointmentStatus.CONFIRMED,
                    Appointment.appointment_date >= target - self.window,
                    Appointment.appointment_date <= target + self.window,
                    ~already_sent,
                )
                .order_by(Appointment.appointment_date)
            )
            return list(rows.scalars().all())

    async def dispatch_one(self, appointment_id: int, lead_minutes: int) -> bool:
        """Record and deliver one reminder. Returns False if there was nothing to send."""
        async with self.session_factory() as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None or appointment.status != AppointmentStatus.CONFIRMED:
                return False

            marker = ReminderDispatch(appointment_id=appointment.id, lead_time_minutes=lead_minutes)
            session.add(marker)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Reminder (%s min) for appointment %s already recorded", lead_minutes, appointment_id
                )
                return False

            doctor = await session.get(User, appointment.doctor_id)
            doctor_name = f"Dr. {doctor.full_name}" if doctor else "your doctor"
            start = appointment.appointment_date
            notification = await self.notifier.notify(
                session,
                user_id=appointment.patient_id,
                notification_type=NotificationType.APPOINTMENT_REMINDER,
                title="Appointment reminder",
                message=(
                    f"Reminder: your appointment with {doctor_name} is on "
                    f"{start:%Y-%m-%d} at {start:%H:%M} (in {describe_lead_time(lead_minutes)})"
                ),
                data={"appointmentId": appointment.id, "leadTimeMinutes": lead_minutes},
                priority=NotificationPriority.HIGH if lead_minutes <= 60 else NotificationPriority.MEDIUM,
            )

            # Raises on failure; leaving the block without commit rolls back the marker
            delivered = await self.notifier.deliver(notification, strict=True)
            marker.channel_summary = ",".join(delivered)

            try:
                await session.commit()
            except SQLAlchemyError:
                logger.error(
                    "Reminder (%s min) for appointment %s was delivered but the sent-marker "
                    "was not recorded; it may be sent again",
                    lead_minutes, appointment_id, exc_info=True
                )
                raise

            logger.info("Reminder (%s min) sent for appointment %s", lead_minutes, appointment_id)
            return True

    async def purge_old_notifications(self, now: Optional[datetime] = None) -> int:
        async with self.session_factory() as session:
            return await NotificationService(session).purge_older_than(self.retention_days, now=now)
