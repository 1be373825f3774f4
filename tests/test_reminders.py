from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from medibook.core.clock import utcnow
from medibook.core.security import UserRole
from medibook.jobs.reminder_scheduler import ReminderScheduler
from medibook.models.appointment import AppointmentStatus, ReminderDispatch
from medibook.models.notification import Notification, NotificationPriority, NotificationType
from medibook.services.notification_service import LoggingChannel, NotificationDispatcher
from medibook.services.reminder_service import ReminderService, describe_lead_time

from .conftest import auth_headers

NOW = datetime(2024, 6, 1, 9, 0)
DAY = 24 * 60
HOUR = 60


class FlakyChannel:
    """Fails for the listed appointment ids, accepts everything else."""

    name = "flaky"

    def __init__(self, failing_ids):
        self.failing_ids = set(failing_ids)

    async def deliver(self, notification):
        if notification.data.get("appointmentId") in self.failing_ids:
            raise RuntimeError("gateway timeout")


def reminder_service(session_factory, *channels) -> ReminderService:
    return ReminderService(
        session_factory,
        NotificationDispatcher(channels or [LoggingChannel()]),
        lead_times_minutes=[DAY, HOUR],
        window_minutes=30,
        retention_days=30,
    )


async def reminders_for(session_factory, patient_id: int) -> list:
    async with session_factory() as session:
        result = await session.execute(
            select(Notification).where(
                Notification.user_id == patient_id,
                Notification.type == NotificationType.APPOINTMENT_REMINDER,
            )
        )
        return list(result.scalars().all())


class TestReminderScan:

    async def test_second_scan_sends_nothing(
        self, session_factory, doctor, patient, appointment_factory
    ):
        await appointment_factory(
            patient, doctor, NOW + timedelta(hours=24), status=AppointmentStatus.CONFIRMED
        )
        service = reminder_service(session_factory)

        first = await service.run_scan(NOW)
        second = await service.run_scan(NOW)

        assert first.sent == {DAY: 1, HOUR: 0}
        assert second.total_sent == 0
        assert len(await reminders_for(session_factory, patient.id)) == 1

    async def test_window_match_is_not_repeated_an_hour_later(
        self, session_factory, doctor, patient, appointment_factory
    ):
        appointment = await appointment_factory(
            patient, doctor, NOW + timedelta(hours=24, minutes=1), status=AppointmentStatus.CONFIRMED
        )
        service = reminder_service(session_factory)

        result = await service.run_scan(NOW)
        assert result.sent[DAY] == 1

        async with session_factory() as session:
            marker = await session.scalar(
                select(ReminderDispatch).where(ReminderDispatch.appointment_id == appointment.id)
            )
            assert marker.lead_time_minutes == DAY
            assert marker.channel_summary == "log"

        later = await service.run_scan(NOW + timedelta(hours=1))
        assert later.total_sent == 0
        assert len(await reminders_for(session_factory, patient.id)) == 1

    async def test_each_lead_time_is_sent_once(
        self, session_factory, doctor, patient, appointment_factory
    ):
        start = NOW + timedelta(hours=24)
        await appointment_factory(patient, doctor, start, status=AppointmentStatus.CONFIRMED)
        service = reminder_service(session_factory)

        await service.run_scan(NOW)
        result = await service.run_scan(start - timedelta(hours=1))
        assert result.sent == {DAY: 0, HOUR: 1}

        reminders = await reminders_for(session_factory, patient.id)
        assert sorted(r.data["leadTimeMinutes"] for r in reminders) == [HOUR, DAY]
        assert {r.priority for r in reminders} == {
            NotificationPriority.MEDIUM, NotificationPriority.HIGH
        }

    async def test_only_confirmed_appointments_inside_window(
        self, session_factory, doctor, patient, user_factory, appointment_factory
    ):
        other = await user_factory(UserRole.PATIENT)
        await appointment_factory(patient, doctor, NOW + timedelta(hours=24))
        await appointment_factory(
            other, doctor, NOW + timedelta(hours=24, minutes=40), status=AppointmentStatus.CONFIRMED
        )
        await appointment_factory(
            other, doctor, NOW + timedelta(hours=26), status=AppointmentStatus.CANCELLED
        )

        result = await reminder_service(session_factory).run_scan(NOW)
        assert result.total_sent == 0

    async def test_failed_delivery_does_not_stop_the_scan(
        self, session_factory, doctor, patient, user_factory, appointment_factory
    ):
        other = await user_factory(UserRole.PATIENT)
        other_doctor = await user_factory(UserRole.DOCTOR)
        failing = await appointment_factory(
            patient, doctor, NOW + timedelta(hours=24), status=AppointmentStatus.CONFIRMED
        )
        await appointment_factory(
            other, other_doctor, NOW + timedelta(hours=24, minutes=10),
            status=AppointmentStatus.CONFIRMED,
        )

        result = await reminder_service(session_factory, FlakyChannel({failing.id})).run_scan(NOW)
        assert result.failed == 1
        assert result.sent[DAY] == 1

        # Neither the marker nor the notification of the failed reminder survive
        assert await reminders_for(session_factory, patient.id) == []
        async with session_factory() as session:
            markers = await session.scalar(
                select(func.count(ReminderDispatch.id)).where(
                    ReminderDispatch.appointment_id == failing.id
                )
            )
            assert markers == 0

        # A later scan retries it
        retry = await reminder_service(session_factory).run_scan(NOW)
        assert retry.sent[DAY] == 1
        assert len(await reminders_for(session_factory, patient.id)) == 1

    async def test_dispatch_one_skips_recorded_reminder(
        self, session_factory, doctor, patient, appointment_factory
    ):
        appointment = await appointment_factory(
            patient, doctor, NOW + timedelta(hours=24), status=AppointmentStatus.CONFIRMED
        )
        service = reminder_service(session_factory)

        assert await service.dispatch_one(appointment.id, DAY) is True
        assert await service.dispatch_one(appointment.id, DAY) is False

    async def test_dispatch_one_skips_unconfirmed(
        self, session_factory, doctor, patient, appointment_factory
    ):
        appointment = await appointment_factory(patient, doctor, NOW + timedelta(hours=24))
        assert await reminder_service(session_factory).dispatch_one(appointment.id, DAY) is False


class TestNotificationPurge:

    async def test_purges_only_expired(self, session_factory, patient):
        async with session_factory() as session:
            for age in (31, 29, 1):
                session.add(Notification(
                    user_id=patient.id,
                    type=NotificationType.APPOINTMENT_REMINDER,
                    title="Reminder",
                    message="...",
                    data={},
                    priority=NotificationPriority.MEDIUM,
                    created_at=NOW - timedelta(days=age),
                ))
            await session.commit()

        purged = await reminder_service(session_factory).purge_old_notifications(NOW)
        assert purged == 1

        async with session_factory() as session:
            remaining = await session.scalar(select(func.count(Notification.id)))
            assert remaining == 2


class TestReminderScheduler:

    async def test_jobs_registered(self, session_factory):
        scheduler = ReminderScheduler(reminder_service(session_factory))
        scheduler.start()
        try:
            assert scheduler.is_running
            jobs = {job["id"]: job for job in scheduler.get_jobs_info()}
            assert set(jobs) == {"appointment_reminders", "notification_purge"}
            assert jobs["appointment_reminders"]["nextRun"] is not None
        finally:
            scheduler.stop()
        assert not scheduler.is_running

    async def test_disabled_scheduler_does_not_start(self, session_factory):
        scheduler = ReminderScheduler(reminder_service(session_factory), enabled=False)
        scheduler.start()
        assert not scheduler.is_running
        assert scheduler.get_jobs_info() == []

    async def test_job_errors_are_contained(self, session_factory, monkeypatch):
        service = reminder_service(session_factory)

        async def boom(now=None):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(service, "run_scan", boom)
        # Must not raise out of the job
        await ReminderScheduler(service)._run_reminder_scan()


class TestManualRun:

    async def test_admin_can_trigger_scan(self, client, admin, doctor, patient, appointment_factory):
        await appointment_factory(
            patient, doctor, utcnow() + timedelta(hours=24), status=AppointmentStatus.CONFIRMED
        )

        response = await client.post("/api/v1/admin/reminders/run", headers=auth_headers(admin))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["sent"] == {"1440": 1, "60": 0}
        assert data["failed"] == 0

    async def test_requires_admin(self, client, patient):
        response = await client.post("/api/v1/admin/reminders/run", headers=auth_headers(patient))
        assert response.status_code == 403


def test_describe_lead_time():
    assert describe_lead_time(DAY) == "24 hours"
    assert describe_lead_time(HOUR) == "1 hour"
    assert describe_lead_time(45) == "45 minutes"
