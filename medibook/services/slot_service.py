"""Slot availability and booking-conflict checks.

A doctor's bookable slots for a day come from their Calendar for that date,
or from the default template when they have not published one. A slot is
unavailable when its start falls inside an active (pending or confirmed)
appointment.

Overlap checks are advisory on their own; booking safety comes from the
``appointment_slot_claims`` rows written by :meth:`SlotService.claim_slots`
inside the booking transaction.
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ConflictError, ValidationError
from ..models.appointment import ACTIVE_STATUSES, Appointment, AppointmentSlotClaim
from ..models.calendar import Calendar
from ..models.user import User
from .doctor_service import DoctorService

logger = logging.getLogger(__name__)

SLOT_FORMAT = "%H:%M"


def generate_default_slots() -> List[str]:
    """08:00 to 17:30 in 30-minute steps, skipping the 12:00-13:00 lunch break."""
    slots = []
    for hour in range(8, 18):
        if hour == 12:
            continue
        slots.append(f"{hour:02d}:00")
        slots.append(f"{hour:02d}:30")
    return slots


DEFAULT_SLOTS = tuple(generate_default_slots())


def parse_slot(value: str) -> time:
    """Parse an "HH:MM" slot string; raises ValueError when malformed."""
    if not isinstance(value, str) or len(value) != 5:
        raise ValueError(f"Invalid slot '{value}'. Use HH:MM")
    return datetime.strptime(value, SLOT_FORMAT).time()


def format_slot(value: datetime) -> str:
    return value.strftime(SLOT_FORMAT)


def normalize_slots(slots: List[str]) -> List[str]:
    """Validate, de-duplicate and order slot strings."""
    try:
        parsed = {parse_slot(slot) for slot in slots}
    except ValueError as e:
        raise ValidationError(str(e))
    return [t.strftime(SLOT_FORMAT) for t in sorted(parsed)]


def day_bounds(day: date):
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def claim_blocks(start: datetime, duration: int, granularity: int) -> List[datetime]:
    """Block start times covering [start, start + duration)."""
    step = timedelta(minutes=granularity)
    return [start + step * i for i in range(duration // granularity)]


class SlotService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.granularity = settings.BOOKING_GRANULARITY_MINUTES

    async def get_doctor(self, doctor_id: int) -> User:
        """Return the active doctor with this id or raise NotFoundError."""
        return await DoctorService(self.db).get_doctor(doctor_id)

    async def active_appointments_between(
        self, doctor_id: int, start: datetime, end: datetime
    ) -> List[Appointment]:
        """Active appointments of the doctor intersecting [start, end)."""
        result = await self.db.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.appointment_date < end,
                Appointment.end_time > start,
            )
            .order_by(Appointment.appointment_date)
        )
        return list(result.scalars().all())

    async def get_slot_template(self, doctor_id: int, day: date) -> List[str]:
        result = await self.db.execute(
            select(Calendar).where(Calendar.doctor_id == doctor_id, Calendar.date == day)
        )
        calendar = result.scalar_one_or_none()
        if calendar is None:
            return list(DEFAULT_SLOTS)
        return list(calendar.slots or [])

    async def get_slot_overview(self, doctor_id: int, day: date) -> Dict[str, List[str]]:
        """Free template slots plus the start times of active bookings that day."""
        await self.get_doctor(doctor_id)

        template = await self.get_slot_template(doctor_id, day)
        day_start, day_end = day_bounds(day)
        booked = await self.active_appointments_between(doctor_id, day_start, day_end)

        available = []
        for slot in sorted(template):
            slot_start = datetime.combine(day, parse_slot(slot))
            covered = any(
                appt.appointment_date <= slot_start < appt.end_time for appt in booked
            )
            if not covered:
                available.append(slot)

        booked_slots = sorted({
            format_slot(appt.appointment_date)
            for appt in booked
            if day_start <= appt.appointment_date < day_end
        })
        return {"availableSlots": available, "bookedSlots": booked_slots}

    async def list_available_slots(self, doctor_id: int, day: date) -> List[str]:
        overview = await self.get_slot_overview(doctor_id, day)
        return overview["availableSlots"]

    async def find_conflict(
        self, doctor_id: int, start: datetime, duration: int
    ) -> Optional[Appointment]:
        end = start + timedelta(minutes=duration)
        overlapping = await self.active_appointments_between(doctor_id, start, end)
        return overlapping[0] if overlapping else None

    async def validate_no_conflict(self, doctor_id: int, start: datetime, duration: int) -> None:
        """Raise ConflictError if [start, start + duration) overlaps an active booking.

        Touching intervals (one ends exactly when the other starts) do not
        conflict.
        """
        existing = await self.find_conflict(doctor_id, start, duration)
        if existing:
            logger.info(
                "Booking conflict for doctor %s at %s with appointment %s",
                doctor_id, start, existing.id
            )
            raise ConflictError("The doctor is not available at this time")

    def validate_booking_window(self, start: datetime, duration: int) -> None:
        """Check that start and duration line up with the booking granularity."""
        g = self.granularity
        if duration < g or duration > settings.MAX_APPOINTMENT_DURATION:
            raise ValidationError(
                f"Duration must be between {g} and {settings.MAX_APPOINTMENT_DURATION} minutes"
            )
        if duration % g:
            raise ValidationError(f"Duration must be a multiple of {g} minutes")
        if start.second or start.microsecond or start.minute % g:
            raise ValidationError(f"Appointment time must fall on a {g}-minute boundary")

    async def claim_slots(self, appointment: Appointment) -> None:
        """Insert the claim rows for an appointment within the current transaction.

        A unique violation means a concurrent booking already holds one of
        the blocks; the transaction is rolled back and ConflictError raised.
        """
        for block in claim_blocks(appointment.appointment_date, appointment.duration, self.granularity):
            self.db.add(AppointmentSlotClaim(
                appointment_id=appointment.id,
                doctor_id=appointment.doctor_id,
                slot_start=block,
            ))
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                "Concurrent booking detected for doctor %s at %s",
                appointment.doctor_id, appointment.appointment_date
            )
            raise ConflictError("The doctor is not available at this time")

    async def release_slots(self, appointment_id: int) -> None:
        await self.db.execute(
            delete(AppointmentSlotClaim).where(AppointmentSlotClaim.appointment_id == appointment_id)
        )
