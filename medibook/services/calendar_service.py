from typing import List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.exceptions import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError
from ..core.security import UserRole
from ..models.calendar import Calendar
from ..models.user import User
from ..schemas.calendar import CalendarCreate
from .audit_service import AuditService
from .slot_service import normalize_slots

logger = logging.getLogger(__name__)

class CalendarService:
    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    async def create_calendar(self, doctor: User, data: CalendarCreate) -> Calendar:
        """Publish a doctor's slots for one date (one calendar per doctor and date)."""
        slots = normalize_slots(data.slots)

        existing = await self.db.execute(
            select(Calendar.id).where(Calendar.doctor_id == doctor.id, Calendar.date == data.date)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("A calendar already exists for this date")

        calendar = Calendar(
            doctor_id=doctor.id,
            date=data.date,
            slots=slots,
            confirmed=False,
            versions=[],
        )
        self.db.add(calendar)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("A calendar already exists for this date")

        self.audit.record(
            "CALENDAR_CREATED",
            actor=doctor,
            resource="calendar",
            resource_id=calendar.id,
            details={"date": data.date.isoformat(), "slots": slots},
        )
        await self.db.commit()
        logger.info("Calendar %s created for doctor %s on %s", calendar.id, doctor.id, data.date)
        return calendar

    async def list_calendars(self, actor: User, doctor_id: Optional[int] = None) -> List[Calendar]:
        query = select(Calendar)
        if actor.role == UserRole.ADMIN:
            if doctor_id is not None:
                query = query.where(Calendar.doctor_id == doctor_id)
            query = query.order_by(Calendar.date.desc())
        else:
            query = query.where(Calendar.doctor_id == actor.id).order_by(Calendar.date.asc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_calendar(self, actor: User, calendar_id: int) -> Calendar:
        calendar = await self.db.get(Calendar, calendar_id)
        if not calendar:
            raise NotFoundError("Calendar not found")
        if calendar.doctor_id != actor.id and actor.role != UserRole.ADMIN:
            raise ForbiddenError("Not allowed to access this calendar")
        return calendar

    async def update_slots(self, actor: User, calendar_id: int, slots: List[str]) -> Calendar:
        """Replace the slot set of an unconfirmed calendar, keeping the old set in versions."""
        calendar = await self.get_calendar(actor, calendar_id)
        if calendar.confirmed:
            raise InvalidTransitionError("Calendar is confirmed; slots can no longer be edited")

        new_slots = normalize_slots(slots)
        previous = list(calendar.slots or [])
        # JSON columns are replaced, not mutated, so the change is tracked
        calendar.versions = list(calendar.versions or []) + [
            {"slots": previous, "replacedAt": utcnow().isoformat()}
        ]
        calendar.slots = new_slots

        self.audit.record(
            "CALENDAR_UPDATED",
            actor=actor,
            resource="calendar",
            resource_id=calendar.id,
            details={"previousSlots": previous, "slots": new_slots},
        )
        await self.db.commit()
        await self.db.refresh(calendar)
        return calendar

    async def confirm_calendar(self, actor: User, calendar_id: int) -> Calendar:
        calendar = await self.get_calendar(actor, calendar_id)
        if calendar.confirmed:
            return calendar

        calendar.confirmed = True
        self.audit.record("CALENDAR_CONFIRMED", actor=actor, resource="calendar", resource_id=calendar.id)
        await self.db.commit()
        await self.db.refresh(calendar)
        logger.info("Calendar %s confirmed", calendar.id)
        return calendar

    async def delete_calendar(self, actor: User, calendar_id: int) -> None:
        calendar = await self.get_calendar(actor, calendar_id)
        self.audit.record(
            "CALENDAR_DELETED",
            actor=actor,
            resource="calendar",
            resource_id=calendar.id,
            details={"date": calendar.date.isoformat()},
        )
        await self.db.delete(calendar)
        await self.db.commit()
