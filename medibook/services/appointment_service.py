"""Appointment booking and status lifecycle.

Status machine::

    pending ──> confirmed ──> completed
       │            │
       ├────────────┴──> cancelled
       └────────────┴──> no_show

``completed``, ``cancelled`` and ``no_show`` are terminal. Status writes are
compare-and-set updates on the current status, so two actors racing on the
same appointment cannot both succeed.
"""
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple
import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import (
    ForbiddenError, InvalidTransitionError, NotFoundError,
)
from ..core.security import UserRole
from ..models.appointment import (
    ACTIVE_STATUSES, Appointment, AppointmentStatus, AppointmentType,
)
from ..models.notification import Notification, NotificationPriority, NotificationType
from ..models.user import User
from ..schemas.appointment import AppointmentCreate
from .audit_service import AuditService
from .notification_service import NotificationDispatcher
from .slot_service import SlotService

logger = logging.getLogger(__name__)


class Capacity(str, Enum):
    """The part an actor plays on a particular appointment."""
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    PAYMENT = "payment"


@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[AppointmentStatus]
    actors: FrozenSet[Capacity]
    audit_action: str
    notification_type: NotificationType
    verb: str


TRANSITIONS = {
    AppointmentStatus.CONFIRMED: Transition(
        sources=frozenset({AppointmentStatus.PENDING}),
        actors=frozenset({Capacity.DOCTOR, Capacity.ADMIN, Capacity.PAYMENT}),
        audit_action="APPOINTMENT_CONFIRMED",
        notification_type=NotificationType.APPOINTMENT_CONFIRMED,
        verb="confirmed",
    ),
    AppointmentStatus.CANCELLED: Transition(
        sources=ACTIVE_STATUSES,
        actors=frozenset({Capacity.PATIENT, Capacity.DOCTOR, Capacity.ADMIN}),
        audit_action="APPOINTMENT_CANCELLED",
        notification_type=NotificationType.APPOINTMENT_CANCELLED,
        verb="cancelled",
    ),
    AppointmentStatus.COMPLETED: Transition(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        actors=frozenset({Capacity.DOCTOR}),
        audit_action="APPOINTMENT_COMPLETED",
        notification_type=NotificationType.APPOINTMENT_COMPLETED,
        verb="completed",
    ),
    AppointmentStatus.NO_SHOW: Transition(
        sources=ACTIVE_STATUSES,
        actors=frozenset({Capacity.DOCTOR, Capacity.ADMIN}),
        audit_action="APPOINTMENT_NO_SHOW",
        notification_type=NotificationType.APPOINTMENT_NO_SHOW,
        verb="marked as no-show",
    ),
}


def capacity_of(actor: User, appointment: Appointment) -> Capacity:
    """Resolve how ``actor`` relates to ``appointment``; raise ForbiddenError if unrelated."""
    if actor.id == appointment.doctor_id:
        return Capacity.DOCTOR
    if actor.id == appointment.patient_id:
        return Capacity.PATIENT
    if actor.role == UserRole.ADMIN:
        return Capacity.ADMIN
    raise ForbiddenError("Not allowed to modify this appointment")


class AppointmentService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationDispatcher,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.audit = audit or AuditService(db)
        self.slots = SlotService(db)

    # Booking

    async def create_appointment(self, patient: User, data: AppointmentCreate) -> Appointment:
        """Book a pending appointment for ``patient``.

        Raises NotFoundError for an unknown doctor, ValidationError for a
        malformed request and ConflictError when the doctor is already booked
        over any part of the requested interval.
        """
        duration = (
            data.duration if data.duration is not None else settings.DEFAULT_APPOINTMENT_DURATION
        )
        start = data.appointment_date

        self.slots.validate_booking_window(start, duration)
        doctor = await self.slots.get_doctor(data.doctor_id)

        await self.slots.validate_no_conflict(doctor.id, start, duration)

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=start,
            duration=duration,
            end_time=start + timedelta(minutes=duration),
            status=AppointmentStatus.PENDING,
            type=data.type or AppointmentType.IN_PERSON,
            reason=data.reason,
            notes=data.notes,
        )
        self.db.add(appointment)
        await self.db.flush()

        # Rolls back and raises ConflictError if a concurrent booking won
        await self.slots.claim_slots(appointment)

        notification = await self.notifier.notify(
            self.db,
            user_id=doctor.id,
            notification_type=NotificationType.NEW_APPOINTMENT,
            title="New appointment",
            message=(
                f"New appointment request from {patient.full_name} on "
                f"{start:%Y-%m-%d} at {start:%H:%M}"
            ),
            data={"appointmentId": appointment.id},
        )
        self.audit.record(
            "APPOINTMENT_CREATED",
            actor=patient,
            resource="appointment",
            resource_id=appointment.id,
            details={
                "doctorId": doctor.id,
                "appointmentDate": start.isoformat(),
                "duration": duration,
            },
        )
        await self.db.commit()
        await self.notifier.deliver(notification)

        logger.info(
            "Appointment %s created for patient %s with doctor %s at %s",
            appointment.id, patient.id, doctor.id, start
        )
        return appointment

    # Queries

    async def _get_or_404(self, appointment_id: int) -> Appointment:
        appointment = await self.db.get(Appointment, appointment_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def _visibility_conditions(self, actor: User) -> list:
        if actor.role == UserRole.PATIENT:
            return [Appointment.patient_id == actor.id]
        if actor.role == UserRole.DOCTOR:
            # Doctors may also be patients of other doctors
            return [(Appointment.doctor_id == actor.id) | (Appointment.patient_id == actor.id)]
        return []

    async def get_appointment(self, actor: User, appointment_id: int) -> Appointment:
        """Fetch an appointment the actor is allowed to see."""
        result = await self.db.execute(
            select(Appointment).where(
                Appointment.id == appointment_id,
                *self._visibility_conditions(actor),
            )
        )
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    async def list_appointments(
        self,
        actor: User,
        status: Optional[AppointmentStatus] = None,
        appointment_type: Optional[AppointmentType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Appointment], int]:
        conditions = self._visibility_conditions(actor)
        if status:
            conditions.append(Appointment.status == status)
        if appointment_type:
            conditions.append(Appointment.type == appointment_type)

        total = await self.db.scalar(select(func.count(Appointment.id)).where(*conditions))
        result = await self.db.execute(
            select(Appointment)
            .where(*conditions)
            .order_by(Appointment.appointment_date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    # Lifecycle

    async def change_status(
        self,
        actor: User,
        appointment_id: int,
        new_status: AppointmentStatus,
        cancellation_reason: Optional[str] = None,
    ) -> Appointment:
        """Apply a status transition on behalf of a user."""
        appointment = await self._get_or_404(appointment_id)
        capacity = capacity_of(actor, appointment)
        return await self._transition(appointment, new_status, capacity, actor, cancellation_reason)

    async def confirm_from_payment(self, appointment_id: int, payment_id: int) -> Appointment:
        """Confirm a pending appointment because its payment completed.

        Participates in the caller's open transaction and commits it.
        """
        appointment = await self._get_or_404(appointment_id)
        return await self._transition(
            appointment,
            AppointmentStatus.CONFIRMED,
            Capacity.PAYMENT,
            actor=None,
            extra_details={"paymentId": payment_id},
        )

    async def _transition(
        self,
        appointment: Appointment,
        new_status: AppointmentStatus,
        capacity: Capacity,
        actor: Optional[User],
        cancellation_reason: Optional[str] = None,
        extra_details: Optional[dict] = None,
    ) -> Appointment:
        old_status = AppointmentStatus(appointment.status)

        if old_status.is_terminal:
            raise InvalidTransitionError(
                f"Appointment is already {old_status.value}; no further changes are allowed"
            )
        transition = TRANSITIONS.get(new_status)
        if transition is None or old_status not in transition.sources:
            raise InvalidTransitionError(
                f"Cannot change appointment status from {old_status.value} to {new_status.value}"
            )
        if capacity not in transition.actors:
            raise ForbiddenError(
                f"A {capacity.value} cannot mark this appointment as {new_status.value}"
            )

        values = {"status": new_status}
        if new_status == AppointmentStatus.CANCELLED:
            values["cancellation_reason"] = cancellation_reason or f"Cancelled by {capacity.value}"

        result = await self.db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == old_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidTransitionError(
                "Appointment status was changed by another request; reload and try again"
            )

        if new_status.is_terminal:
            await self.slots.release_slots(appointment.id)

        await self.db.refresh(appointment)

        notification = await self._notify_counterparty(appointment, transition, capacity)

        details = {"oldStatus": old_status.value, "newStatus": new_status.value}
        if new_status == AppointmentStatus.CANCELLED:
            details["cancellationReason"] = appointment.cancellation_reason
        if extra_details:
            details.update(extra_details)
        self.audit.record(
            transition.audit_action,
            actor=actor,
            resource="appointment",
            resource_id=appointment.id,
            details=details,
        )

        await self.db.commit()
        await self.notifier.deliver(notification)

        logger.info(
            "Appointment %s: %s -> %s by %s %s",
            appointment.id, old_status.value, new_status.value,
            capacity.value, actor.id if actor else "-"
        )
        return appointment

    async def _notify_counterparty(
        self, appointment: Appointment, transition: Transition, capacity: Capacity
    ) -> Notification:
        # The patient hears about doctor and admin actions; the doctor hears
        # about patient actions and payment confirmations.
        if capacity in (Capacity.PATIENT, Capacity.PAYMENT):
            recipient_id = appointment.doctor_id
        else:
            recipient_id = appointment.patient_id

        start = appointment.appointment_date
        message = f"The appointment on {start:%Y-%m-%d} at {start:%H:%M} was {transition.verb}"
        if appointment.status == AppointmentStatus.CANCELLED and appointment.cancellation_reason:
            message += f": {appointment.cancellation_reason}"

        return await self.notifier.notify(
            self.db,
            user_id=recipient_id,
            notification_type=transition.notification_type,
            title="Appointment status updated",
            message=message,
            data={"appointmentId": appointment.id, "status": appointment.status.value},
            priority=(
                NotificationPriority.HIGH
                if appointment.status == AppointmentStatus.CANCELLED
                else NotificationPriority.MEDIUM
            ),
        )

    # Feedback

    async def rate_appointment(
        self, patient: User, appointment_id: int, rating: int, feedback: Optional[str] = None
    ) -> Appointment:
        result = await self.db.execute(
            select(Appointment).where(
                Appointment.id == appointment_id,
                Appointment.patient_id == patient.id,
                Appointment.status == AppointmentStatus.COMPLETED,
            )
        )
        appointment = result.scalar_one_or_none()
        if not appointment:
            raise NotFoundError("Appointment not found or not eligible for rating")

        appointment.rating = rating
        appointment.feedback = feedback
        self.audit.record(
            "APPOINTMENT_RATED",
            actor=patient,
            resource="appointment",
            resource_id=appointment.id,
            details={"rating": rating},
        )
        await self.db.commit()
        await self.db.refresh(appointment)
        return appointment
