from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint, Index,
    Enum as SQLEnum,
)
import enum

from ..core.clock import utcnow
from ..core.database import Base

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

# Statuses that hold a doctor's time
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

class AppointmentType(str, enum.Enum):
    IN_PERSON = "in_person"
    TELECONSULTATION = "teleconsultation"
    HOME_VISIT = "home_visit"

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_doctor_start", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_start", "patient_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Participants
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Appointment details
    appointment_date = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=30)
    end_time = Column(DateTime, nullable=False)
    status = Column(
        SQLEnum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.PENDING,
        index=True,
    )
    type = Column(
        SQLEnum(AppointmentType, name="appointment_type", values_callable=_enum_values),
        nullable=False,
        default=AppointmentType.IN_PERSON,
    )
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Patient feedback once completed
    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}', status='{self.status}')>"

class AppointmentSlotClaim(Base):
    """One row per booking block held by an active appointment.

    The unique (doctor_id, slot_start) constraint makes the database reject a
    second active appointment over the same block, so two bookings that both
    passed the overlap query cannot both commit.
    """
    __tablename__ = "appointment_slot_claims"
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_start", name="uq_slot_claim_doctor_start"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    slot_start = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<AppointmentSlotClaim(doctor_id={self.doctor_id}, slot_start='{self.slot_start}')>"

class ReminderDispatch(Base):
    """Durable marker: the reminder at this lead time was sent for the appointment."""
    __tablename__ = "reminder_dispatches"
    __table_args__ = (
        UniqueConstraint("appointment_id", "lead_time_minutes", name="uq_reminder_dispatch"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lead_time_minutes = Column(Integer, nullable=False)
    channel_summary = Column(String(255), nullable=True)
    sent_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ReminderDispatch(appointment_id={self.appointment_id}, lead_time_minutes={self.lead_time_minutes})>"
