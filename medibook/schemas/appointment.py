from pydantic import Field, field_validator
from typing import List, Optional
from datetime import datetime

from ..core.clock import to_naive_utc
from ..models.appointment import AppointmentStatus, AppointmentType
from .common import CamelModel

class AppointmentCreate(CamelModel):
    doctor_id: int
    appointment_date: datetime
    duration: Optional[int] = None
    type: AppointmentType = AppointmentType.IN_PERSON
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reason is required")
        return v

    @field_validator("appointment_date")
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

class AppointmentStatusUpdate(CamelModel):
    status: AppointmentStatus
    cancellation_reason: Optional[str] = Field(None, max_length=1000)

class AppointmentRating(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=2000)

class AppointmentResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: datetime
    duration: int
    end_time: datetime
    status: AppointmentStatus
    type: AppointmentType
    reason: str
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class SlotOverview(CamelModel):
    doctor_id: int
    date: str
    available_slots: List[str]
    booked_slots: List[str]
