from fastapi import APIRouter, Depends, Query, status
from datetime import date
from typing import Optional

from ...api.deps import (
    get_appointment_service, get_current_user, get_doctor_user, get_patient_user
)
from ...models.appointment import AppointmentStatus, AppointmentType
from ...models.user import User
from ...schemas.appointment import (
    AppointmentCreate, AppointmentRating, AppointmentResponse,
    AppointmentStatusUpdate, SlotOverview
)
from ...schemas.common import APIResponse, PaginatedResponse, Pagination
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post(
    "",
    response_model=APIResponse[AppointmentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_patient_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book a pending appointment with a doctor."""
    appointment = await service.create_appointment(current_user, data)
    return APIResponse(
        message="Appointment created successfully",
        data=AppointmentResponse.model_validate(appointment),
    )

@router.get("", response_model=PaginatedResponse[AppointmentResponse])
async def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    appointment_type: Optional[AppointmentType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Appointments visible to the current user, newest first."""
    items, total = await service.list_appointments(
        current_user, status=status_filter, appointment_type=appointment_type,
        page=page, limit=limit,
    )
    return PaginatedResponse(
        data=[AppointmentResponse.model_validate(a) for a in items],
        pagination=Pagination.build(page, limit, total),
    )

@router.get("/{doctor_id}/available-slots", response_model=APIResponse[SlotOverview])
async def get_available_slots(
    doctor_id: int,
    day: date = Query(..., alias="date"),
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Free slots and booked start times for a doctor on one date."""
    overview = await service.slots.get_slot_overview(doctor_id, day)
    return APIResponse(
        data=SlotOverview(
            doctor_id=doctor_id,
            date=day.isoformat(),
            available_slots=overview["availableSlots"],
            booked_slots=overview["bookedSlots"],
        )
    )

@router.get("/{appointment_id}", response_model=APIResponse[AppointmentResponse])
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.get_appointment(current_user, appointment_id)
    return APIResponse(data=AppointmentResponse.model_validate(appointment))

@router.patch("/{appointment_id}/status", response_model=APIResponse[AppointmentResponse])
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Confirm, cancel, complete or mark an appointment as a no-show."""
    appointment = await service.change_status(
        current_user, appointment_id, data.status, data.cancellation_reason
    )
    return APIResponse(
        message=f"Appointment {appointment.status.value}",
        data=AppointmentResponse.model_validate(appointment),
    )

@router.post("/{appointment_id}/complete", response_model=APIResponse[AppointmentResponse])
async def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_doctor_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = await service.change_status(
        current_user, appointment_id, AppointmentStatus.COMPLETED
    )
    return APIResponse(
        message="Appointment completed",
        data=AppointmentResponse.model_validate(appointment),
    )

@router.patch("/{appointment_id}/rate", response_model=APIResponse[AppointmentResponse])
async def rate_appointment(
    appointment_id: int,
    data: AppointmentRating,
    current_user: User = Depends(get_patient_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Rate a completed appointment (patient only)."""
    appointment = await service.rate_appointment(
        current_user, appointment_id, data.rating, data.feedback
    )
    return APIResponse(
        message="Thank you for your feedback",
        data=AppointmentResponse.model_validate(appointment),
    )
