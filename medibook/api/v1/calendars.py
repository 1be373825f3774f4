from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional

from ...api.deps import get_calendar_service, get_doctor_user, require_role
from ...core.security import UserRole
from ...models.user import User
from ...schemas.calendar import CalendarCreate, CalendarResponse, CalendarSlotsUpdate
from ...schemas.common import APIResponse, MessageResponse
from ...services.calendar_service import CalendarService

router = APIRouter(prefix="/calendars", tags=["Calendars"])

@router.post(
    "",
    response_model=APIResponse[CalendarResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_calendar(
    data: CalendarCreate,
    current_user: User = Depends(require_role([UserRole.DOCTOR])),
    service: CalendarService = Depends(get_calendar_service),
):
    """Publish the bookable slots for one date."""
    calendar = await service.create_calendar(current_user, data)
    return APIResponse(
        message="Calendar created successfully",
        data=CalendarResponse.model_validate(calendar),
    )

@router.get("", response_model=APIResponse[List[CalendarResponse]])
async def list_calendars(
    doctor_id: Optional[int] = Query(None, alias="doctorId"),
    current_user: User = Depends(get_doctor_user),
    service: CalendarService = Depends(get_calendar_service),
):
    calendars = await service.list_calendars(current_user, doctor_id)
    return APIResponse(data=[CalendarResponse.model_validate(c) for c in calendars])

@router.get("/{calendar_id}", response_model=APIResponse[CalendarResponse])
async def get_calendar(
    calendar_id: int,
    current_user: User = Depends(get_doctor_user),
    service: CalendarService = Depends(get_calendar_service),
):
    calendar = await service.get_calendar(current_user, calendar_id)
    return APIResponse(data=CalendarResponse.model_validate(calendar))

@router.put("/{calendar_id}/slots", response_model=APIResponse[CalendarResponse])
async def update_calendar_slots(
    calendar_id: int,
    data: CalendarSlotsUpdate,
    current_user: User = Depends(get_doctor_user),
    service: CalendarService = Depends(get_calendar_service),
):
    """Replace the slots of an unconfirmed calendar."""
    calendar = await service.update_slots(current_user, calendar_id, data.slots)
    return APIResponse(
        message="Calendar slots updated",
        data=CalendarResponse.model_validate(calendar),
    )

@router.post("/{calendar_id}/confirm", response_model=APIResponse[CalendarResponse])
async def confirm_calendar(
    calendar_id: int,
    current_user: User = Depends(get_doctor_user),
    service: CalendarService = Depends(get_calendar_service),
):
    calendar = await service.confirm_calendar(current_user, calendar_id)
    return APIResponse(
        message="Calendar confirmed",
        data=CalendarResponse.model_validate(calendar),
    )

@router.delete("/{calendar_id}", response_model=MessageResponse)
async def delete_calendar(
    calendar_id: int,
    current_user: User = Depends(get_doctor_user),
    service: CalendarService = Depends(get_calendar_service),
):
    await service.delete_calendar(current_user, calendar_id)
    return MessageResponse(message="Calendar deleted successfully")
