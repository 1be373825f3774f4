from fastapi import APIRouter, Depends
from typing import List

from ...api.deps import get_current_user, get_doctor_service
from ...models.user import User
from ...schemas.common import APIResponse
from ...schemas.doctor import DoctorResponse
from ...services.doctor_service import DoctorService

router = APIRouter(prefix="/doctors", tags=["Doctors"])

@router.get("", response_model=APIResponse[List[DoctorResponse]])
async def list_doctors(
    current_user: User = Depends(get_current_user),
    service: DoctorService = Depends(get_doctor_service),
):
    """Active doctors ordered by first name."""
    doctors = await service.list_doctors()
    return APIResponse(data=[DoctorResponse.model_validate(d) for d in doctors])

@router.get("/{doctor_id}", response_model=APIResponse[DoctorResponse])
async def get_doctor(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    service: DoctorService = Depends(get_doctor_service),
):
    doctor = await service.get_doctor(doctor_id)
    return APIResponse(data=DoctorResponse.model_validate(doctor))
