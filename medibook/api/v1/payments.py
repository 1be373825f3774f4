from fastapi import APIRouter, Depends, status
from typing import List

from ...api.deps import get_admin_user, get_current_user, get_patient_user, get_payment_service
from ...models.user import User
from ...schemas.common import APIResponse
from ...schemas.payment import PaymentCreate, PaymentResponse
from ...services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])

@router.post(
    "",
    response_model=APIResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    data: PaymentCreate,
    current_user: User = Depends(get_patient_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Pay for an appointment; a pending appointment is confirmed by the payment."""
    payment = await service.record_payment(current_user, data)
    return APIResponse(
        message="Payment recorded successfully",
        data=PaymentResponse.model_validate(payment),
    )

@router.get("", response_model=APIResponse[List[PaymentResponse]])
async def list_payments(
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payments = await service.list_payments(current_user)
    return APIResponse(data=[PaymentResponse.model_validate(p) for p in payments])

@router.post("/{payment_id}/refund", response_model=APIResponse[PaymentResponse])
async def refund_payment(
    payment_id: int,
    current_user: User = Depends(get_admin_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Refund a completed payment (admin only)."""
    payment = await service.refund_payment(current_user, payment_id)
    return APIResponse(
        message="Payment refunded successfully",
        data=PaymentResponse.model_validate(payment),
    )
