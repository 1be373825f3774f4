from pydantic import Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from ..models.payment import PaymentMethod, PaymentStatus
from .common import CamelModel

class PaymentCreate(CamelModel):
    appointment_id: int
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: str = Field("EUR", min_length=3, max_length=3)
    payment_method: PaymentMethod

class PaymentResponse(CamelModel):
    id: int
    appointment_id: int
    patient_id: int
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
