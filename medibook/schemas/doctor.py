from typing import Optional

from .common import CamelModel

class DoctorResponse(CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str
    specialization: Optional[str] = None
    phone_number: Optional[str] = None
