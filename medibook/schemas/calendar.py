from pydantic import Field
from typing import Any, Dict, List, Optional
from datetime import date, datetime

from .common import CamelModel

class CalendarCreate(CamelModel):
    date: date
    slots: List[str] = Field(default_factory=list)

class CalendarSlotsUpdate(CamelModel):
    slots: List[str]

class CalendarResponse(CamelModel):
    id: int
    doctor_id: int
    date: date
    slots: List[str]
    confirmed: bool
    versions: List[Dict[str, Any]] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
