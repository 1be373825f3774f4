from typing import Any, Dict, Optional
from datetime import datetime

from .common import CamelModel

class AuditLogResponse(CamelModel):
    id: int
    action: str
    user_id: Optional[int] = None
    user_role: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[int] = None
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None

class ReminderRunResponse(CamelModel):
    sent: Dict[str, int]
    skipped: int
    failed: int
