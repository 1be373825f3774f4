from typing import Any, Dict, Optional
from datetime import datetime

from ..models.notification import NotificationPriority, NotificationType
from .common import CamelModel

class NotificationResponse(CamelModel):
    id: int
    user_id: int
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = {}
    priority: NotificationPriority
    is_read: bool
    created_at: Optional[datetime] = None

class NotificationCount(CamelModel):
    count: int
