from fastapi import APIRouter, Depends, Query
from typing import Optional

from ...api.deps import get_admin_user, get_audit_service, get_reminder_service
from ...models.user import User
from ...schemas.audit import AuditLogResponse, ReminderRunResponse
from ...schemas.common import APIResponse, PaginatedResponse, Pagination
from ...services.audit_service import AuditService
from ...services.reminder_service import ReminderService

router = APIRouter(prefix="/admin", tags=["Administration"])

@router.get("/audit-logs", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    action: Optional[str] = None,
    user_id: Optional[int] = Query(None, alias="userId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_admin_user),
    audit: AuditService = Depends(get_audit_service),
):
    """Audit trail, newest first (admin only)."""
    items, total = await audit.list_logs(action=action, user_id=user_id, page=page, limit=limit)
    return PaginatedResponse(
        data=[AuditLogResponse.model_validate(entry) for entry in items],
        pagination=Pagination.build(page, limit, total),
    )

@router.post("/reminders/run", response_model=APIResponse[ReminderRunResponse])
async def run_reminders(
    current_user: User = Depends(get_admin_user),
    reminders: ReminderService = Depends(get_reminder_service),
):
    """Run a reminder scan now instead of waiting for the hourly job."""
    result = await reminders.run_scan()
    return APIResponse(
        message=f"{result.total_sent} reminder(s) sent",
        data=ReminderRunResponse(
            sent={str(lead): count for lead, count in result.sent.items()},
            skipped=result.skipped,
            failed=result.failed,
        ),
    )
