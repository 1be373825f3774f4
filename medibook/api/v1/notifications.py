from fastapi import APIRouter, Depends, Query

from ...api.deps import get_current_user, get_notification_service
from ...models.user import User
from ...schemas.common import APIResponse, PaginatedResponse, Pagination
from ...schemas.notification import NotificationCount, NotificationResponse
from ...services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """The current user's notifications, newest first."""
    items, total = await service.list_for_user(current_user.id, unread_only, page, limit)
    return PaginatedResponse(
        data=[NotificationResponse.model_validate(n) for n in items],
        pagination=Pagination.build(page, limit, total),
    )

@router.get("/unread-count", response_model=APIResponse[NotificationCount])
async def unread_count(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    count = await service.unread_count(current_user.id)
    return APIResponse(data=NotificationCount(count=count))

@router.patch("/read-all", response_model=APIResponse[NotificationCount])
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Mark all of the current user's notifications as read; ``count`` is how many changed."""
    updated = await service.mark_all_as_read(current_user.id)
    return APIResponse(
        message="All notifications marked as read",
        data=NotificationCount(count=updated),
    )

@router.patch("/{notification_id}/read", response_model=APIResponse[NotificationResponse])
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    notification = await service.mark_as_read(current_user.id, notification_id)
    return APIResponse(
        message="Notification marked as read",
        data=NotificationResponse.model_validate(notification),
    )
