"""Notification API endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from auction_service.api.deps import CurrentUserId, NotificationServiceDep
from auction_service.schemas.notification import NotificationListResponse, NotificationResponse

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def get_my_notifications(
    current_user_id: CurrentUserId,
    service: NotificationServiceDep,
    unread_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    """Get current user's notifications, newest first."""
    notifications, total = await service.get_notifications(
        current_user_id, unread_only=unread_only, skip=skip, limit=limit
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
    )


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    notification_id: UUID,
    current_user_id: CurrentUserId,
    service: NotificationServiceDep,
):
    """Mark one of the caller's notifications as read."""
    if not await service.mark_read(notification_id, current_user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
