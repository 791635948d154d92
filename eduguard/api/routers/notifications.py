"""
Router for admin in-app notifications
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.clock import Clock
from ...database.repositories import AdminNotificationRepository
from ..deps import get_clock, get_notification_repository
from ..schemas.common import APIResponse
from ..schemas.notifications import AdminNotificationResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get(
    "",
    response_model=APIResponse[List[AdminNotificationResponse]],
    summary="List admin notifications of a school"
)
def list_notifications(
    school_id: str = Query(...),
    unread_only: bool = Query(False),
    student_id: Optional[str] = Query(None),
    repository: AdminNotificationRepository = Depends(get_notification_repository),
):
    notifications = repository.list_by_school(school_id, unread_only=unread_only, student_id=student_id)
    return APIResponse(data=[AdminNotificationResponse.model_validate(n) for n in notifications])


@router.put(
    "/{notification_id}/read",
    response_model=APIResponse[AdminNotificationResponse],
    summary="Mark a notification as read"
)
def mark_notification_read(
    notification_id: str,
    repository: AdminNotificationRepository = Depends(get_notification_repository),
    clock: Clock = Depends(get_clock),
):
    notification = repository.mark_read(notification_id, now=clock.now())
    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification '{notification_id}' not found"
        )
    return APIResponse(data=AdminNotificationResponse.model_validate(notification))
