"""
Notifications Router - /me/notifications endpoints.

Provides notification listing and read status. Every query is scoped to
the calling user.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from insureconnect.core.deps import get_current_session, get_db, get_registry
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.schemas.auth import UserSession
from insureconnect.schemas.notification import (
    NotificationListResponse,
    NotificationRead,
    UnreadCountResponse,
)
from insureconnect.services import notification_service

router = APIRouter()


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get user's notifications."""
    notifications = notification_service.get_notifications(
        db=db,
        user_id=session.user_id,
        unread_only=unread_only,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return NotificationListResponse(
        items=notifications,
        page=page,
        limit=limit,
        total=notification_service.count_notifications(db, session.user_id, unread_only),
        unread_count=notification_service.get_unread_count(db, session.user_id),
    )


@router.get("/notifications/count", response_model=UnreadCountResponse)
def get_unread_count(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get unread notification count (for polling)."""
    return UnreadCountResponse(
        count=notification_service.get_unread_count(db, session.user_id)
    )


@router.patch("/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Mark a single notification as read."""
    notification = notification_service.mark_read(db, notification_id, session.user_id)
    notification_service.push_unread_count(db, session.user_id, registry)
    return notification


@router.post("/notifications/read-all")
def mark_all_notifications_read(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Mark all notifications as read."""
    count = notification_service.mark_all_read(db, session.user_id)
    notification_service.push_unread_count(db, session.user_id, registry)
    return {"marked_read": count}


@router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
):
    notification_service.delete_notification(db, notification_id, session.user_id)
    notification_service.push_unread_count(db, session.user_id, registry)
