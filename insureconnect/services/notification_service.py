"""
Notification Service - persistent in-app notifications with real-time push.

The database row is the source of truth; the live push is best-effort and
only happens after the row is committed. Users who are offline pick up
their notifications from the list endpoint.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from insureconnect.core.exceptions import NotFoundError
from insureconnect.core.structured_logging import build_log_context
from insureconnect.core.websocket import ConnectionRegistry
from insureconnect.db.enums import NotificationType
from insureconnect.db.models import Notification
from insureconnect.db.session import storage_guard
from insureconnect.schemas.notification import NotificationRead

logger = logging.getLogger(__name__)


# =============================================================================
# Create + push
# =============================================================================


def build_notification(
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
) -> Notification:
    """Unsaved row; callers that own a transaction add it themselves."""
    return Notification(
        user_id=user_id,
        type=NotificationType(type).value,
        title=title,
        message=message,
    )


def push_notification(
    db: Session,
    notification: Notification,
    registry: ConnectionRegistry | None,
) -> None:
    """
    Push a committed notification followed by the recipient's new unread count.

    Best-effort: the notification is already durable, so any failure here is
    logged and swallowed.
    """
    if registry is None or not registry.is_online(notification.user_id):
        return
    try:
        payload = NotificationRead.model_validate(notification).model_dump(mode="json")
        count = get_unread_count(db, notification.user_id)
        # Close the read transaction before waiting on the event loop
        db.commit()
    except Exception:
        db.rollback()
        logger.warning(
            "Notification push skipped",
            exc_info=True,
            extra=build_log_context(user_id=notification.user_id),
        )
        return
    registry.push_to_user(notification.user_id, "notification", payload)
    registry.push_to_user(notification.user_id, "unread-count", {"count": count})


def notify(
    db: Session,
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    registry: ConnectionRegistry | None = None,
) -> Notification:
    """
    Persist a notification, then push it to the recipient if online.

    A failed push never undoes the persisted row.
    """
    with storage_guard(db):
        notification = build_notification(user_id, type, title, message)
        db.add(notification)
        db.commit()

    logger.info(
        "Notification created: %s",
        notification.type,
        extra=build_log_context(user_id=user_id),
    )
    push_notification(db, notification, registry)
    return notification


# =============================================================================
# Notification CRUD (always scoped to the owner)
# =============================================================================


def get_notifications(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> list[Notification]:
    """Get notifications for user, newest first."""
    query = db.query(Notification).filter(Notification.user_id == user_id)

    if unread_only:
        query = query.filter(Notification.read.is_(False))

    return (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_notifications(db: Session, user_id: UUID, unread_only: bool = False) -> int:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.count()


def get_unread_count(db: Session, user_id: UUID) -> int:
    """Get count of unread notifications."""
    return count_notifications(db, user_id, unread_only=True)


def mark_read(db: Session, notification_id: UUID, user_id: UUID) -> Notification:
    """
    Mark a notification as read. Idempotent: re-reading keeps the first read_at.

    Raises:
        NotFoundError: notification missing or owned by someone else
    """
    with storage_guard(db):
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).first()

        if not notification:
            raise NotFoundError("Notification not found")

        if not notification.read:
            notification.read = True
            notification.read_at = datetime.now(timezone.utc)
            db.commit()

    return notification


def mark_all_read(db: Session, user_id: UUID) -> int:
    """Mark all notifications as read. Returns count updated."""
    with storage_guard(db):
        count = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        ).update(
            {"read": True, "read_at": datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        db.commit()
    return count


def delete_notification(db: Session, notification_id: UUID, user_id: UUID) -> bool:
    """Idempotent: deleting a missing (or foreign) notification is a no-op. Returns whether a row went away."""
    with storage_guard(db):
        deleted = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).delete(synchronize_session=False)
        db.commit()
    return bool(deleted)


def push_unread_count(db: Session, user_id: UUID, registry: ConnectionRegistry | None) -> None:
    if registry is None or not registry.is_online(user_id):
        return
    try:
        count = get_unread_count(db, user_id)
        db.commit()
    except Exception:
        db.rollback()
        logger.warning(
            "Unread count push skipped",
            exc_info=True,
            extra=build_log_context(user_id=user_id),
        )
        return
    registry.push_to_user(user_id, "unread-count", {"count": count})
