"""Notification-related enums."""

from enum import Enum


class NotificationType(str, Enum):
    """Types of in-app notifications."""

    # Engagement
    LIKE = "like"
    COMMENT = "comment"

    # Moderation decisions
    POST_APPROVED = "post_approved"
    POST_REJECTED = "post_rejected"

    # Token request decisions
    TOKENS = "tokens"

    # Direct messages
    MESSAGE = "message"
