"""Enum definitions for application constants."""

from insureconnect.db.enums.auth import ROLE_ORDER, Role
from insureconnect.db.enums.chat import MessageType
from insureconnect.db.enums.notifications import NotificationType
from insureconnect.db.enums.posts import PostCategory, PostStatus
from insureconnect.db.enums.tokens import TokenRequestStatus, TokenTransactionType

__all__ = [
    "ROLE_ORDER",
    "Role",
    "MessageType",
    "NotificationType",
    "PostCategory",
    "PostStatus",
    "TokenRequestStatus",
    "TokenTransactionType",
]
