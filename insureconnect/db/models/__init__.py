"""SQLAlchemy ORM models."""

from insureconnect.db.models.chat import Chat, ChatParticipant, Message
from insureconnect.db.models.notifications import Notification
from insureconnect.db.models.posts import Post, PostComment, PostLike
from insureconnect.db.models.tokens import TokenRequest, TokenTransaction
from insureconnect.db.models.users import User

__all__ = [
    "Chat",
    "ChatParticipant",
    "Message",
    "Notification",
    "Post",
    "PostComment",
    "PostLike",
    "TokenRequest",
    "TokenTransaction",
    "User",
]
