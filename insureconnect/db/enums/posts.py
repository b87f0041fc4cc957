"""Post and moderation enums."""

from enum import Enum


class PostStatus(str, Enum):
    """Moderation lifecycle: PENDING -> APPROVED | REJECTED (both terminal)."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not PostStatus.PENDING


class PostCategory(str, Enum):
    """Insurance lines a post can be filed under."""

    AUTO = "AUTO"
    HEALTH = "HEALTH"
    LIFE = "LIFE"
    PROPERTY = "PROPERTY"
    BUSINESS = "BUSINESS"
    TRAVEL = "TRAVEL"
    DISABILITY = "DISABILITY"
    LIABILITY = "LIABILITY"
    MARINE = "MARINE"
    CYBER = "CYBER"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: str) -> "PostCategory | None":
        """Case-insensitive lookup; returns None for unknown categories."""
        return cls._value2member_map_.get((value or "").strip().upper())
