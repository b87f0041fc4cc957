"""Chat enums."""

from enum import Enum


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"

    @classmethod
    def parse(cls, value: str | None) -> "MessageType | None":
        if not value:
            return cls.TEXT
        return cls._value2member_map_.get(value.strip().upper())
