"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles with increasing privilege levels.

    - CUSTOMER: Reads the feed, posts, chats
    - AGENT: Verified insurance professional
    - ADMIN: Moderates posts and resolves token requests
    """

    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_

    @property
    def rank(self) -> int:
        return ROLE_ORDER.index(self)

    def has_at_least(self, required: "Role") -> bool:
        """True when this role is at or above `required` in the privilege order."""
        return self.rank >= Role(required).rank


ROLE_ORDER: tuple[Role, ...] = (Role.CUSTOMER, Role.AGENT, Role.ADMIN)
