"""User-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserSummary(BaseModel):
    """Public author/participant card."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    avatar_url: str | None = None
    role: str


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str
    avatar_url: str | None = None
    role: str
    token_balance: int
    is_verified: bool
    created_at: datetime


class AdminStats(BaseModel):
    total_users: int
    total_posts: int
    pending_posts: int
    total_tokens: int


class UserUpdate(BaseModel):
    """Profile fields a member may change; omitted fields stay as they are."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    avatar_url: str | None = Field(default=None, max_length=500)


class UserListResponse(BaseModel):
    items: list[UserSummary]
    page: int
    limit: int
    total: int


class AdminUserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    name: str
    role: str
    token_balance: int
    is_verified: bool
    is_active: bool
    created_at: datetime
    post_count: int = 0


class AdminUserListResponse(BaseModel):
    items: list[AdminUserRead]
    page: int
    limit: int
    total: int
