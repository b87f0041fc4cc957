"""Post and moderation schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from insureconnect.schemas.user import UserSummary


class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    category: str
    image_url: str | None = None
    # Size reported by file storage for the attached image
    image_size_bytes: int | None = Field(default=None, ge=0)


class PostReject(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class PostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    content: str
    category: str
    image_url: str | None
    token_cost: int
    status: str
    rejection_reason: str | None
    reviewed_by_id: UUID | None
    reviewed_at: datetime | None
    created_at: datetime
    author: UserSummary
    likes: int = 0
    comments: int = 0
    is_liked: bool = False


class PostListResponse(BaseModel):
    items: list[PostRead]
    page: int
    limit: int
    total: int


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class CommentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    post_id: UUID
    content: str
    created_at: datetime
    user: UserSummary


class LikeToggleResponse(BaseModel):
    liked: bool
