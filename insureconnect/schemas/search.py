"""Search schemas."""

from pydantic import BaseModel

from insureconnect.schemas.post import PostRead
from insureconnect.schemas.user import UserSummary


class SearchResponse(BaseModel):
    posts: list[PostRead] | None = None
    users: list[UserSummary] | None = None
