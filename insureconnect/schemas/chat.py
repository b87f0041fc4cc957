"""Direct-messaging schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from insureconnect.schemas.user import UserSummary


class ConversationCreate(BaseModel):
    receiver_id: UUID


class ChatRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    is_group: bool
    created_at: datetime
    updated_at: datetime
    participants: list[UserSummary]


class ConversationSummary(BaseModel):
    id: UUID
    participant: UserSummary | None
    last_message: str
    timestamp: datetime
    online: bool


class MessageCreate(BaseModel):
    chat_id: UUID | None = None
    receiver_id: UUID | None = None
    content: str = Field(min_length=1, max_length=5000)
    type: str = "TEXT"
    attachment_size_bytes: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_target(self):
        if self.chat_id is None and self.receiver_id is None:
            raise ValueError("Either chat_id or receiver_id is required")
        return self


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chat_id: UUID
    sender_id: UUID
    receiver_id: UUID | None
    content: str
    type: str
    seq: int
    created_at: datetime
    sender: UserSummary


class MessageListResponse(BaseModel):
    items: list[MessageRead]
    page: int
    limit: int
    total: int
